from .client import ChatApiClient

__all__ = ["ChatApiClient"]
