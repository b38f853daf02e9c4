"""chatsync: realtime chat client core.

Usage:
    from chatsync import ChatClient

    client = ChatClient(user_id="alice@example.com", token="...")
    client.on("comment_read", lambda n: print(n.data))
    client.connect()
"""
from .client import ChatClient
from .config import AppSettings, get_config, load_settings
from .errors import (
    ApiError,
    ChatSyncError,
    CommentStateError,
    ConfigError,
    MalformedPayloadError,
    RealtimeError,
    UnrecognizedTopicError,
)

__all__ = [
    "ChatClient",
    "AppSettings",
    "get_config",
    "load_settings",
    # Exceptions
    "ChatSyncError",
    "ConfigError",
    "CommentStateError",
    "RealtimeError",
    "UnrecognizedTopicError",
    "MalformedPayloadError",
    "ApiError",
]
