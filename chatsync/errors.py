"""Exceptions raised by the chatsync core.

Classification errors are raised by the topic classifier and caught by the
realtime dispatcher, which logs and drops the offending broker message.
"""


class ChatSyncError(Exception):
    """Base exception for chatsync errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(ChatSyncError):
    """Raised when a settings file cannot be parsed."""


class CommentStateError(ChatSyncError):
    """Raised when a comment payload cannot be turned into a Comment."""


class RealtimeError(ChatSyncError):
    """Base exception for broker message handling errors."""

    def __init__(self, message: str, topic: str = ""):
        self.topic = topic
        super().__init__(message)


class UnrecognizedTopicError(RealtimeError):
    """Raised when a topic matches none of the known topic shapes."""

    def __init__(self, topic: str):
        super().__init__(f"Topic not handled: {topic}", topic=topic)


class MalformedPayloadError(RealtimeError):
    """Raised when a payload cannot be parsed for its topic shape."""

    def __init__(self, topic: str, reason: str):
        self.reason = reason
        super().__init__(f"Malformed payload on {topic}: {reason}", topic=topic)


class ApiError(ChatSyncError):
    """Raised when the chat API answers with a non-success envelope."""

    def __init__(self, message: str, status_code: int = 500):
        self.status_code = status_code
        super().__init__(message)
