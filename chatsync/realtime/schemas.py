"""Typed events produced by the topic classifier and observer notifications."""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

# Bumped whenever the shape of Notification.data changes for any kind.
NOTIFICATION_VERSION = 1


class EventKind(str, Enum):
    """Kinds of inbound broker events."""
    NEW_COMMENT = "new_comment"
    PRESENCE = "presence"
    TYPING = "typing"
    COMMENT_READ = "comment_read"
    COMMENT_DELIVERED = "comment_delivered"
    COMMENT_DELETED = "comment_deleted"
    ROOM_CLEARED = "room_cleared"
    CUSTOM_EVENT = "custom_event"


class Event(BaseModel):
    """Base of every classified broker message."""
    kind: EventKind
    topic: str
    raw: str = ""


class NewCommentEvent(Event):
    kind: Literal[EventKind.NEW_COMMENT] = EventKind.NEW_COMMENT
    comments: List[Dict[str, Any]] = Field(default_factory=list)


class PresenceEvent(Event):
    kind: Literal[EventKind.PRESENCE] = EventKind.PRESENCE
    user_id: str
    is_online: bool
    # None when the publisher sent a bare status (e.g. a last-will "0").
    last_seen_at: Optional[int] = None


class TypingEvent(Event):
    kind: Literal[EventKind.TYPING] = EventKind.TYPING
    room_id: str
    username: str
    message: str


class ReceiptEvent(Event):
    """Read or delivered receipt.

    Attributes:
        room_id: Room segment of the topic.
        room: Fourth topic segment, forwarded to observers as ``room``.
        actor: User who sent the receipt (same segment as ``room``).
        message: Normalised payload with ``id`` and/or ``unique_temp_id``.
    """
    kind: Literal[EventKind.COMMENT_READ, EventKind.COMMENT_DELIVERED]
    room_id: str
    room: str
    actor: str
    message: Dict[str, Any]


class DeletedMessages(BaseModel):
    room_id: str
    unique_ids: List[str] = Field(default_factory=list)


class CommentDeletedEvent(Event):
    kind: Literal[EventKind.COMMENT_DELETED] = EventKind.COMMENT_DELETED
    deleted: List[DeletedMessages] = Field(default_factory=list)
    is_hard: bool = True


class RoomClearedEvent(Event):
    kind: Literal[EventKind.ROOM_CLEARED] = EventKind.ROOM_CLEARED
    room_ids: List[str] = Field(default_factory=list)


class CustomEvent(Event):
    kind: Literal[EventKind.CUSTOM_EVENT] = EventKind.CUSTOM_EVENT
    room_id: str
    payload: Any = None


class Notification(BaseModel):
    """What observers receive; ``data`` depends on ``kind``.

    ``new_comment`` carries a list of Comments, ``presence`` the raw payload
    string, ``typing`` a ``{room_id, username, message}`` dict and receipts a
    ``{room, message}`` dict.
    """
    version: int = NOTIFICATION_VERSION
    kind: str
    data: Any = None
