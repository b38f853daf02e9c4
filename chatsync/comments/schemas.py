"""Comment lifecycle model and room participant records.

A Comment moves forward along ``pending -> sent -> delivered -> read``.
``failed`` is a separate absorbing branch that can only be entered from
``pending``. Delivered/read are receipts from other participants, so a
receipt sent by the active user never changes that user's own view.

Identity:
    ``unique_id`` is the client correlation key and never changes.
    ``id`` is assigned by the server on first confirmation and never
    changes after that.
"""
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..errors import CommentStateError
from ..utils import escape_html, now_millis

logger = logging.getLogger(__name__)

ATTACHMENT_OPEN = "[file]"
ATTACHMENT_CLOSE = "[/file]"
DELETED_MESSAGE = "this message has been deleted"

_IMAGE_EXTENSION = re.compile(r"\.(jpg|jpeg|gif|png)", re.IGNORECASE)


class CommentStatus(str, Enum):
    """Lifecycle state of a comment.

    Attributes:
        PENDING: Created locally, not yet acknowledged by the server.
        SENT: Acknowledged by the server.
        DELIVERED: Another participant received it.
        READ: Another participant read it.
        FAILED: The outgoing post failed.
    """
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Forward order of the non-failed states.
_PROGRESS = {
    CommentStatus.PENDING: 0,
    CommentStatus.SENT: 1,
    CommentStatus.DELIVERED: 2,
    CommentStatus.READ: 3,
}


def _escape_reply_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    escaped = dict(payload)
    for key in ("text", "replied_comment_message"):
        if escaped.get(key) is not None:
            escaped[key] = escape_html(escaped[key])
    return escaped


def _parse_status(value: Any) -> Optional[CommentStatus]:
    if isinstance(value, CommentStatus):
        return value
    try:
        return CommentStatus(str(value))
    except ValueError:
        return None


class Participant(BaseModel):
    """A member of a room as returned by the room API."""
    email: str
    username: str = ""
    avatar_url: Optional[str] = None
    last_comment_read_id: Optional[int] = None
    last_comment_received_id: Optional[int] = None


class Comment(BaseModel):
    """A chat message together with its delivery state."""
    id: Optional[int] = None
    unique_id: str
    before_id: Optional[int] = None
    message: str = ""
    type: str = "text"
    subtype: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    extras: Optional[Dict[str, Any]] = None
    username_as: Optional[str] = None
    username_real: Optional[str] = None
    avatar: Optional[str] = None
    room_id: Optional[Union[int, str]] = None
    timestamp: Optional[datetime] = None
    unix_timestamp: Optional[int] = None
    is_deleted: bool = False
    is_channel: bool = False
    status: CommentStatus = Field(default=CommentStatus.SENT)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "Comment":
        """Build a Comment from a server comment object.

        The message (and reply quote) is HTML-escaped, ``unique_temp_id``
        wins over ``unique_id`` and the server ``status`` is applied on top
        of the default ``sent`` state.

        Raises:
            CommentStateError: If the payload is not an object, has no
                correlation key, or has fields of the wrong type.
        """
        if not isinstance(data, Mapping):
            raise CommentStateError("Comment payload must be a JSON object")

        unique_id = data.get("unique_temp_id") or data.get("unique_id")
        if not unique_id:
            raise CommentStateError("Comment payload has no unique_temp_id or unique_id")

        comment_type = data.get("type") or "text"
        payload = data.get("payload")
        if isinstance(payload, Mapping):
            payload = dict(payload)
            if comment_type == "reply":
                payload = _escape_reply_payload(payload)
        subtype = None
        if comment_type == "custom" and isinstance(payload, dict):
            subtype = payload.get("type")

        unix_timestamp = data.get("unix_timestamp")
        if isinstance(unix_timestamp, float):
            unix_timestamp = int(unix_timestamp)

        try:
            comment = cls(
                id=data.get("id"),
                unique_id=str(unique_id),
                before_id=data.get("comment_before_id"),
                message=escape_html(data.get("message") or ""),
                type=comment_type,
                subtype=subtype,
                payload=payload,
                extras=data.get("extras"),
                username_as=data.get("username_as") or data.get("username"),
                username_real=data.get("username_real") or data.get("email"),
                avatar=data.get("user_avatar_url"),
                room_id=data.get("room_id"),
                timestamp=data.get("timestamp"),
                unix_timestamp=unix_timestamp,
                is_deleted=bool(data.get("is_deleted", False)),
                is_channel=bool(data.get("is_public_channel", False)),
            )
        except ValidationError as exc:
            raise CommentStateError(f"Invalid comment payload: {exc}") from exc

        comment._apply_server_status(data.get("status"))
        return comment

    @classmethod
    def prepare_outgoing(
        cls,
        message: str,
        room_id: Union[int, str],
        username_real: str,
        username_as: Optional[str] = None,
        avatar: Optional[str] = None,
        comment_type: str = "text",
        payload: Optional[Dict[str, Any]] = None,
        extras: Optional[Dict[str, Any]] = None,
        unique_id: Optional[str] = None,
    ) -> "Comment":
        """Create a pending comment for an optimistic local insert.

        Args:
            message: Raw text typed by the user.
            room_id: Room the comment is posted to.
            username_real: Sender's user id (email).
            username_as: Sender's display name.
            avatar: Sender's avatar URL.
            comment_type: text, reply, custom, ...
            payload: Structured data for non-text types.
            extras: Free-form metadata forwarded to the server.
            unique_id: Correlation key; generated when omitted.

        Returns:
            A Comment in ``pending`` state with no server id.
        """
        if unique_id is None:
            unique_id = f"bq{now_millis()}-{uuid.uuid4().hex[:8]}"
        if payload is not None and comment_type == "reply":
            payload = _escape_reply_payload(payload)
        comment = cls(
            unique_id=unique_id,
            message=escape_html(message),
            type=comment_type,
            subtype=payload.get("type") if comment_type == "custom" and payload else None,
            payload=payload,
            extras=extras,
            username_as=username_as or username_real,
            username_real=username_real,
            avatar=avatar,
            room_id=room_id,
            timestamp=datetime.now(timezone.utc),
            unix_timestamp=int(time.time()),
        )
        comment.mark_pending()
        return comment

    # =========================================================================
    # Derived fields
    # =========================================================================

    @property
    def date(self) -> Optional[str]:
        return self.timestamp.strftime("%Y-%m-%d") if self.timestamp else None

    @property
    def time(self) -> Optional[str]:
        return self.timestamp.strftime("%H:%M") if self.timestamp else None

    @property
    def is_pending(self) -> bool:
        return self.status is CommentStatus.PENDING

    @property
    def is_sent(self) -> bool:
        return self.status in (CommentStatus.SENT, CommentStatus.DELIVERED, CommentStatus.READ)

    @property
    def is_delivered(self) -> bool:
        return self.status in (CommentStatus.DELIVERED, CommentStatus.READ)

    @property
    def is_read(self) -> bool:
        return self.status is CommentStatus.READ

    @property
    def is_failed(self) -> bool:
        return self.status is CommentStatus.FAILED

    @property
    def is_attachment(self) -> bool:
        return self.message.startswith(ATTACHMENT_OPEN)

    @property
    def is_image_attachment(self) -> bool:
        return self.is_attachment and _IMAGE_EXTENSION.search(self.message) is not None

    @property
    def attachment_uri(self) -> Optional[str]:
        """URL wrapped in ``[file] ... [/file]``, or None for plain text."""
        if not self.is_attachment:
            return None
        end = len(self.message)
        if self.message.endswith(ATTACHMENT_CLOSE):
            end -= len(ATTACHMENT_CLOSE)
        return self.message[len(ATTACHMENT_OPEN):end].strip()

    # =========================================================================
    # State transitions
    # =========================================================================

    def _advance_to(self, target: CommentStatus) -> bool:
        """Move forward to ``target``; never backward, never out of failed."""
        if self.status is CommentStatus.FAILED:
            return False
        if _PROGRESS[target] <= _PROGRESS[self.status]:
            return False
        self.status = target
        return True

    def _apply_server_status(self, value: Any) -> bool:
        status = _parse_status(value) if value else None
        if status in (CommentStatus.SENT, CommentStatus.DELIVERED, CommentStatus.READ):
            return self._advance_to(status)
        return False

    def mark_pending(self) -> None:
        self.status = CommentStatus.PENDING

    def mark_sent(self) -> bool:
        """Server confirmed creation. Returns True if the state changed."""
        if self.status is CommentStatus.FAILED:
            logger.debug(f"Ignoring sent confirmation for failed comment {self.unique_id}")
            return False
        return self._advance_to(CommentStatus.SENT)

    def mark_delivered(self, actor: Optional[str], active_actor_id: Optional[str]) -> bool:
        """Apply a delivered receipt from ``actor``.

        Receipts from the active user and receipts arriving after ``read``
        are ignored.
        """
        if actor == active_actor_id:
            return False
        if self.status is CommentStatus.READ:
            return False
        return self._advance_to(CommentStatus.DELIVERED)

    def mark_read(self, actor: Optional[str], active_actor_id: Optional[str]) -> bool:
        """Apply a read receipt from ``actor``; read implies delivered and sent."""
        if actor == active_actor_id:
            return False
        return self._advance_to(CommentStatus.READ)

    def mark_failed(self) -> bool:
        """Outgoing post failed. Only a pending comment can fail."""
        if self.status is not CommentStatus.PENDING:
            logger.debug(
                f"Ignoring failure for comment {self.unique_id} in state {self.status.value}"
            )
            return False
        self.status = CommentStatus.FAILED
        return True

    # =========================================================================
    # Server revisions
    # =========================================================================

    def _assign_id(self, new_id: Any) -> None:
        if new_id is None:
            return
        new_id = int(new_id)
        if self.id is None:
            self.id = new_id
        elif self.id != new_id:
            logger.warning(
                f"Comment {self.unique_id} already has id {self.id}, ignoring {new_id}"
            )

    def update(self, data: Mapping[str, Any]) -> None:
        """Merge a server-pushed revision into this comment in place.

        ``unique_id`` is untouched, ``id`` is only taken if none is set yet
        and ``status`` only ever moves forward.
        """
        self._assign_id(data.get("id"))
        if data.get("comment_before_id") is not None:
            self.before_id = int(data["comment_before_id"])
        if "message" in data:
            self.message = escape_html(data.get("message") or "")
        payload = data.get("payload")
        if payload:
            payload = dict(payload)
            if data.get("type") == "reply":
                payload = _escape_reply_payload(payload)
            self.payload = payload
        self._apply_server_status(data.get("status"))

    def reconcile(self, confirmed: "Comment") -> None:
        """Copy server-assigned fields from ``confirmed`` into this comment.

        Used when the server echo of an optimistic comment arrives; this
        comment keeps its identity and its position in the room.
        """
        self._assign_id(confirmed.id)
        if confirmed.message:
            self.message = confirmed.message
        if confirmed.timestamp is not None:
            self.timestamp = confirmed.timestamp
        if confirmed.unix_timestamp is not None:
            self.unix_timestamp = confirmed.unix_timestamp
        if confirmed.before_id is not None:
            self.before_id = confirmed.before_id
        if confirmed.payload is not None:
            self.payload = confirmed.payload
        if confirmed.status in _PROGRESS and confirmed.status is not CommentStatus.PENDING:
            self._advance_to(confirmed.status)

    def mark_deleted(self) -> None:
        """Soft delete: keep the slot, replace the text."""
        self.is_deleted = True
        self.message = DELETED_MESSAGE
