"""Latest-known online state and typing state per user."""
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from .schemas import PresenceEvent, TypingEvent

logger = logging.getLogger(__name__)


class PresenceRecord(BaseModel):
    user_id: str
    is_online: bool
    last_seen_at: Optional[int] = None


class PresenceTracker:
    """Keeps only the most recent presence record per user.

    Typing indicators are tracked per ``(room_id, username)``; a ``"1"``
    payload means typing, anything else means stopped.
    """

    def __init__(self) -> None:
        self._records: Dict[str, PresenceRecord] = {}
        self._typing: Dict[Tuple[str, str], bool] = {}

    def apply(self, event: PresenceEvent) -> PresenceRecord:
        """Record a presence event, replacing the previous record for the user.

        A bare status with no timestamp keeps the previous ``last_seen_at``.
        """
        last_seen_at = event.last_seen_at
        if last_seen_at is None and event.user_id in self._records:
            last_seen_at = self._records[event.user_id].last_seen_at
        record = PresenceRecord(
            user_id=event.user_id,
            is_online=event.is_online,
            last_seen_at=last_seen_at,
        )
        self._records[event.user_id] = record
        logger.debug(
            f"Presence {event.user_id}: {'online' if record.is_online else 'offline'} ({last_seen_at})"
        )
        return record

    def get(self, user_id: str) -> Optional[PresenceRecord]:
        return self._records.get(str(user_id))

    def is_online(self, user_id: str) -> bool:
        record = self.get(user_id)
        return record.is_online if record else False

    def apply_typing(self, event: TypingEvent) -> bool:
        """Record a typing indicator; returns the new typing flag."""
        typing = event.message.strip() == "1"
        key = (event.room_id, event.username)
        if typing:
            self._typing[key] = True
        else:
            self._typing.pop(key, None)
        return typing

    def is_typing(self, room_id: str, username: str) -> bool:
        return self._typing.get((str(room_id), username), False)

    def typing_users(self, room_id: str) -> List[str]:
        room_id = str(room_id)
        return [user for (room, user) in self._typing if room == room_id]

    def clear(self) -> None:
        self._records.clear()
        self._typing.clear()
