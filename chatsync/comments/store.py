"""Per-room ordered comment collection with optimistic-send reconciliation.

The store keeps comments in arrival order and indexes them twice:

    - by ``unique_id`` (primary; every comment has one)
    - by server ``id`` (secondary; only confirmed comments have one)

Both indexes are updated on every insert, reconciliation and removal so a
receipt or a server echo finds its comment in O(1).

Note:
    The store is not thread-safe. All mutation is expected to come from the
    realtime dispatcher's delivery path, or from callers that go through
    ``receive_comment`` so the no-duplicate invariant holds.
"""
import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from .schemas import Comment, Participant

logger = logging.getLogger(__name__)


def _room_key(room_id: Any) -> Optional[str]:
    return None if room_id is None else str(room_id)


class RoomCommentStore:
    """Ordered comments, participants and unread counter for one room."""

    def __init__(
        self,
        room_id: Union[int, str],
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        room_type: Optional[str] = None,
        participants: Optional[Iterable[Participant]] = None,
        last_comment_id: Optional[int] = None,
        last_comment_message: Optional[str] = None,
        unread_count: int = 0,
    ) -> None:
        self.room_id = room_id
        self.name = name
        self.avatar = avatar
        self.room_type = room_type
        self.last_comment_id = last_comment_id
        self.last_comment_message = last_comment_message
        self.unread_count = unread_count

        # email -> Participant, insertion ordered
        self.participants: Dict[str, Participant] = {}
        for participant in participants or []:
            self.add_participant(participant)

        # Arrival order
        self._comments: List[Comment] = []
        # unique_id -> Comment
        self._by_unique_id: Dict[str, Comment] = {}
        # server id -> Comment
        self._by_id: Dict[int, Comment] = {}

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "RoomCommentStore":
        """Build a store from a room object returned by the room API.

        Embedded ``comments`` are received in the order given.
        """
        store = cls(
            room_id=data["id"],
            name=data.get("room_name"),
            avatar=data.get("room_avatar") or data.get("avatar_url"),
            room_type=data.get("room_type") or data.get("chat_type"),
            participants=[Participant(**p) for p in data.get("participants") or []],
            last_comment_id=data.get("last_comment_id"),
            last_comment_message=data.get("last_comment_message"),
            unread_count=data.get("unread_count") or 0,
        )
        store.receive_comments(Comment.from_payload(c) for c in data.get("comments") or [])
        return store

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def key(self) -> str:
        """Room id normalised to a string (topics carry ids as text)."""
        return str(self.room_id)

    @property
    def comments(self) -> List[Comment]:
        """Comments in arrival order (a copy of the sequence)."""
        return list(self._comments)

    def __len__(self) -> int:
        return len(self._comments)

    def __iter__(self) -> Iterator[Comment]:
        return iter(list(self._comments))

    def __contains__(self, unique_id: object) -> bool:
        return unique_id in self._by_unique_id

    def get(self, unique_id: str) -> Optional[Comment]:
        return self._by_unique_id.get(unique_id)

    def get_by_id(self, comment_id: Any) -> Optional[Comment]:
        """Lookup by server id.

        A miss falls back to a scan so a comment whose id was set in place
        (``Comment.update``) is still found; the hit is then indexed.
        """
        try:
            comment_id = int(comment_id)
        except (TypeError, ValueError):
            return None
        comment = self._by_id.get(comment_id)
        if comment is not None:
            return comment
        for candidate in self._comments:
            if candidate.id == comment_id:
                self._index_id(candidate)
                return candidate
        return None

    def sorted_comments(self) -> List[Comment]:
        """Comments ordered by server time; unconfirmed ones keep their place last."""
        return sorted(
            self._comments,
            key=lambda c: (c.unix_timestamp is None, c.unix_timestamp or 0),
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def receive_comment(self, comment: Comment) -> Optional[Comment]:
        """Insert a comment or reconcile it with its optimistic twin.

        The twin is looked up by ``unique_id`` first, then by server ``id``.

        Args:
            comment: Comment built from a server payload or prepared locally.

        Returns:
            The comment held by the store (the existing instance when the
            incoming one was a confirmation), or None when the comment
            belongs to another room.
        """
        if _room_key(comment.room_id) != self.key:
            logger.debug(
                f"Ignoring comment {comment.unique_id} for room {comment.room_id} in room {self.room_id}"
            )
            return None

        existing = self._by_unique_id.get(comment.unique_id)
        if existing is None and comment.id is not None:
            # Same server comment under another correlation key.
            existing = self.get_by_id(comment.id)
        if existing is not None:
            if existing is not comment:
                existing.reconcile(comment)
            self._index_id(existing)
            return existing

        self._comments.append(comment)
        self._by_unique_id[comment.unique_id] = comment
        self._index_id(comment)
        return comment

    def receive_comments(self, comments: Iterable[Comment]) -> List[Comment]:
        """Receive comments in the given order; the result keeps arrival order."""
        received = []
        for comment in comments:
            stored = self.receive_comment(comment)
            if stored is not None:
                received.append(stored)
        return received

    def update_comment(self, unique_id: str, data: Mapping[str, Any]) -> Optional[Comment]:
        """Merge a server revision into a stored comment and re-index its id."""
        comment = self._by_unique_id.get(unique_id)
        if comment is None:
            return None
        comment.update(data)
        self._index_id(comment)
        return comment

    def _index_id(self, comment: Comment) -> None:
        if comment.id is None:
            return
        current = self._by_id.get(comment.id)
        if current is not None and current is not comment:
            logger.warning(
                f"Comment id {comment.id} in room {self.room_id} moved from "
                f"{current.unique_id} to {comment.unique_id}"
            )
        self._by_id[comment.id] = comment

    # =========================================================================
    # Receipts
    # =========================================================================

    def find_for_receipt(self, receipt: Mapping[str, Any]) -> Optional[Comment]:
        """Locate the comment a receipt refers to.

        ``unique_temp_id`` is tried first, then ``id``. A receipt never
        creates a comment.
        """
        unique_id = receipt.get("unique_temp_id")
        if unique_id:
            return self._by_unique_id.get(str(unique_id))
        if receipt.get("id") is not None:
            return self.get_by_id(receipt["id"])
        return None

    def apply_receipt(
        self,
        kind: str,
        actor: Optional[str],
        receipt: Mapping[str, Any],
        active_actor_id: Optional[str],
    ) -> Optional[Comment]:
        """Apply a ``comment_read``/``comment_delivered`` receipt.

        A receipt for comment N covers every comment with ``id <= N``; each
        one only moves forward. The actor's participant watermarks advance
        to N as well. Receipts from the active user change nothing.

        Returns:
            The matched comment (whether or not its state changed), or None.
        """
        if kind not in ("comment_read", "comment_delivered"):
            raise ValueError(f"Not a receipt kind: {kind}")
        comment = self.find_for_receipt(receipt)
        if comment is None:
            logger.debug(f"No comment in room {self.room_id} for receipt {dict(receipt)}")
            return None
        if actor == active_actor_id:
            return comment

        is_read = kind == "comment_read"
        if comment.id is not None:
            self._advance_watermarks(actor, comment.id, is_read)
            covered = [c for c in self._comments if c.id is not None and c.id <= comment.id]
        else:
            covered = [comment]
        for target in covered:
            if is_read:
                target.mark_read(actor, active_actor_id)
            else:
                target.mark_delivered(actor, active_actor_id)
        return comment

    def _advance_watermarks(self, actor: Optional[str], comment_id: int, is_read: bool) -> None:
        participant = self.participants.get(actor) if actor else None
        if participant is None:
            return
        received = participant.last_comment_received_id
        if received is None or comment_id > received:
            participant.last_comment_received_id = comment_id
        if is_read:
            read = participant.last_comment_read_id
            if read is None or comment_id > read:
                participant.last_comment_read_id = comment_id

    # =========================================================================
    # Removal
    # =========================================================================

    def delete_comments(self, unique_ids: Iterable[str], hard: bool = False) -> List[Comment]:
        """Delete comments by correlation key.

        A hard delete drops the comment from the sequence and both indexes;
        a soft delete keeps the slot and replaces the message text.
        """
        affected = []
        for unique_id in unique_ids:
            comment = self._by_unique_id.get(unique_id)
            if comment is None:
                continue
            if hard:
                self._comments.remove(comment)
                del self._by_unique_id[unique_id]
                if comment.id is not None and self._by_id.get(comment.id) is comment:
                    del self._by_id[comment.id]
            else:
                comment.mark_deleted()
            affected.append(comment)
        return affected

    def clear(self) -> None:
        """Remove every comment (room cleared on the server)."""
        self._comments.clear()
        self._by_unique_id.clear()
        self._by_id.clear()
        self.last_comment_id = None
        self.last_comment_message = None
        self.unread_count = 0

    # =========================================================================
    # Participants and counters
    # =========================================================================

    def get_participant(self, email: str) -> Optional[Participant]:
        return self.participants.get(email)

    def add_participant(self, participant: Participant) -> bool:
        """Add a participant unless one with the same email exists."""
        if participant.email in self.participants:
            return False
        self.participants[participant.email] = participant
        return True

    def remove_participants(self, emails: Iterable[str]) -> None:
        for email in emails:
            self.participants.pop(email, None)

    def record_last_comment(self, comment: Comment) -> None:
        if comment.id is not None:
            if self.last_comment_id is None or comment.id >= self.last_comment_id:
                self.last_comment_id = comment.id
                self.last_comment_message = comment.message

    def mark_all_read(self) -> None:
        self.unread_count = 0
