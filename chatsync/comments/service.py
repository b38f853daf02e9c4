"""Outgoing comment flow over the REST API.

Sending is optimistic: the comment is inserted into the room store as
``pending`` before the request, then reconciled with the server copy and
marked ``sent``. If the request fails the comment becomes ``failed`` and
the error is re-raised; nothing is retried automatically.

Usage:
    service = CommentService(api, user_id="alice@example.com", username="Alice")
    comment = service.send_comment(store, "hello")
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..api.client import ChatApiClient
from ..errors import ApiError, CommentStateError
from ..utils import unescape_html
from .schemas import Comment
from .store import RoomCommentStore

logger = logging.getLogger(__name__)


class CommentService:
    """Posts comments and keeps the room store in step with the server."""

    def __init__(
        self,
        api: ChatApiClient,
        user_id: str,
        username: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> None:
        self.api = api
        self.user_id = user_id
        self.username = username or user_id
        self.avatar = avatar

    def _quote_reply(self, store: RoomCommentStore, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fill in the quoted message and sender for a reply payload."""
        replied = store.get_by_id(payload.get("replied_comment_id"))
        if replied is None:
            return payload
        quoted = dict(payload)
        if replied.type == "reply" and replied.payload:
            quoted["replied_comment_message"] = unescape_html(replied.payload.get("text"))
        else:
            quoted["replied_comment_message"] = unescape_html(replied.message)
        quoted["replied_comment_sender_username"] = replied.username_as
        return quoted

    def send_comment(
        self,
        store: RoomCommentStore,
        message: str,
        comment_type: str = "text",
        payload: Optional[Dict[str, Any]] = None,
        extras: Optional[Dict[str, Any]] = None,
        unique_id: Optional[str] = None,
    ) -> Comment:
        """Insert an optimistic comment, post it, then confirm or fail it.

        Args:
            store: Room the comment goes to.
            message: Raw (unescaped) text.
            comment_type: text, reply, custom, ...
            payload: Structured data for non-text types.
            extras: Free-form metadata.
            unique_id: Correlation key; generated when omitted.

        Returns:
            The comment held by the store, in ``sent`` state (or further,
            if receipts arrived first).

        Raises:
            httpx.HTTPError: The request failed; the comment is ``failed``.
            ApiError: The API rejected the comment; the comment is ``failed``.
        """
        if comment_type == "reply" and payload:
            payload = self._quote_reply(store, payload)

        pending = Comment.prepare_outgoing(
            message,
            room_id=store.room_id,
            username_real=self.user_id,
            username_as=self.username,
            avatar=self.avatar,
            comment_type=comment_type,
            payload=payload,
            extras=extras,
            unique_id=unique_id,
        )
        comment = store.receive_comment(pending)

        try:
            data = self.api.post_comment(
                store.room_id, message, comment.unique_id, comment_type, payload, extras
            )
        except (httpx.HTTPError, ApiError) as e:
            comment.mark_failed()
            logger.warning(f"Posting comment {comment.unique_id} to room {store.room_id} failed: {e}")
            raise

        self._confirm(store, comment, data)
        return comment

    def _confirm(self, store: RoomCommentStore, comment: Comment, data: Dict[str, Any]) -> None:
        confirmed_data = dict(data)
        confirmed_data.setdefault("room_id", store.room_id)
        if not (confirmed_data.get("unique_temp_id") or confirmed_data.get("unique_id")):
            confirmed_data["unique_temp_id"] = comment.unique_id
        try:
            confirmed = Comment.from_payload(confirmed_data)
        except CommentStateError as e:
            logger.warning(f"Unusable post_comment response for {comment.unique_id}: {e.message}")
        else:
            if confirmed.unique_id == comment.unique_id:
                store.receive_comment(confirmed)
        comment.mark_sent()
        store.record_last_comment(comment)

    def resend_comment(self, store: RoomCommentStore, comment: Comment) -> Comment:
        """Send a failed comment again as a new comment.

        ``failed`` is terminal, so the failed entry is removed from the room
        and a new comment with a new ``unique_id`` takes its place.
        """
        if not comment.is_failed:
            raise ValueError(f"Comment {comment.unique_id} is {comment.status.value}, not failed")
        store.delete_comments([comment.unique_id], hard=True)
        return self.send_comment(
            store,
            unescape_html(comment.message),
            comment_type=comment.type,
            payload=comment.payload,
            extras=comment.extras,
        )

    def load_comments(
        self,
        store: RoomCommentStore,
        last_comment_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Comment]:
        """Fetch older comments and receive them oldest first."""
        raw_comments = self.api.load_comments(store.room_id, last_comment_id=last_comment_id, limit=limit)
        comments = []
        for data in reversed(raw_comments):
            data = dict(data)
            data.setdefault("room_id", store.room_id)
            try:
                comments.append(Comment.from_payload(data))
            except CommentStateError as e:
                logger.warning(f"Skipping comment from load_comments: {e.message}")
        received = store.receive_comments(comments)
        for comment in received:
            store.record_last_comment(comment)
        return received

    def mark_room_read(self, store: RoomCommentStore) -> None:
        """Report the last comment as read and reset the unread counter."""
        if store.last_comment_id is not None:
            self.api.update_comment_status(store.room_id, last_read_id=store.last_comment_id)
        store.mark_all_read()
