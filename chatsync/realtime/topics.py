"""Broker topic grammar: builders and the inbound classifier.

Topic grammar (segments joined by ``/``):

    {token}/n                          notification (deleted comments, cleared rooms)
    {token}/c                          new comment on the user channel
    u/{userId}/s                       presence, payload "{0|1}:{epochMs}"
    r/{roomId}/{topicId}/{userId}/t    typing, payload free-form ("1" / "0")
    r/{roomId}/{topicId}/{userId}/r    read receipt
    r/{roomId}/{topicId}/{userId}/d    delivered receipt
    r/{roomId}/{roomId}/e              custom room event

The classifier evaluates a closed list of rules in that priority order and
returns a typed Event. It depends only on ``(topic, payload)``, never on a
particular broker client's message object.
"""
import json
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from pydantic import ValidationError

from ..errors import MalformedPayloadError, UnrecognizedTopicError
from .schemas import (
    CommentDeletedEvent,
    CustomEvent,
    DeletedMessages,
    Event,
    EventKind,
    NewCommentEvent,
    PresenceEvent,
    ReceiptEvent,
    RoomClearedEvent,
    TypingEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_TIMESTAMP_MAX_LENGTH = 13


# =============================================================================
# Topic builders
# =============================================================================


def user_channel_topic(token: str) -> str:
    return f"{token}/c"


def notification_topic(token: str) -> str:
    return f"{token}/n"


def presence_topic(user_id: str) -> str:
    return f"u/{user_id}/s"


def room_topic(room_id: Union[int, str], user_id: str, suffix: str) -> str:
    return f"r/{room_id}/{room_id}/{user_id}/{suffix}"


def room_topics(room_id: Union[int, str]) -> List[str]:
    """Wildcard subscriptions for typing, delivered and read in a room."""
    return [room_topic(room_id, "+", suffix) for suffix in ("t", "d", "r")]


def custom_event_topic(room_id: Union[int, str]) -> str:
    return f"r/{room_id}/{room_id}/e"


# =============================================================================
# Payload parsing
# =============================================================================


def _decode(topic: str, payload: Union[str, bytes, bytearray]) -> str:
    if isinstance(payload, (bytes, bytearray)):
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError(topic, f"not UTF-8: {exc}") from exc
    return str(payload)


def _parse_json(topic: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise MalformedPayloadError(topic, f"invalid JSON: {exc}") from exc


def parse_receipt(topic: str, raw: str) -> Dict[str, Any]:
    """Normalise a receipt payload to a dict with ``id`` and/or ``unique_temp_id``.

    Accepts a JSON object, a bare JSON comment id, or the colon form
    ``"{commentId}:{uniqueId}"``.
    """
    try:
        parsed = json.loads(raw)
    except ValueError:
        comment_id, _, unique_id = raw.partition(":")
        parsed = {}
        if comment_id.strip():
            if not comment_id.strip().isdigit():
                raise MalformedPayloadError(topic, f"bad comment id {comment_id!r}")
            parsed["id"] = int(comment_id)
        if unique_id.strip():
            parsed["unique_temp_id"] = unique_id.strip()
    else:
        if isinstance(parsed, int) and not isinstance(parsed, bool):
            parsed = {"id": parsed}

    if not isinstance(parsed, dict):
        raise MalformedPayloadError(topic, "receipt must be an object")
    if not parsed.get("unique_temp_id") and parsed.get("id") is None:
        raise MalformedPayloadError(topic, "receipt has neither unique_temp_id nor id")
    return parsed


# =============================================================================
# Classifier
# =============================================================================


class _Rule(NamedTuple):
    name: str
    matches: Callable[[List[str]], bool]
    build: Callable[[str, List[str], str], Optional[Event]]


class TopicClassifier:
    """Turns ``(topic, payload)`` into a typed Event.

    Args:
        presence_timestamp_max_length: Presence payloads whose timestamp
            text is longer than this are dropped (``classify`` returns
            None). ``None`` disables the check.
    """

    def __init__(
        self, presence_timestamp_max_length: Optional[int] = DEFAULT_PRESENCE_TIMESTAMP_MAX_LENGTH
    ) -> None:
        self.presence_timestamp_max_length = presence_timestamp_max_length
        self._rules = (
            _Rule("notification", lambda s: len(s) == 2 and s[1] == "n", self._notification),
            _Rule("new_comment", lambda s: len(s) == 2 and s[1] == "c", self._new_comment),
            _Rule("presence", lambda s: len(s) == 3 and s[0] == "u" and s[2] == "s", self._presence),
            _Rule("typing", lambda s: len(s) == 5 and s[0] == "r" and s[4] == "t", self._typing),
            _Rule(
                "comment_read",
                lambda s: len(s) == 5 and s[0] == "r" and s[4] == "r",
                self._receipt(EventKind.COMMENT_READ),
            ),
            _Rule(
                "comment_delivered",
                lambda s: len(s) == 5 and s[0] == "r" and s[4] == "d",
                self._receipt(EventKind.COMMENT_DELIVERED),
            ),
            _Rule("custom_event", lambda s: len(s) == 4 and s[0] == "r" and s[3] == "e", self._custom),
        )

    def classify(self, topic: str, payload: Union[str, bytes, bytearray]) -> Optional[Event]:
        """Classify one broker message.

        Returns:
            The Event, or None when the message is dropped by policy
            (oversized presence timestamp).

        Raises:
            UnrecognizedTopicError: The topic matches no rule.
            MalformedPayloadError: The payload does not parse for its rule.
        """
        segments = topic.split("/")
        for rule in self._rules:
            if rule.matches(segments):
                raw = _decode(topic, payload)
                return rule.build(topic, segments, raw)
        raise UnrecognizedTopicError(topic)

    # -------------------------------------------------------------------------
    # Rule builders
    # -------------------------------------------------------------------------

    def _notification(self, topic: str, segments: List[str], raw: str) -> Event:
        data = _parse_json(topic, raw)
        try:
            body = data["payload"]["data"]
        except (KeyError, TypeError) as exc:
            raise MalformedPayloadError(topic, "notification has no payload.data") from exc
        if not isinstance(body, dict):
            raise MalformedPayloadError(topic, "notification payload.data must be an object")

        try:
            if "deleted_messages" in body:
                return CommentDeletedEvent(
                    topic=topic,
                    raw=raw,
                    deleted=[
                        DeletedMessages(
                            room_id=str(item["room_id"]),
                            unique_ids=[str(u) for u in item.get("message_unique_ids") or []],
                        )
                        for item in body["deleted_messages"]
                    ],
                    is_hard=bool(body.get("is_hard_delete", True)),
                )
            if "deleted_rooms" in body:
                return RoomClearedEvent(
                    topic=topic,
                    raw=raw,
                    room_ids=[str(room["id"]) for room in body["deleted_rooms"]],
                )
        except (KeyError, TypeError, ValidationError) as exc:
            raise MalformedPayloadError(topic, f"bad notification body: {exc}") from exc
        raise MalformedPayloadError(topic, f"unsupported notification {data.get('action_topic')!r}")

    def _new_comment(self, topic: str, segments: List[str], raw: str) -> Event:
        data = _parse_json(topic, raw)
        comments = data if isinstance(data, list) else [data]
        if not all(isinstance(item, dict) for item in comments):
            raise MalformedPayloadError(topic, "comment payload must be an object or a list of objects")
        return NewCommentEvent(topic=topic, raw=raw, comments=comments)

    def _presence(self, topic: str, segments: List[str], raw: str) -> Optional[Event]:
        status, sep, timestamp = raw.strip().partition(":")
        if status not in ("0", "1"):
            raise MalformedPayloadError(topic, f"presence status must be 0 or 1, got {status!r}")

        last_seen_at = None
        if sep:
            limit = self.presence_timestamp_max_length
            if limit is not None and len(timestamp) > limit:
                logger.info(
                    "Dropping presence on %s: timestamp %r longer than %d characters",
                    topic, timestamp, limit,
                )
                return None
            if not timestamp.isdigit():
                raise MalformedPayloadError(topic, f"presence timestamp is not numeric: {timestamp!r}")
            last_seen_at = int(timestamp)

        return PresenceEvent(
            topic=topic,
            raw=raw,
            user_id=segments[1],
            is_online=status == "1",
            last_seen_at=last_seen_at,
        )

    def _typing(self, topic: str, segments: List[str], raw: str) -> Event:
        return TypingEvent(
            topic=topic, raw=raw, room_id=segments[1], username=segments[3], message=raw
        )

    def _receipt(self, kind: EventKind) -> Callable[[str, List[str], str], Event]:
        def build(topic: str, segments: List[str], raw: str) -> Event:
            return ReceiptEvent(
                kind=kind,
                topic=topic,
                raw=raw,
                room_id=segments[1],
                room=segments[3],
                actor=segments[3],
                message=parse_receipt(topic, raw),
            )
        return build

    def _custom(self, topic: str, segments: List[str], raw: str) -> Event:
        return CustomEvent(topic=topic, raw=raw, room_id=segments[1], payload=_parse_json(topic, raw))


_default_classifier = TopicClassifier()


def classify(topic: str, payload: Union[str, bytes, bytearray]) -> Optional[Event]:
    """Classify with the default presence timestamp limit."""
    return _default_classifier.classify(topic, payload)
