"""Realtime dispatcher: broker messages in, store/presence updates and notifications out.

Flow for every inbound ``(topic, payload)``:

    1. TopicClassifier turns it into a typed Event (or drops it)
    2. the handler registered for ``event.kind`` updates the RoomCommentStore
       or the PresenceTracker
    3. observers receive a versioned Notification

Messages are processed one at a time to completion. Nothing raised while
classifying or routing a single message escapes ``handle_message``, so a
malformed message never stops delivery of the next one.

The dispatcher holds direct references only to the room stores registered
with it, the presence tracker and the broker.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..comments.schemas import Comment
from ..comments.store import RoomCommentStore
from ..config import RealtimeSettings
from ..errors import ChatSyncError, CommentStateError, MalformedPayloadError, UnrecognizedTopicError
from ..utils import now_millis
from .broker import Broker, Payload
from .observers import Observer, Observers
from .presence import PresenceTracker
from .schemas import (
    CommentDeletedEvent,
    CustomEvent,
    Event,
    EventKind,
    NewCommentEvent,
    PresenceEvent,
    ReceiptEvent,
    RoomClearedEvent,
    TypingEvent,
)
from .topics import (
    TopicClassifier,
    custom_event_topic,
    notification_topic,
    presence_topic,
    room_topic,
    room_topics,
    user_channel_topic,
)

logger = logging.getLogger(__name__)

CONNECTED = "connected"
DISCONNECTED = "disconnected"


class RealtimeDispatcher:
    """Routes classified broker events to room stores and presence.

    Args:
        broker: Any Broker binding.
        user_id: The active user; receipts and typing from this id do not
            change local state.
        presence: Tracker to update; a new one is created when omitted.
        classifier: Topic classifier; defaults to the 13-character
            presence timestamp limit.
        suppress_self_typing: Drop typing events published by ``user_id``.
    """

    def __init__(
        self,
        broker: Broker,
        user_id: str,
        presence: Optional[PresenceTracker] = None,
        classifier: Optional[TopicClassifier] = None,
        suppress_self_typing: bool = True,
    ) -> None:
        self.broker = broker
        self.user_id = user_id
        self.presence = presence or PresenceTracker()
        self.classifier = classifier or TopicClassifier()
        self.suppress_self_typing = suppress_self_typing
        self.observers = Observers()
        self.connected = False

        # room_id (str) -> store
        self._rooms: Dict[str, RoomCommentStore] = {}
        # room_id (str) -> callback for custom events
        self._custom_event_callbacks: Dict[str, Callable[[Any], None]] = {}

        self._handlers: Dict[EventKind, Callable[[Any], None]] = {
            EventKind.NEW_COMMENT: self._on_new_comment,
            EventKind.PRESENCE: self._on_presence,
            EventKind.TYPING: self._on_typing,
            EventKind.COMMENT_READ: self._on_receipt,
            EventKind.COMMENT_DELIVERED: self._on_receipt,
            EventKind.COMMENT_DELETED: self._on_comment_deleted,
            EventKind.ROOM_CLEARED: self._on_room_cleared,
            EventKind.CUSTOM_EVENT: self._on_custom_event,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for event kinds: {sorted(k.value for k in missing)}")

        broker.on_message(self.handle_message)
        broker.on_connected(self._on_connected)
        broker.on_connection_lost(self._on_connection_lost)

    @classmethod
    def from_settings(
        cls,
        broker: Broker,
        user_id: str,
        settings: RealtimeSettings,
        presence: Optional[PresenceTracker] = None,
    ) -> "RealtimeDispatcher":
        return cls(
            broker,
            user_id,
            presence=presence,
            classifier=TopicClassifier(settings.presence_timestamp_max_length),
            suppress_self_typing=settings.suppress_self_typing,
        )

    # =========================================================================
    # Rooms and observers
    # =========================================================================

    def register_room(self, store: RoomCommentStore) -> RoomCommentStore:
        self._rooms[store.key] = store
        return store

    def unregister_room(self, room_id: Union[int, str]) -> Optional[RoomCommentStore]:
        return self._rooms.pop(str(room_id), None)

    def get_room(self, room_id: Union[int, str]) -> Optional[RoomCommentStore]:
        return self._rooms.get(str(room_id))

    def on(self, kind: Union[str, EventKind], callback: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unregisters it."""
        return self.observers.on(kind, callback)

    # =========================================================================
    # Inbound
    # =========================================================================

    def handle_message(self, topic: str, payload: Payload) -> Optional[Event]:
        """Classify and route one broker message.

        Returns:
            The routed Event, or None if the message was dropped.
        """
        try:
            event = self.classifier.classify(topic, payload)
        except UnrecognizedTopicError:
            logger.debug(f"Topic not handled: {topic}")
            return None
        except MalformedPayloadError as e:
            logger.warning(f"Dropping message: {e.message}")
            return None

        if event is None:
            return None

        try:
            self._handlers[event.kind](event)
        except ChatSyncError as e:
            logger.warning(f"Failed to apply {event.kind.value} from {topic}: {e.message}")
            return None
        return event

    def _on_new_comment(self, event: NewCommentEvent) -> None:
        comments: List[Comment] = []
        for data in event.comments:
            try:
                comment = Comment.from_payload(data)
            except CommentStateError as e:
                logger.warning(f"Skipping comment on {event.topic}: {e.message}")
                continue

            store = self._store_for(comment)
            if store is not None:
                stored = store.receive_comment(comment)
                is_new = stored is comment
                if stored is not None:
                    comment = stored
                    store.record_last_comment(stored)
                    if is_new and stored.username_real != self.user_id:
                        store.unread_count += 1
            comments.append(comment)

        if comments:
            self.observers.emit(EventKind.NEW_COMMENT, comments)

    def _store_for(self, comment: Comment) -> Optional[RoomCommentStore]:
        if comment.room_id is not None:
            return self._rooms.get(str(comment.room_id))
        # An echo without room_id belongs to whichever room holds its unique_id.
        for store in self._rooms.values():
            if comment.unique_id in store:
                comment.room_id = store.room_id
                return store
        return None

    def _on_presence(self, event: PresenceEvent) -> None:
        self.presence.apply(event)
        self.observers.emit(EventKind.PRESENCE, event.raw)

    def _on_typing(self, event: TypingEvent) -> None:
        if self.suppress_self_typing and event.username == self.user_id:
            return
        self.presence.apply_typing(event)
        self.observers.emit(
            EventKind.TYPING,
            {"room_id": event.room_id, "username": event.username, "message": event.message},
        )

    def _on_receipt(self, event: ReceiptEvent) -> None:
        store = self._rooms.get(event.room_id)
        if store is not None:
            store.apply_receipt(event.kind.value, event.actor, event.message, self.user_id)
        # Observers get the receipt even when no local comment matched.
        self.observers.emit(event.kind, {"room": event.room, "message": event.message})

    def _on_comment_deleted(self, event: CommentDeletedEvent) -> None:
        for group in event.deleted:
            store = self._rooms.get(group.room_id)
            if store is not None:
                store.delete_comments(group.unique_ids, hard=event.is_hard)
            self.observers.emit(
                EventKind.COMMENT_DELETED,
                {"room_id": group.room_id, "unique_ids": group.unique_ids, "is_hard": event.is_hard},
            )

    def _on_room_cleared(self, event: RoomClearedEvent) -> None:
        for room_id in event.room_ids:
            store = self._rooms.get(room_id)
            if store is not None:
                store.clear()
            self.observers.emit(EventKind.ROOM_CLEARED, {"room_id": room_id})

    def _on_custom_event(self, event: CustomEvent) -> None:
        callback = self._custom_event_callbacks.get(event.room_id)
        if callback is not None:
            try:
                callback(event.payload)
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"Custom event callback for room {event.room_id} failed")
        self.observers.emit(EventKind.CUSTOM_EVENT, {"room_id": event.room_id, "payload": event.payload})

    def _on_connected(self) -> None:
        self.connected = True
        logger.info(f"Realtime connected for {self.user_id}")
        self.observers.emit(CONNECTED)

    def _on_connection_lost(self) -> None:
        self.connected = False
        logger.warning(f"Realtime connection lost for {self.user_id}")
        self.observers.emit(DISCONNECTED)

    # =========================================================================
    # Outbound
    # =========================================================================

    def offline_will(self) -> Tuple[str, str]:
        """``(topic, payload)`` to register as the broker last will."""
        return presence_topic(self.user_id), "0"

    def subscribe_user_channel(self, token: str) -> Callable[[], None]:
        """Subscribe to the user's comment and notification channels."""
        topics = [user_channel_topic(token), notification_topic(token)]
        for topic in topics:
            self.broker.subscribe(topic)

        def unsubscribe() -> None:
            for topic in topics:
                self.broker.unsubscribe(topic)
        return unsubscribe

    def subscribe_room(self, room_id: Union[int, str]) -> None:
        for topic in room_topics(room_id):
            self.broker.subscribe(topic)

    def unsubscribe_room(self, room_id: Union[int, str]) -> None:
        for topic in room_topics(room_id):
            self.broker.unsubscribe(topic)

    def subscribe_user_presence(self, user_id: str) -> None:
        self.broker.subscribe(presence_topic(user_id))

    def unsubscribe_user_presence(self, user_id: str) -> None:
        self.broker.unsubscribe(presence_topic(user_id))

    def publish_presence(self, is_online: bool) -> str:
        """Publish the active user's presence as a retained message."""
        payload = f"{1 if is_online else 0}:{now_millis()}"
        self.broker.publish(presence_topic(self.user_id), payload, retain=True)
        return payload

    def publish_typing(self, room_id: Union[int, str], is_typing: bool) -> None:
        self.broker.publish(room_topic(room_id, self.user_id, "t"), "1" if is_typing else "0")

    def publish_custom_event(self, room_id: Union[int, str], data: Any) -> None:
        payload = json.dumps({"sender": self.user_id, "data": data})
        self.broker.publish(custom_event_topic(room_id), payload)

    def subscribe_custom_event(self, room_id: Union[int, str], callback: Callable[[Any], None]) -> bool:
        """Subscribe to a room's custom events; one callback per room."""
        key = str(room_id)
        if key in self._custom_event_callbacks:
            return False
        self._custom_event_callbacks[key] = callback
        self.broker.subscribe(custom_event_topic(room_id))
        return True

    def unsubscribe_custom_event(self, room_id: Union[int, str]) -> bool:
        key = str(room_id)
        if self._custom_event_callbacks.pop(key, None) is None:
            return False
        self.broker.unsubscribe(custom_event_topic(room_id))
        return True
