"""Realtime layer: topic classification, presence and event dispatch.

Usage:
    from chatsync.realtime import InMemoryBroker, RealtimeDispatcher

    broker = InMemoryBroker()
    dispatcher = RealtimeDispatcher(broker, user_id="alice@example.com")
    dispatcher.on("new_comment", lambda n: print(n.data))
    broker.connect()
    dispatcher.subscribe_room(42)
"""
from .broker import Broker
from .dispatcher import CONNECTED, DISCONNECTED, RealtimeDispatcher
from .memory_broker import InMemoryBroker
from .mqtt_broker import MqttBroker
from .observers import Observers
from .presence import PresenceRecord, PresenceTracker
from .schemas import (
    CommentDeletedEvent,
    CustomEvent,
    Event,
    EventKind,
    NewCommentEvent,
    Notification,
    PresenceEvent,
    ReceiptEvent,
    RoomClearedEvent,
    TypingEvent,
)
from .topics import TopicClassifier, classify, parse_receipt

__all__ = [
    "Broker",
    "InMemoryBroker",
    "MqttBroker",
    "RealtimeDispatcher",
    "CONNECTED",
    "DISCONNECTED",
    "Observers",
    "PresenceRecord",
    "PresenceTracker",
    "TopicClassifier",
    "classify",
    "parse_receipt",
    # Events
    "Event",
    "EventKind",
    "Notification",
    "NewCommentEvent",
    "PresenceEvent",
    "TypingEvent",
    "ReceiptEvent",
    "CommentDeletedEvent",
    "RoomClearedEvent",
    "CustomEvent",
]
