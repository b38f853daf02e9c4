"""Broker capability interface.

The realtime dispatcher only needs a handful of broker operations:
subscribe, unsubscribe, publish, and callbacks for inbound messages and
connection changes. Each concrete binding (paho MQTT, in-memory loopback)
implements this interface so the dispatcher never sees a client library's
own message objects.

Usage:
    from chatsync.realtime import InMemoryBroker, RealtimeDispatcher

    broker = InMemoryBroker()
    dispatcher = RealtimeDispatcher(broker, user_id="alice@example.com")
    broker.connect()
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Union

logger = logging.getLogger(__name__)

Payload = Union[str, bytes]
MessageCallback = Callable[[str, Payload], None]
ConnectionCallback = Callable[[], None]


class Broker(ABC):
    """Abstract base class for publish/subscribe broker bindings."""

    def __init__(self) -> None:
        self._message_callbacks: List[MessageCallback] = []
        self._connected_callbacks: List[ConnectionCallback] = []
        self._connection_lost_callbacks: List[ConnectionCallback] = []

    @abstractmethod
    def connect(self) -> None:
        """Open the session; connection callbacks fire once it is up."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session cleanly (no last will)."""

    @abstractmethod
    def subscribe(self, topic: str) -> None:
        """Subscribe to a topic filter (MQTT wildcards allowed)."""

    @abstractmethod
    def unsubscribe(self, topic: str) -> None:
        """Drop a topic filter subscription."""

    @abstractmethod
    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0) -> None:
        """Publish a payload; ``retain`` keeps it for late subscribers."""

    @abstractmethod
    def set_will(self, topic: str, payload: Payload, retain: bool = True) -> None:
        """Register the message the broker publishes if this client drops."""

    # -------------------------------------------------------------------------
    # Callback registration
    # -------------------------------------------------------------------------

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callbacks.append(callback)

    def on_connected(self, callback: ConnectionCallback) -> None:
        self._connected_callbacks.append(callback)

    def on_connection_lost(self, callback: ConnectionCallback) -> None:
        self._connection_lost_callbacks.append(callback)

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    def _emit_message(self, topic: str, payload: Payload) -> None:
        for callback in list(self._message_callbacks):
            callback(topic, payload)

    def _emit_connected(self) -> None:
        for callback in list(self._connected_callbacks):
            callback()

    def _emit_connection_lost(self) -> None:
        for callback in list(self._connection_lost_callbacks):
            callback()
