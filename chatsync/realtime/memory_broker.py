"""In-process loopback broker for tests and offline development.

Behaves like a single-client MQTT session:

    - topic filters use MQTT wildcard matching (``+`` and ``#``)
    - retained messages are delivered to later subscribers; publishing an
      empty retained payload clears the topic
    - a published message is looped back to this client when one of its
      subscriptions matches
    - ``drop_connection`` publishes the registered last will

``deliver`` simulates the server pushing a message to this client.
"""
import logging
from typing import Dict, List, Optional, Set, Tuple

from paho.mqtt.client import topic_matches_sub

from .broker import Broker, Payload

logger = logging.getLogger(__name__)


class InMemoryBroker(Broker):
    """Loopback broker that never touches the network."""

    def __init__(self) -> None:
        super().__init__()
        self.connected = False
        self.subscriptions: Set[str] = set()
        self.retained: Dict[str, Payload] = {}
        # (topic, payload, retain) for every publish, oldest first
        self.published: List[Tuple[str, Payload, bool]] = []
        self.will: Optional[Tuple[str, Payload, bool]] = None

    def connect(self) -> None:
        self.connected = True
        logger.debug("In-memory broker connected")
        self._emit_connected()

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.connected = False
        self._emit_connection_lost()

    def drop_connection(self) -> None:
        """Lose the connection without a clean disconnect; publishes the will."""
        if not self.connected:
            return
        self.connected = False
        if self.will is not None:
            topic, payload, retain = self.will
            self.published.append((topic, payload, retain))
            if retain:
                self._retain(topic, payload)
        self._emit_connection_lost()

    def subscribe(self, topic: str) -> None:
        self.subscriptions.add(topic)
        if not self.connected:
            return
        for retained_topic, payload in list(self.retained.items()):
            if topic_matches_sub(topic, retained_topic):
                self._emit_message(retained_topic, payload)

    def unsubscribe(self, topic: str) -> None:
        self.subscriptions.discard(topic)

    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0) -> None:
        if not self.connected:
            raise ConnectionError(f"Cannot publish to {topic!r}: broker not connected")
        self.published.append((topic, payload, retain))
        if retain:
            self._retain(topic, payload)
        self.deliver(topic, payload)

    def set_will(self, topic: str, payload: Payload, retain: bool = True) -> None:
        self.will = (topic, payload, retain)

    def deliver(self, topic: str, payload: Payload) -> bool:
        """Push a message to this client if a subscription matches.

        Returns:
            True if the message was delivered.
        """
        if not self.connected:
            return False
        if not any(topic_matches_sub(sub, topic) for sub in self.subscriptions):
            return False
        self._emit_message(topic, payload)
        return True

    def _retain(self, topic: str, payload: Payload) -> None:
        if payload in ("", b""):
            self.retained.pop(topic, None)
        else:
            self.retained[topic] = payload
