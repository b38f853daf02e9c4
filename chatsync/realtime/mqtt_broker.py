"""paho-mqtt binding of the Broker interface.

Supports ``tcp://``/``mqtt://``, ``ssl://``/``mqtts://`` and
``ws://``/``wss://`` broker URLs. Subscriptions are remembered and replayed
after every (re)connect, since a clean session loses them.

Note:
    paho runs callbacks on its network thread (``loop_start``). That thread
    is the single delivery path into the dispatcher.
"""
import logging
import uuid
from typing import List, Optional, Set
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from .broker import Broker, Payload

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {
    "tcp": 1883,
    "mqtt": 1883,
    "ssl": 8883,
    "mqtts": 8883,
    "ws": 80,
    "wss": 443,
}
_TLS_SCHEMES = {"ssl", "mqtts", "wss"}
_WEBSOCKET_SCHEMES = {"ws", "wss"}


class MqttBroker(Broker):
    """Broker backed by a paho ``Client``.

    Args:
        broker_url: e.g. ``wss://mqtt.example.com:1886/mqtt``.
        client_id: MQTT client id; a random one is generated when omitted.
        keepalive: Keepalive interval in seconds.
        flush_timeout: Seconds ``disconnect`` waits for queued publishes.
    """

    def __init__(
        self,
        broker_url: str,
        client_id: Optional[str] = None,
        keepalive: int = 60,
        flush_timeout: float = 2.0,
    ) -> None:
        super().__init__()
        parsed = urlparse(broker_url)
        scheme = parsed.scheme or "tcp"
        if scheme not in _DEFAULT_PORTS:
            raise ValueError(f"Unsupported broker URL scheme: {scheme!r}")

        self.host = parsed.hostname or "localhost"
        self.port = parsed.port or _DEFAULT_PORTS[scheme]
        self.keepalive = keepalive
        self.client_id = client_id or f"chatsync-{uuid.uuid4().hex[:12]}"
        self.flush_timeout = flush_timeout
        self._subscriptions: Set[str] = set()
        # Publishes handed to paho but not yet written to the socket
        self._unflushed: List[mqtt.MQTTMessageInfo] = []
        self.connected = False

        transport = "websockets" if scheme in _WEBSOCKET_SCHEMES else "tcp"
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            transport=transport,
        )
        if transport == "websockets":
            self._client.ws_set_options(path=parsed.path or "/mqtt")
        if scheme in _TLS_SCHEMES:
            self._client.tls_set()

        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """Open the connection and start paho's network loop."""
        logger.info("Connecting to MQTT broker %s:%s as %s", self.host, self.port, self.client_id)
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()

    def disconnect(self) -> None:
        """Clean disconnect; the broker does not publish the will.

        Queued publishes (e.g. offline presence) are flushed first.
        """
        for info in self._unflushed:
            if not info.is_published():
                info.wait_for_publish(timeout=self.flush_timeout)
        self._unflushed.clear()
        self._client.disconnect()
        self._client.loop_stop()
        self.connected = False

    def set_will(self, topic: str, payload: Payload, retain: bool = True) -> None:
        self._client.will_set(topic, payload, qos=0, retain=retain)

    # -------------------------------------------------------------------------
    # Broker operations
    # -------------------------------------------------------------------------

    def subscribe(self, topic: str) -> None:
        self._subscriptions.add(topic)
        if self.connected:
            self._client.subscribe(topic)

    def unsubscribe(self, topic: str) -> None:
        self._subscriptions.discard(topic)
        if self.connected:
            self._client.unsubscribe(topic)

    def publish(self, topic: str, payload: Payload, retain: bool = False, qos: int = 0) -> None:
        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("Publish to %s failed: %s", topic, mqtt.error_string(info.rc))
            return
        self._unflushed = [i for i in self._unflushed if not i.is_published()]
        self._unflushed.append(info)

    # -------------------------------------------------------------------------
    # paho callbacks
    # -------------------------------------------------------------------------

    def _handle_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self.connected = True
        logger.info("Connected to MQTT broker %s:%s", self.host, self.port)
        for topic in sorted(self._subscriptions):
            client.subscribe(topic)
        self._emit_connected()

    def _handle_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self.connected = False
        logger.warning("Disconnected from MQTT broker: %s", reason_code)
        self._emit_connection_lost()

    def _handle_message(self, client, userdata, message) -> None:
        self._emit_message(message.topic, message.payload)
