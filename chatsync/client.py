"""chatsync client entry point.

Wires the pieces together for one logged-in user:

    - settings + logging (chatsync.config)
    - a Broker binding (paho MQTT unless one is injected)
    - the RealtimeDispatcher and its PresenceTracker
    - the REST client and the CommentService

Usage:
    client = ChatClient(user_id="alice@example.com", token="...")
    client.on("new_comment", lambda n: print(n.data))
    client.connect()
    room = client.open_room(42)
    client.send_comment(42, "hello")
"""
import logging
import uuid
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx

from .api.client import ChatApiClient
from .comments.schemas import Comment
from .comments.service import CommentService
from .comments.store import RoomCommentStore
from .config import AppSettings, configure_logging, get_config
from .errors import ConfigError
from .realtime.broker import Broker
from .realtime.dispatcher import CONNECTED, RealtimeDispatcher
from .realtime.mqtt_broker import MqttBroker
from .realtime.observers import Observer
from .realtime.presence import PresenceTracker

logger = logging.getLogger(__name__)


class ChatClient:
    """One user's chat session: realtime events plus outgoing comments."""

    def __init__(
        self,
        user_id: str,
        token: Optional[str] = None,
        username: Optional[str] = None,
        avatar: Optional[str] = None,
        settings: Optional[AppSettings] = None,
        broker: Optional[Broker] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings or get_config()
        configure_logging(self.settings)

        self.user_id = user_id
        self.token = token or self.settings.secrets.user_token
        if not self.token:
            raise ConfigError("A user token is required (argument or secrets.user_token)")

        realtime_settings = self.settings.realtime
        self.broker = broker or MqttBroker(
            realtime_settings.broker_url,
            client_id=f"{realtime_settings.client_id_prefix}-{uuid.uuid4().hex[:12]}",
            keepalive=realtime_settings.keepalive,
        )
        self.presence = PresenceTracker()
        self.realtime = RealtimeDispatcher.from_settings(
            self.broker, user_id, realtime_settings, presence=self.presence
        )
        self.api = ChatApiClient.from_settings(self.settings.api, user_id, self.token, transport=transport)
        self.comments = CommentService(self.api, user_id, username=username, avatar=avatar)

        will_topic, will_payload = self.realtime.offline_will()
        self.broker.set_will(will_topic, will_payload, retain=True)
        self.realtime.subscribe_user_channel(self.token)
        self.realtime.on(CONNECTED, self._announce_online)

    def _announce_online(self, notification) -> None:
        self.realtime.publish_presence(True)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        logger.info(f"Connecting realtime session for {self.user_id}")
        self.broker.connect()

    def close(self) -> None:
        """Publish offline presence, disconnect and release the HTTP client."""
        if self.realtime.connected:
            self.realtime.publish_presence(False)
        self.broker.disconnect()
        self.api.close()

    def on(self, kind: str, callback: Observer) -> Callable[[], None]:
        return self.realtime.on(kind, callback)

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    def open_room(self, room: Union[int, str, Mapping[str, Any]]) -> RoomCommentStore:
        """Register a room store and subscribe to its typing/receipt topics.

        Args:
            room: A room id, or a room object from the room API.
        """
        if isinstance(room, Mapping):
            store = RoomCommentStore.from_payload(room)
        else:
            store = self.realtime.get_room(room) or RoomCommentStore(room)
        self.realtime.register_room(store)
        self.realtime.subscribe_room(store.room_id)
        return store

    def close_room(self, room_id: Union[int, str]) -> Optional[RoomCommentStore]:
        self.realtime.unsubscribe_room(room_id)
        return self.realtime.unregister_room(room_id)

    def _room(self, room_id: Union[int, str]) -> RoomCommentStore:
        store = self.realtime.get_room(room_id)
        if store is None:
            raise KeyError(f"Room {room_id} is not open")
        return store

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def send_comment(
        self,
        room_id: Union[int, str],
        message: str,
        comment_type: str = "text",
        payload: Optional[Dict[str, Any]] = None,
        extras: Optional[Dict[str, Any]] = None,
    ) -> Comment:
        return self.comments.send_comment(
            self._room(room_id), message, comment_type=comment_type, payload=payload, extras=extras
        )

    def resend_comment(self, room_id: Union[int, str], comment: Comment) -> Comment:
        return self.comments.resend_comment(self._room(room_id), comment)

    def load_comments(self, room_id: Union[int, str], last_comment_id: Optional[int] = None):
        return self.comments.load_comments(self._room(room_id), last_comment_id=last_comment_id)

    def mark_room_read(self, room_id: Union[int, str]) -> None:
        self.comments.mark_room_read(self._room(room_id))

    def publish_typing(self, room_id: Union[int, str], is_typing: bool) -> None:
        self.realtime.publish_typing(room_id, is_typing)
