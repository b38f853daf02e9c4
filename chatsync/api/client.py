"""HTTP client for the chat REST API.

Only the calls the comment flow needs live here: posting a comment,
loading a room's comments and reporting read/received positions. The
client does no token refresh and no retries; transport errors propagate
as ``httpx.HTTPError`` and non-200 envelopes as ``ApiError``.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from ..config import ApiSettings
from ..errors import ApiError

logger = logging.getLogger(__name__)

SDK_VERSION = "chatsync-py/0.1.0"


class ChatApiClient:
    """Authenticated calls against ``{base_url}/api/v2/...``.

    Args:
        base_url: API root, e.g. ``https://api.example.com``.
        app_id: Application id sent with every request.
        user_id: Active user id sent with every request.
        token: User token from login.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        app_id: str,
        user_id: str,
        token: str,
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.token = token
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "QISCUS-SDK-APP-ID": app_id,
                "QISCUS-SDK-USER-ID": user_id,
                "QISCUS-SDK-TOKEN": token,
                "QISCUS-SDK-VERSION": SDK_VERSION,
            },
        )

    @classmethod
    def from_settings(
        cls,
        settings: ApiSettings,
        user_id: str,
        token: str,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "ChatApiClient":
        return cls(
            base_url=settings.base_url,
            app_id=settings.app_id,
            user_id=user_id,
            token=token,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _results(self, resp: httpx.Response) -> Dict[str, Any]:
        resp.raise_for_status()
        body = resp.json()
        status = body.get("status", resp.status_code)
        if status != 200:
            raise ApiError(f"API returned status {status}: {body.get('error')}", status_code=status)
        return body.get("results") or {}

    def post_comment(
        self,
        room_id: Union[int, str],
        message: str,
        unique_id: str,
        comment_type: str = "text",
        payload: Optional[Dict[str, Any]] = None,
        extras: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Post a comment; returns the server comment object."""
        data = {
            "token": self.token,
            "comment": message,
            "topic_id": str(room_id),
            "unique_temp_id": unique_id,
            "type": comment_type,
        }
        if payload is not None:
            data["payload"] = json.dumps(payload)
        if extras is not None:
            data["extras"] = json.dumps(extras)

        resp = self._client.post("/api/v2/sdk/post_comment", data=data)
        comment = self._results(resp).get("comment")
        if not isinstance(comment, dict):
            raise ApiError("post_comment response has no comment")
        logger.debug(f"Posted comment {unique_id} to room {room_id}: id={comment.get('id')}")
        return comment

    def load_comments(
        self,
        room_id: Union[int, str],
        last_comment_id: Optional[int] = None,
        limit: Optional[int] = None,
        after: bool = False,
    ) -> List[Dict[str, Any]]:
        """Load comments of a room around ``last_comment_id`` (newest first)."""
        params: Dict[str, Any] = {"token": self.token, "topic_id": str(room_id)}
        if last_comment_id:
            params["last_comment_id"] = last_comment_id
        if limit:
            params["limit"] = limit
        if after:
            params["after"] = "true"
        resp = self._client.get("/api/v2/sdk/load_comments", params=params)
        return self._results(resp).get("comments") or []

    def update_comment_status(
        self,
        room_id: Union[int, str],
        last_read_id: Optional[int] = None,
        last_received_id: Optional[int] = None,
    ) -> None:
        """Report how far the active user has read/received in a room."""
        data: Dict[str, Any] = {"token": self.token, "room_id": str(room_id)}
        if last_read_id:
            data["last_comment_read_id"] = last_read_id
        if last_received_id:
            data["last_comment_received_id"] = last_received_id
        resp = self._client.post("/api/v2/mobile/update_comment_status", data=data)
        self._results(resp)
