"""aiohttp client for the room document service."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from roomchat.models import Room
from roomchat.redact import redact_mapping
from roomchat.remote import (
    ErrorCallback,
    RemoteStore,
    RemoteStoreError,
    SnapshotCallback,
    SubscriptionHandle,
)

logger = logging.getLogger(__name__)


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _ws_url(base_url: str) -> str:
    url = _build_url(base_url, "/v1/ws")
    if url.startswith("https://"):
        return "wss://" + url[len("https://") :]
    if url.startswith("http://"):
        return "ws://" + url[len("http://") :]
    return url


class GatewayRemoteStore(RemoteStore):
    """Remote store over HTTP for reads/writes and one WebSocket per subscription."""

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        max_reconnects: int = 3,
        reconnect_delay_s: float = 1.0,
    ) -> None:
        self.base_url = base_url
        self._session = session
        self._owns_session = session is None
        self.max_reconnects = max_reconnects
        self.reconnect_delay_s = reconnect_delay_s
        self._tasks: set[asyncio.Task] = set()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._ensure_session()
        url = _build_url(self.base_url, path)
        try:
            async with session.post(url, json=payload) as response:
                raw = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("request failed path=%s payload=%s error=%s", path, redact_mapping(payload), exc)
            raise RemoteStoreError("unavailable", str(exc) or type(exc).__name__) from exc

        try:
            data = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise RemoteStoreError("invalid_response", "malformed json", status) from exc
        if not isinstance(data, dict):
            raise RemoteStoreError("invalid_response", "expected a JSON object", status)
        if status >= 400:
            raise RemoteStoreError(str(data.get("code") or "error"), str(data.get("message") or ""), status)
        return data

    async def read_room(self, room_id: str) -> Optional[Room]:
        response = await self._post_json("/v1/rooms/read", {"room_id": room_id})
        room = response.get("room")
        return Room.from_dict(room) if isinstance(room, dict) else None

    async def create_room_if_absent(self, room_id: str, fields: Mapping[str, Any]) -> tuple[Room, bool]:
        response = await self._post_json(
            "/v1/rooms/create_if_absent",
            {"room_id": room_id, "fields": dict(fields)},
        )
        room = response.get("room")
        if not isinstance(room, dict):
            raise RemoteStoreError("invalid_response", "room missing from response")
        return Room.from_dict(room), bool(response.get("created"))

    async def append(self, room_id: str, fields: Mapping[str, Any]) -> str:
        response = await self._post_json("/v1/messages/append", {"room_id": room_id, "fields": dict(fields)})
        message = response.get("message")
        if not isinstance(message, dict) or not message.get("id"):
            raise RemoteStoreError("invalid_response", "message missing from response")
        return str(message["id"])

    async def update_fields(
        self,
        room_id: str,
        message_id: str,
        fields: Mapping[str, Any],
        actor: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"room_id": room_id, "message_id": message_id, "fields": dict(fields)}
        if actor is not None:
            payload["actor"] = actor
        await self._post_json("/v1/messages/update", payload)

    def subscribe_ordered(
        self,
        room_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> SubscriptionHandle:
        task = asyncio.get_running_loop().create_task(self._tail(room_id, on_snapshot, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SubscriptionHandle(task.cancel)

    async def _tail(self, room_id: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> None:
        reconnects = 0
        while True:
            delivered = False

            def deliver(messages: list) -> None:
                nonlocal delivered
                delivered = True
                on_snapshot(messages)

            try:
                await self._tail_once(room_id, deliver, on_error)
                error: Exception = RemoteStoreError("closed", "subscription stream closed")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("subscription failed room_id=%s error=%r", room_id, exc)
                error = exc
            on_error(error)
            if delivered:
                reconnects = 0
            if reconnects >= self.max_reconnects:
                return
            reconnects += 1
            await asyncio.sleep(self.reconnect_delay_s)

    async def _tail_once(self, room_id: str, on_snapshot: SnapshotCallback, on_error: ErrorCallback) -> None:
        session = self._ensure_session()
        async with session.ws_connect(_ws_url(self.base_url)) as ws:
            await ws.send_json({"v": 1, "t": "room.subscribe", "body": {"room_id": room_id}})
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        frame = msg.json()
                    except ValueError:
                        continue
                    if not isinstance(frame, dict):
                        continue
                    frame_type = frame.get("t")
                    body = frame.get("body")
                    if not isinstance(body, dict):
                        if frame_type in {"room.snapshot", "error"}:
                            raise RemoteStoreError("invalid_response", f"malformed {frame_type} frame")
                        body = {}
                    if frame_type == "room.snapshot" and body.get("room_id") == room_id:
                        messages = body.get("messages")
                        if not isinstance(messages, list):
                            raise RemoteStoreError("invalid_response", "snapshot without messages")
                        on_snapshot(messages)
                    elif frame_type == "ping":
                        await ws.send_json({"v": 1, "t": "pong", "id": frame.get("id")})
                    elif frame_type == "error":
                        on_error(RemoteStoreError(str(body.get("code") or "error"), str(body.get("message") or "")))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise aiohttp.ClientConnectionError(str(ws.exception() or "websocket error"))
                else:
                    break

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
