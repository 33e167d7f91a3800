from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Union

from aiohttp import WSMsgType, web

from .documents import MessageDocument, SERVER_TIMESTAMP
from .errors import DocumentNotFound, ImmutableFieldError, InvalidDocument, StoreError, WriteRejected
from .hub import Subscription
from .service import DocumentService
from .sqlite_backend import SQLiteBackend
from .sqlite_documents import SQLiteDocumentStore

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    InvalidDocument: 400,
    DocumentNotFound: 404,
    ImmutableFieldError: 409,
    WriteRejected: 403,
}


class Runtime:
    def __init__(self, *, service: DocumentService, backend: SQLiteBackend | None = None) -> None:
        self.service = service
        self.backend = backend


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _invalid_request(message: str) -> web.Response:
    return web.json_response({"code": "invalid_request", "message": message}, status=400)


def _store_error(exc: StoreError) -> web.Response:
    status = _STATUS_BY_ERROR.get(type(exc), 400)
    return web.json_response({"code": exc.code, "message": str(exc)}, status=status)


def _with_no_store(response: web.Response) -> web.Response:
    response.headers["Cache-Control"] = "no-store"
    return response


async def _read_body(request: web.Request) -> Dict[str, Any] | None:
    try:
        body = await request.json()
    except Exception:
        return None
    if not isinstance(body, dict):
        return None
    return body


def _snapshot_frame(room_id: str, snapshot: list[MessageDocument]) -> dict[str, Any]:
    return {
        "v": 1,
        "t": "room.snapshot",
        "body": {"room_id": room_id, "messages": [message.to_dict() for message in snapshot]},
    }


async def handle_room_read(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _read_body(request)
    if body is None:
        return _invalid_request("malformed json")
    try:
        room = runtime.service.read_room(body.get("room_id"))
    except StoreError as exc:
        return _store_error(exc)
    return _with_no_store(web.json_response({"room": room.to_dict() if room is not None else None}))


async def handle_room_create_if_absent(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _read_body(request)
    if body is None:
        return _invalid_request("malformed json")
    fields = body.get("fields") or {}
    if not isinstance(fields, dict):
        return _invalid_request("fields must be an object")
    try:
        room, created = runtime.service.create_room_if_absent(body.get("room_id"), fields)
    except StoreError as exc:
        return _store_error(exc)
    return _with_no_store(web.json_response({"room": room.to_dict(), "created": created}))


async def handle_message_append(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _read_body(request)
    if body is None:
        return _invalid_request("malformed json")
    fields = body.get("fields")
    if not isinstance(fields, dict):
        return _invalid_request("fields must be an object")
    fields = {key: value for key, value in fields.items() if value != SERVER_TIMESTAMP}
    try:
        message = runtime.service.append_message(body.get("room_id"), fields)
    except StoreError as exc:
        return _store_error(exc)
    return web.json_response({"message": message.to_dict()})


async def handle_message_update(request: web.Request) -> web.Response:
    runtime: Runtime = request.app["runtime"]
    body = await _read_body(request)
    if body is None:
        return _invalid_request("malformed json")
    message_id = body.get("message_id")
    fields = body.get("fields")
    actor = body.get("actor")
    if not isinstance(message_id, str) or not message_id:
        return _invalid_request("message_id required")
    if not isinstance(fields, dict):
        return _invalid_request("fields must be an object")
    if actor is not None and not isinstance(actor, str):
        return _invalid_request("actor must be a string")
    try:
        message = runtime.service.update_message(body.get("room_id"), message_id, fields, actor=actor)
    except StoreError as exc:
        return _store_error(exc)
    return web.json_response({"message": message.to_dict()})


def create_app(
    *,
    ping_interval_s: int = 30,
    ping_miss_limit: int = 2,
    max_msg_size: int = 1_048_576,
    db_path: str | None = None,
    service: DocumentService | None = None,
) -> web.Application:
    backend: SQLiteBackend | None = None
    if service is None:
        if db_path is not None:
            backend = SQLiteBackend(db_path)
            service = DocumentService(SQLiteDocumentStore(backend))
        else:
            service = DocumentService()

    runtime = Runtime(service=service, backend=backend)
    app = web.Application()
    app["runtime"] = runtime
    app["ws_config"] = {
        "ping_interval_s": ping_interval_s,
        "ping_miss_limit": ping_miss_limit,
        "max_msg_size": max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/v1/rooms/read", handle_room_read)
    app.router.add_post("/v1/rooms/create_if_absent", handle_room_create_if_absent)
    app.router.add_post("/v1/messages/append", handle_message_append)
    app.router.add_post("/v1/messages/update", handle_message_update)
    app.router.add_get("/v1/ws", websocket_handler)
    if backend is not None:
        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app


def _error_frame(code: str, message: str, *, request_id: str | None = None) -> dict[str, Any]:
    return {"v": 1, "t": "error", "id": request_id, "body": {"code": code, "message": message}}


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    runtime: Runtime = request.app["runtime"]
    ws_config: dict[str, Any] = request.app["ws_config"]

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    last_activity = asyncio.get_event_loop().time()
    missed_heartbeats = 0
    outbound: asyncio.Queue[Union[dict, None]] = asyncio.Queue(maxsize=1000)
    subscriptions: Dict[str, Subscription] = {}
    closed = False

    async def close_with_error(message: str) -> None:
        nonlocal closed
        if closed:
            return
        closed = True
        await ws.close(code=1011, message=message.encode("utf-8"))

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = asyncio.get_event_loop().time()
        missed_heartbeats = 0

    def enqueue_frame(frame: dict) -> None:
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            asyncio.create_task(close_with_error("backpressure"))

    async def writer() -> None:
        try:
            while True:
                frame = await outbound.get()
                if frame is None:
                    break
                await ws.send_json(frame)
        except asyncio.CancelledError:
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                now = asyncio.get_event_loop().time()
                if now - last_activity >= ws_config["ping_interval_s"]:
                    await ws.send_json({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = msg.json()
                except Exception:
                    await ws.send_json(_error_frame("invalid_request", "malformed json"))
                    continue
                if not isinstance(frame, dict):
                    await ws.send_json(_error_frame("invalid_request", "frame must be an object"))
                    continue

                mark_activity()
                if frame.get("v") != 1:
                    await ws.send_json(_error_frame("invalid_request", "unsupported version", request_id=frame.get("id")))
                    continue

                frame_type = frame.get("t")
                body = frame.get("body") or {}

                if frame_type == "ping":
                    await ws.send_json({"v": 1, "t": "pong", "id": frame.get("id")})
                elif frame_type == "pong":
                    continue
                elif frame_type == "room.subscribe":
                    room_id = body.get("room_id")
                    if not isinstance(room_id, str) or not room_id:
                        await ws.send_json(_error_frame("invalid_request", "room_id required", request_id=frame.get("id")))
                        continue
                    if room_id in subscriptions:
                        continue

                    def deliver(snapshot, room_id: str = room_id) -> None:
                        enqueue_frame(_snapshot_frame(room_id, list(snapshot)))

                    try:
                        subscriptions[room_id] = runtime.service.subscribe(room_id, deliver)
                    except StoreError as exc:
                        await ws.send_json(_error_frame(exc.code, str(exc), request_id=frame.get("id")))
                        continue
                    logger.debug("subscribed room_id=%s", room_id)
                elif frame_type == "room.unsubscribe":
                    room_id = body.get("room_id")
                    subscription = subscriptions.pop(room_id, None) if isinstance(room_id, str) else None
                    if subscription is not None:
                        runtime.service.unsubscribe(subscription)
                else:
                    await ws.send_json(
                        _error_frame("invalid_request", "unknown frame type", request_id=frame.get("id"))
                    )
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        heartbeat_task.cancel()
        for subscription in subscriptions.values():
            runtime.service.unsubscribe(subscription)
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)

    return ws
