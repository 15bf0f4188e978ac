import asyncio
import contextlib
import json
import weakref

from aiohttp import web, WSCloseCode, WSMsgType

from .config import Settings
from .errors import ChatRelayError, ValidationError
from .service import ChatService
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.api')

SERVICE_KEY = web.AppKey("service", ChatService)
SETTINGS_KEY = web.AppKey("settings", Settings)
WEBSOCKETS_KEY = web.AppKey("websockets", weakref.WeakSet)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render the error taxonomy as JSON responses."""
    try:
        return await handler(request)
    except ChatRelayError as e:
        logger.warning(f"{request.method} {request.path} -> {e.status}: {e.message}")
        return web.json_response({"error": e.message}, status=e.status)


async def read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def login(request: web.Request) -> web.Response:
    body = await read_json(request)
    user = await request.app[SERVICE_KEY].login(body.get("username"), body.get("password"))
    return web.json_response(user)


async def create_group(request: web.Request) -> web.Response:
    body = await read_json(request)
    group = request.app[SERVICE_KEY].create_group(body.get("groupName"), body.get("userId"))
    return web.json_response(group, status=201)


async def list_groups(request: web.Request) -> web.Response:
    return web.json_response(request.app[SERVICE_KEY].list_groups())


async def history(request: web.Request) -> web.Response:
    group_id = request.match_info["group_id"]
    return web.json_response(request.app[SERVICE_KEY].history(group_id))


async def health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response({
        "status": "ok",
        "connections": len(service.sessions.sessions),
        "rooms": len(service.hub.rooms),
    })


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Persistent event connection.

    Frames in both directions are JSON objects of the form
    {"event": <name>, "data": {...}}. Client frames are handed to
    ChatService.handle_event; a writer task drains the connection's hub
    queue back onto the socket.
    """
    service = request.app[SERVICE_KEY]
    ws = web.WebSocketResponse(heartbeat=request.app[SETTINGS_KEY].heartbeat)
    await ws.prepare(request)
    request.app[WEBSOCKETS_KEY].add(ws)

    connection_id, q = service.connect()

    async def writer():
        while True:
            env = await q.get()
            try:
                await ws.send_json(env)
            except ConnectionError as e:
                logger.warning(f"Writer for connection {connection_id} stopped: {e}")
                return

    writer_task = asyncio.create_task(writer())
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except ValueError:
                    logger.warning(f"Dropped non-JSON frame from connection {connection_id}")
                    continue
                if not isinstance(frame, dict):
                    logger.warning(f"Dropped non-object frame from connection {connection_id}")
                    continue
                logger.debug(f"Connection {connection_id} sent {frame.get('event')}")
                try:
                    service.handle_event(connection_id, frame.get("event"), frame.get("data", {}))
                except Exception:
                    logger.exception(f"Error handling {frame.get('event')} from connection {connection_id}")
            elif msg.type == WSMsgType.ERROR:
                logger.warning(f"Connection {connection_id} closed with error: {ws.exception()}")
    finally:
        writer_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer_task
        service.disconnect(connection_id)
        request.app[WEBSOCKETS_KEY].discard(ws)

    return ws


async def close_websockets(app: web.Application):
    for ws in set(app[WEBSOCKETS_KEY]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


def setup_routes(app: web.Application):
    app.add_routes([
        web.post("/login", login),
        web.post("/groups", create_group),
        web.get("/groups", list_groups),
        web.get("/history/{group_id}", history),
        web.get("/health", health),
        web.get("/ws", websocket_handler),
    ])
