"""
WebSocket server implementation for the TSDB server.

One endpoint, "/", upgraded to a WebSocket. Each connection is an
independent session:
1. The first frame must be an api-key envelope whose data equals the shared
   secret (constant-time comparison)
2. Every following frame is dispatched by type and answered with one text
   frame carrying the same id

Invariants:
    - No response is written before the connection has authenticated
    - Any rejected request or failed auth closes the connection
    - Any other path returns 404

How to change safely:
    - Keep the envelope shape; deployed clients depend on it
    - Keep auth checks before dispatch
"""

from __future__ import annotations

import hmac
import json
import logging
import weakref
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from ..routing import CollectionRouter
from .dispatcher import Dispatcher, RequestError, parse_envelope
from .models import API_KEY

logger = logging.getLogger(__name__)

CONNECTIONS_KEY = web.AppKey("connections", weakref.WeakSet)


def create_ws_app(
    router: CollectionRouter,
    secret_key: str,
    dispatcher: Dispatcher | None = None,
) -> web.Application:
    """Create the aiohttp application serving the WebSocket endpoint.

    Args:
        router: CollectionRouter shared by every connection
        secret_key: Shared secret clients must present first
        dispatcher: Optional dispatcher (built from router if not provided)

    Returns:
        aiohttp Application instance
    """
    if not secret_key:
        raise ValueError("secret_key must not be empty")

    app = web.Application()
    app[CONNECTIONS_KEY] = weakref.WeakSet()

    handler = ConnectionHandler(dispatcher or Dispatcher(router), secret_key)
    app.router.add_get("/", handler.handle)
    app.on_shutdown.append(_close_connections)
    return app


async def _close_connections(app: web.Application) -> None:
    for ws in set(app[CONNECTIONS_KEY]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


class ConnectionHandler:
    """Serves one WebSocket session per request.

    Attributes:
        dispatcher: Routes authenticated envelopes to store operations
    """

    def __init__(self, dispatcher: Dispatcher, secret_key: str) -> None:
        self.dispatcher = dispatcher
        self._secret = secret_key.encode("utf-8")

    def check_key(self, candidate: str) -> bool:
        return hmac.compare_digest(candidate.encode("utf-8"), self._secret)

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        peer = request.remote
        logger.info("WebSocket connection received", extra={"peer": peer})
        connections = request.app[CONNECTIONS_KEY]
        connections.add(ws)

        try:
            await self._serve(ws, peer)
        finally:
            connections.discard(ws)
            await ws.close()

        logger.info("WebSocket connection closed", extra={"peer": peer})
        return ws

    async def _serve(self, ws: web.WebSocketResponse, peer: str | None) -> None:
        authenticated = False

        async for msg in ws:
            if msg.type not in (WSMsgType.TEXT, WSMsgType.BINARY):
                logger.warning(f"Error reading message: {ws.exception()}", extra={"peer": peer})
                break

            try:
                envelope = parse_envelope(msg.data)
                if envelope.type == API_KEY:
                    if not self.check_key(envelope.data):
                        logger.warning("Invalid API key", extra={"peer": peer})
                        break
                    authenticated = True
                    response: dict[str, Any] = {"id": envelope.id}
                elif not authenticated:
                    logger.warning("API key is required", extra={"peer": peer})
                    break
                else:
                    response = await self.dispatcher.dispatch(envelope)
            except RequestError as e:
                logger.warning(f"Error processing message: {e}", extra={"peer": peer})
                break

            payload = json.dumps(response, separators=(",", ":"))
            await ws.send_str(payload)
            logger.debug(f"Sent response {len(payload)}", extra={"peer": peer})
