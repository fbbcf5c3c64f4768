"""
TSDB Client for Python SDK.

This module provides the main client interface:
- TsdbClient: Authenticated WebSocket connection to a TSDB server
- Point: A record to insert
- Record: A record returned by queries

Example:
    >>> async with TsdbClient("ws://localhost:1985/", "secret") as db:
    ...     await db.insert([Point(ts=1, uid="u", data="x", collection="public")])
    ...     latest = await db.query("public", ts=5)

Invariants:
    - The first frame on a connection is always the api-key
    - Responses are matched to requests by id, so calls may run concurrently
    - A closed socket fails every pending request
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import aiohttp

from .errors import TsdbConnectionError, TsdbError, TsdbTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Point:
    """A record to insert.

    Attributes:
        ts: Seconds since epoch
        uid: User identifier
        data: Opaque payload
        collection: Target collection
    """

    ts: int
    uid: str
    data: str
    collection: str

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts, "uid": self.uid, "data": self.data, "collection": self.collection}


@dataclass(frozen=True)
class Record:
    """A record returned by the server."""

    ts: int
    data: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Record:
        return cls(ts=raw["ts"], data=raw["data"])


class TsdbClient:
    """Async client for the TSDB WebSocket protocol.

    Attributes:
        url: WebSocket URL of the server
        timeout: Seconds to wait for each response
    """

    def __init__(
        self,
        url: str,
        secret_key: str,
        timeout: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Server URL, e.g. ws://localhost:1985/
            secret_key: Shared secret sent as the first message
            timeout: Per-request timeout in seconds
            session: Optional aiohttp session to reuse (not closed by the client)
        """
        self.url = url
        self.timeout = timeout
        self._secret_key = secret_key
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[str, asyncio.Future] = {}

    async def __aenter__(self) -> TsdbClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the socket and authenticate.

        Raises:
            TsdbConnectionError: If the server is unreachable or rejects the key
        """
        if self.is_connected:
            return

        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url)
        except aiohttp.ClientError as e:
            await self._close_session()
            raise TsdbConnectionError(f"Failed to connect: {e}", url=self.url) from e

        self._reader = asyncio.create_task(self._read_loop())
        try:
            await self._request("api-key", self._secret_key, encode=False)
        except TsdbError:
            await self.close()
            raise
        logger.debug("Connected to TSDB server", extra={"url": self.url})

    async def close(self) -> None:
        """Close the socket and fail pending requests."""
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._ws = None
        await self._close_session()

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _read_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                try:
                    response = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON frame from server")
                    continue
                future = self._pending.pop(response.get("id"), None)
                if future is not None and not future.done():
                    future.set_result(response)
        finally:
            error = TsdbConnectionError("Connection closed by server", url=self.url)
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(error)
            self._pending.clear()

    async def _request(self, message_type: str, payload: Any, encode: bool = True) -> dict[str, Any]:
        if not self.is_connected:
            raise TsdbConnectionError("Not connected", url=self.url)

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        envelope = {
            "id": request_id,
            "type": message_type,
            "data": json.dumps(payload) if encode else payload,
        }
        try:
            await self._ws.send_str(json.dumps(envelope))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TsdbTimeoutError(
                f"No response to {message_type} within {self.timeout}s",
                request_id=request_id,
            ) from e
        except ConnectionResetError as e:
            raise TsdbConnectionError(f"Connection lost: {e}", url=self.url) from e
        finally:
            self._pending.pop(request_id, None)

    async def insert(self, points: Iterable[Point]) -> None:
        """Insert a batch of points.

        Raises:
            TsdbConnectionError: If the server rejected the batch
        """
        await self._request("insert", [point.to_dict() for point in points])

    async def query(self, collection: str, ts: int, uid: str | None = None) -> dict[str, Record | None]:
        """Latest record per user at or before ts.

        With uid set, the result has exactly that key, mapped to None when
        the user has no record at or before ts.
        """
        payload: dict[str, Any] = {"ts": ts, "collection": collection}
        if uid:
            payload["uid"] = uid
        response = await self._request("query", payload)
        return {
            key: Record.from_dict(value) if value is not None else None
            for key, value in (response.get("records") or {}).items()
        }

    async def query_user(self, uid: str, from_ts: int, to_ts: int, collection: str) -> list[Record]:
        """Records of one user with from_ts <= ts <= to_ts, oldest first."""
        response = await self._request(
            "query-user",
            {"uid": uid, "from": from_ts, "to": to_ts, "collection": collection},
        )
        return [Record.from_dict(item) for item in response.get("records") or []]

    async def delete_user(self, uid: str, collection: str | None = None) -> None:
        """Delete a user from one collection, or from every collection."""
        payload: dict[str, Any] = {"uid": uid}
        if collection:
            payload["collection"] = collection
        await self._request("delete-user", payload)
