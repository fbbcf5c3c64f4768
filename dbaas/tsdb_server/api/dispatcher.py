"""
Request dispatcher for the TSDB WebSocket API.

Routes authenticated envelopes to Store operations through the collection
router and builds the response documents.

Invariants:
    - Every response carries the request's id
    - An insert batch is fully validated before any record is written
    - Queries never fail for missing data; they return empty results
    - Any malformed or unroutable request raises RequestError

How to change safely:
    - Add new message types to the handler table, keep existing shapes
    - Handlers run in the default executor; keep them free of event-loop calls
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..routing import CollectionNotFoundError, CollectionRouter
from ..store import InvalidUidError, Store, StoreClosedError
from .models import (
    DELETE_USER,
    INSERT,
    QUERY,
    QUERY_USER,
    DeleteUserRequest,
    Envelope,
    InsertBatch,
    QueryRequest,
    QueryUserRequest,
)

logger = logging.getLogger(__name__)


class RequestError(Exception):
    """Request was rejected; the connection should be closed."""

    pass


def parse_envelope(raw: str | bytes) -> Envelope:
    """Parse an outer frame.

    Raises:
        RequestError: If the frame is not a valid envelope
    """
    try:
        return Envelope.model_validate_json(raw)
    except ValidationError as e:
        raise RequestError(f"invalid envelope: {_summarize(e)}") from e


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "body"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def _parse(model: type[BaseModel] | TypeAdapter, data: str) -> Any:
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_json(data)
        return model.model_validate_json(data)
    except ValidationError as e:
        raise RequestError(f"invalid payload: {_summarize(e)}") from e


class Dispatcher:
    """Maps message types to store operations.

    Attributes:
        router: CollectionRouter resolving collection names to stores

    Example:
        >>> dispatcher = Dispatcher(router)
        >>> await dispatcher.dispatch(Envelope(id="1", type="query", data='{"ts":5,"collection":"public"}'))
        {'id': '1', 'records': {...}}
    """

    def __init__(self, router: CollectionRouter) -> None:
        self.router = router
        self._handlers: dict[str, Callable[[str, str], dict[str, Any]]] = {
            INSERT: self.handle_insert,
            QUERY: self.handle_query,
            QUERY_USER: self.handle_query_user,
            DELETE_USER: self.handle_delete_user,
        }

    async def dispatch(self, envelope: Envelope) -> dict[str, Any]:
        """Run the handler for envelope.type off the event loop.

        Raises:
            RequestError: If the type is unknown or the request is rejected
        """
        handler = self._handlers.get(envelope.type)
        if handler is None:
            raise RequestError(f"invalid message type: {envelope.type}")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, handler, envelope.id, envelope.data)

    def _resolve(self, collection: str) -> Store:
        try:
            return self.router.resolve(collection)
        except CollectionNotFoundError as e:
            raise RequestError(str(e)) from e

    def _lookup(self, collection: str) -> Store | None:
        try:
            return self.router.get(collection)
        except CollectionNotFoundError as e:
            raise RequestError(str(e)) from e

    def handle_insert(self, request_id: str, data: str) -> dict[str, Any]:
        items = _parse(InsertBatch, data)

        targets = []
        for item in items:
            store = self._resolve(item.collection)
            try:
                store.check_uid(item.uid)
            except InvalidUidError as e:
                raise RequestError(str(e)) from e
            targets.append((store, item))

        try:
            for store, item in targets:
                store.insert(item.uid, item.ts, item.data)
        except StoreClosedError as e:
            raise RequestError(str(e)) from e

        logger.debug(f"Inserted {len(targets)} records", extra={"request_id": request_id})
        return {"id": request_id}

    def handle_query(self, request_id: str, data: str) -> dict[str, Any]:
        query = _parse(QueryRequest, data)
        store = self._lookup(query.collection)

        if store is None:
            return {"id": request_id, "records": {query.uid: None} if query.uid else {}}

        if query.uid:
            record = store.get_latest_for_user(query.uid, query.ts)
            records = {query.uid: record.to_dict() if record else None}
        else:
            records = {
                uid: record.to_dict() for uid, record in store.get_all_latest(query.ts).items()
            }
        return {"id": request_id, "records": records}

    def handle_query_user(self, request_id: str, data: str) -> dict[str, Any]:
        query = _parse(QueryUserRequest, data)
        store = self._lookup(query.collection)

        if store is None:
            return {"id": request_id, "records": []}

        records = store.get_range(query.uid, query.from_ts, query.to_ts)
        return {"id": request_id, "records": [record.to_dict() for record in records]}

    def handle_delete_user(self, request_id: str, data: str) -> dict[str, Any]:
        query = _parse(DeleteUserRequest, data)

        if not query.collection:
            deleted = self.router.delete_user(query.uid)
            logger.info(
                f"Deleted user {query.uid} from {deleted} collections",
                extra={"request_id": request_id},
            )
            return {"id": request_id}

        store = self._lookup(query.collection)
        if store is not None:
            store.delete_user(query.uid)
            logger.info(
                f"Deleted user {query.uid} from {query.collection}",
                extra={"request_id": request_id},
            )
        return {"id": request_id}
