"""
TSDB Python SDK - Client library for the TSDB WebSocket server.

This SDK wraps the JSON envelope protocol:
- TsdbClient for connecting and authenticating
- Point for inserts, Record for query results
- Typed errors for closed connections and timeouts

Example:
    >>> from tsdb_sdk import TsdbClient, Point
    >>>
    >>> async with TsdbClient("ws://localhost:1985/", "secret") as db:
    ...     await db.insert([Point(ts=1, uid="u", data="x", collection="public")])
    ...     records = await db.query_user("u", 0, 10, "public")

Invariants:
    - Every request is answered by id or fails with an error
    - The server closes the connection on any rejected request

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import Point, Record, TsdbClient
from .errors import TsdbConnectionError, TsdbError, TsdbTimeoutError

__all__ = [
    "TsdbClient",
    "Point",
    "Record",
    "TsdbError",
    "TsdbConnectionError",
    "TsdbTimeoutError",
]
