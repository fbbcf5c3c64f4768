"""
API module for the TSDB server.

This module provides the external interface: a single WebSocket endpoint
speaking JSON envelopes, backed by a dispatcher that routes requests to the
per-collection stores.

Invariants:
    - Every connection authenticates with the shared secret first
    - Responses echo the request id
    - Rejected requests close the connection

How to change safely:
    - Add new message types, don't change existing payload shapes
"""

from .dispatcher import Dispatcher, RequestError, parse_envelope
from .models import Envelope
from .ws_server import ConnectionHandler, create_ws_app

__all__ = [
    "Dispatcher",
    "RequestError",
    "parse_envelope",
    "Envelope",
    "ConnectionHandler",
    "create_ws_app",
]
