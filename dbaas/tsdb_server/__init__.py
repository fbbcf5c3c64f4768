"""
TSDB Server - in-memory per-user time-series store over WebSocket.

This package implements a small record store built on:
- Collections, each owned by one Store keyed by uid
- Per-user logs sorted by timestamp with O(log n) lookups
- Incremental snapshot fragments on local disk

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────┐
    │   Client    │────▶│  WebSocket  │────▶│ Dispatcher  │
    │   (SDK)     │     │   Server    │     └──────┬──────┘
    └─────────────┘     └─────────────┘            │
                                                   ▼
                                           ┌─────────────┐
                                           │   Router    │
                                           └──────┬──────┘
                                                  │
                        ┌─────────────────────────┼─────────────┐
                        ▼                         ▼             ▼
                   ┌─────────┐              ┌─────────┐    ┌─────────┐
                   │  Store  │              │  Store  │    │  Store  │
                   └────┬────┘              └────┬────┘    └────┬────┘
                        │      Snapshotter       │              │
                        ▼   (sweep + flush)      ▼              ▼
                   <root>/<collection>/<uid>/<unix_seconds>.json

Invariants:
    - One Store per collection name
    - Records within a user log are strictly ordered by ts
    - A record is written to disk at most once after it becomes new
    - TTL removes whole user histories, never single records

How to change safely:
    - The on-disk layout and wire format are shared with other deployments
    - New message types must not change existing payload shapes
"""

from ._version import __version__

__all__ = ["__version__"]
