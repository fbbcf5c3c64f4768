"""
Snapshot module for the TSDB server.

This module handles durable copies of the in-memory stores:
- Fragment files under <root>/<collection>/<uid>/<unix_seconds>.json
- The maintenance loop that sweeps expired users and flushes new records

Invariants:
    - Fragments are append-only; a flush never rewrites older fragments
    - Each record is written at most once per flush in which it is new
"""

from .fragments import FragmentDecodeError, SnapshotError
from .snapshotter import CycleStats, Snapshotter

__all__ = ["Snapshotter", "CycleStats", "SnapshotError", "FragmentDecodeError"]
