"""
Routing module for the TSDB server.

Resolves incoming collection names against the patterns registered at
startup and hands out the one Store that owns each collection.

Invariants:
    - One Store per collection name
    - Unregistered names are rejected, never silently created
"""

from .patterns import CollectionPattern, InvalidPatternError
from .router import CollectionNotFoundError, CollectionRouter

__all__ = [
    "CollectionPattern",
    "InvalidPatternError",
    "CollectionRouter",
    "CollectionNotFoundError",
]
