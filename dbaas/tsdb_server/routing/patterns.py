"""
Collection name patterns.

Patterns are given at startup as "name:ttl_minutes":
    public:60       exact name, matches only "public"
    events.*:1      wildcard, matches "events.<token>" where token has no dot

Invariants:
    - A pattern has at most one dot, and a wildcard only as a trailing ".*"
    - TTL is a non-negative whole number of minutes
    - Matched names are always usable as a directory name
"""

from __future__ import annotations

from dataclasses import dataclass

from ..snapshot.fragments import is_safe_component

WILDCARD_SUFFIX = ".*"


class InvalidPatternError(ValueError):
    """Collection pattern is not of the form name:ttl or prefix.*:ttl."""

    pass


@dataclass(frozen=True)
class CollectionPattern:
    """A collection matcher with its retention.

    Attributes:
        name: Pattern text without the TTL ("public" or "events.*")
        ttl_minutes: Retention in minutes
    """

    name: str
    ttl_minutes: int

    @classmethod
    def parse(cls, text: str) -> CollectionPattern:
        """Parse "name:ttl_minutes".

        Raises:
            InvalidPatternError: If the text is malformed
        """
        name, sep, ttl_text = text.partition(":")
        if not sep or not name:
            raise InvalidPatternError(f"invalid collection name: {text}")
        if not (ttl_text.isascii() and ttl_text.isdigit()):
            raise InvalidPatternError(f"invalid collection name: {text}")
        if name.count(".") > 1:
            raise InvalidPatternError(f"invalid collection name: {text}")
        if "*" in name and not name.endswith(WILDCARD_SUFFIX):
            raise InvalidPatternError(f"invalid collection name: {text}")
        if name.count("*") > 1:
            raise InvalidPatternError(f"invalid collection name: {text}")

        prefix = name[: -len(WILDCARD_SUFFIX)] if name.endswith(WILDCARD_SUFFIX) else name
        if not prefix or prefix.endswith(".") or not is_safe_component(prefix):
            raise InvalidPatternError(f"invalid collection name: {text}")

        return cls(name=name, ttl_minutes=int(ttl_text))

    @property
    def is_wildcard(self) -> bool:
        return self.name.endswith(WILDCARD_SUFFIX)

    @property
    def ttl_hours(self) -> float:
        return self.ttl_minutes / 60

    def matches(self, collection: str) -> bool:
        """Whether an incoming collection name belongs to this pattern.

        Wildcards compare dot-separated segments: same segment count and
        identical first segment. Exact patterns compare the whole name.
        """
        if not is_safe_component(collection):
            return False
        if not self.is_wildcard:
            return collection == self.name

        parts = collection.split(".")
        pattern_parts = self.name.split(".")
        if len(parts) != len(pattern_parts):
            return False
        return parts[0] == pattern_parts[0] and parts[1] != ""

    def __str__(self) -> str:
        return f"{self.name}:{self.ttl_minutes}"
