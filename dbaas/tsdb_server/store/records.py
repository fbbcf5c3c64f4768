"""
Record and per-user log types for the TSDB store.

A UserLog is the chronologically ordered history of one uid inside one
collection. All lookups are binary searches over a parallel list of
timestamps, so range and latest-at-ts queries are O(log n).

Invariants:
    - Timestamps are strictly increasing (ts is unique within a log)
    - has_changed is true iff at least one record has is_new set
    - Records handed out of a log are copies, never aliases

How to change safely:
    - Keep _timestamps in lockstep with _records on every mutation
    - Never flip is_new from False to True on an overwrite
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Record:
    """A single timestamped payload.

    Attributes:
        ts: Seconds since epoch
        data: Opaque payload, stored and returned verbatim
        is_new: True until the record has been written to a snapshot fragment
    """

    ts: int
    data: str
    is_new: bool = field(default=False, compare=False, repr=False)

    def copy(self) -> Record:
        """Detached copy carrying only the persisted fields."""
        return Record(ts=self.ts, data=self.data)

    def to_dict(self) -> dict[str, Any]:
        """Wire and on-disk representation."""
        return {"ts": self.ts, "data": self.data}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Record:
        """Build a record from its wire/on-disk representation.

        Raises:
            ValueError: If ts is not an integer or data is not a string
        """
        ts = raw.get("ts")
        data = raw.get("data")
        if not isinstance(ts, int) or isinstance(ts, bool):
            raise ValueError(f"record ts must be an integer, got {ts!r}")
        if not isinstance(data, str):
            raise ValueError(f"record data must be a string, got {type(data).__name__}")
        return cls(ts=ts, data=data)


class UserLog:
    """Sorted record sequence for one uid.

    Not thread-safe on its own; the owning Store's lock guards every log.

    Example:
        >>> log = UserLog()
        >>> log.insert_or_replace(5, "a", mark_new=True)
        True
        >>> log.upper_bound_index(10)
        0
    """

    __slots__ = ("_records", "_timestamps", "has_changed")

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._records: list[Record] = []
        self._timestamps: list[int] = []
        self.has_changed = False
        for record in records:
            self.insert_or_replace(record.ts, record.data, mark_new=record.is_new)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __getitem__(self, index: int) -> Record:
        return self._records[index]

    @property
    def first(self) -> Record | None:
        return self._records[0] if self._records else None

    @property
    def last(self) -> Record | None:
        return self._records[-1] if self._records else None

    def lower_bound_index(self, min_ts: int) -> int:
        """Smallest index with ts >= min_ts, or -1 if there is none."""
        index = bisect_left(self._timestamps, min_ts)
        return index if index < len(self._timestamps) else -1

    def upper_bound_index(self, max_ts: int) -> int:
        """Largest index with ts <= max_ts, or -1 if there is none."""
        return bisect_right(self._timestamps, max_ts) - 1

    def insert_or_replace(self, ts: int, data: str, mark_new: bool) -> bool:
        """Insert a record, overwriting the payload of an existing ts.

        An overwrite keeps the existing is_new flag, so replaying data that is
        already on disk does not make the log dirty again.

        Returns:
            True if a new record was spliced in, False if one was overwritten
        """
        index = bisect_left(self._timestamps, ts)
        if index < len(self._timestamps) and self._timestamps[index] == ts:
            self._records[index].data = data
            return False

        self._records.insert(index, Record(ts=ts, data=data, is_new=mark_new))
        self._timestamps.insert(index, ts)
        if mark_new:
            self.has_changed = True
        return True

    def slice(self, start: int, end: int) -> list[Record]:
        """Copies of records start..end inclusive."""
        return [record.copy() for record in self._records[start : end + 1]]

    def take_new(self) -> list[Record]:
        """Copy out every dirty record and clear the dirty bits in place."""
        batch = []
        if not self.has_changed:
            return batch
        for record in self._records:
            if record.is_new:
                batch.append(record.copy())
                record.is_new = False
        self.has_changed = False
        return batch

    def mark_new(self, timestamps: Iterable[int]) -> int:
        """Set is_new again on records still present at the given timestamps.

        Returns:
            Number of records re-flagged
        """
        flagged = 0
        for ts in timestamps:
            index = bisect_left(self._timestamps, ts)
            if index < len(self._timestamps) and self._timestamps[index] == ts:
                self._records[index].is_new = True
                flagged += 1
        if flagged:
            self.has_changed = True
        return flagged
