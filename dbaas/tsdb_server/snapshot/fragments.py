"""
Snapshot fragment I/O.

Durable layout:
    <storage_root>/<collection>/<uid>/<unix_seconds>.json

Each fragment is a JSON array of {"ts": int, "data": str} holding the records
that became dirty since the previous flush. Fragments are only ever added or
merged, never truncated, and a user's history is the union of all of its
fragments read in lexicographic order (later files win equal ts).

Invariants:
    - A fragment appears atomically (written to .tmp, then os.replace)
    - Files not ending in .json are ignored on load
    - Path components never contain separators or dot-only names

How to change safely:
    - The layout and JSON shape are shared with other deployments; keep them
    - Test load against fragments produced by older builds
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Iterable, Iterator
from pathlib import Path

from ..store.records import Record

logger = logging.getLogger(__name__)

FRAGMENT_SUFFIX = ".json"
_TMP_SUFFIX = ".tmp"


class SnapshotError(Exception):
    """Snapshot tree could not be read or written."""

    pass


class FragmentDecodeError(SnapshotError):
    """Fragment file content is not a JSON array of records."""

    pass


def is_safe_component(name: str) -> bool:
    """Whether name can be used as a single directory name under the root."""
    if not name or name in (".", ".."):
        return False
    return not any(sep in name for sep in ("/", "\\", "\x00"))


def _component(name: str) -> str:
    if not is_safe_component(name):
        raise SnapshotError(f"Unsafe path component: {name!r}")
    return name


def collection_dir(root: str | Path, collection: str) -> Path:
    return Path(root) / _component(collection)


def user_dir(root: str | Path, collection: str, uid: str) -> Path:
    return collection_dir(root, collection) / _component(uid)


def fragment_name(ts: int) -> str:
    return f"{ts}{FRAGMENT_SUFFIX}"


def encode_records(records: Iterable[Record]) -> bytes:
    """Serialize records to the compact fragment format."""
    return json.dumps(
        [record.to_dict() for record in records],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def decode_records(raw: bytes | str) -> list[Record]:
    """Parse fragment content.

    Raises:
        FragmentDecodeError: If content is not a JSON array of records
    """
    try:
        items = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FragmentDecodeError(f"Invalid fragment JSON: {e}") from e

    if not isinstance(items, list):
        raise FragmentDecodeError(f"Fragment must be a JSON array, got {type(items).__name__}")

    records = []
    for item in items:
        if not isinstance(item, dict):
            raise FragmentDecodeError(f"Fragment entry must be an object, got {item!r}")
        try:
            records.append(Record.from_dict(item))
        except ValueError as e:
            raise FragmentDecodeError(str(e)) from e
    return records


def read_fragment(path: str | Path) -> list[Record]:
    """Read and decode one fragment file.

    Raises:
        OSError: If the file cannot be read
        FragmentDecodeError: If the content is malformed
    """
    return decode_records(Path(path).read_bytes())


def write_fragment(
    root: str | Path,
    collection: str,
    uid: str,
    ts: int,
    records: list[Record],
) -> Path:
    """Write a batch of records as the fragment named by ts.

    If a fragment with the same name already exists (two flushes in the same
    second), the batch is merged into it with the new records winning equal
    timestamps.

    Returns:
        Path of the written fragment

    Raises:
        OSError: If the directory or file cannot be written
    """
    directory = user_dir(root, collection, uid)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / fragment_name(ts)

    if path.exists():
        try:
            existing = read_fragment(path)
        except FragmentDecodeError as e:
            logger.warning(f"Overwriting unreadable fragment {path}: {e}")
            existing = []
        merged = {record.ts: record for record in existing}
        merged.update((record.ts, record) for record in records)
        records = [merged[key] for key in sorted(merged)]

    tmp_path = path.with_name(path.name + _TMP_SUFFIX)
    try:
        with open(tmp_path, "wb") as f:
            f.write(encode_records(records))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise

    return path


def iter_user_fragments(root: str | Path, collection: str) -> Iterator[tuple[str, list[Path]]]:
    """Yield (uid, fragment paths in lexicographic order) for a collection.

    Yields nothing when the collection directory does not exist. A user
    directory that cannot be listed is logged and skipped.

    Raises:
        OSError: If the collection directory exists but cannot be listed
    """
    directory = collection_dir(root, collection)
    if not directory.exists():
        return

    for entry in sorted(directory.iterdir()):
        if not entry.is_dir():
            continue
        try:
            files = sorted(
                path
                for path in entry.iterdir()
                if path.name.endswith(FRAGMENT_SUFFIX) and path.is_file()
            )
        except OSError as e:
            logger.error(f"Error reading directory for user {entry.name}: {e}")
            continue
        yield entry.name, files


def remove_user(root: str | Path, collection: str, uid: str) -> bool:
    """Recursively remove a user's fragment directory.

    Returns:
        True if a directory was removed
    """
    directory = user_dir(root, collection, uid)
    if not directory.exists():
        return False
    shutil.rmtree(directory)
    return True


def list_collections(root: str | Path) -> list[str]:
    """Names of collection directories directly under the root.

    Raises:
        OSError: If the root exists but cannot be listed
    """
    root = Path(root)
    if not root.exists():
        return []
    return sorted(entry.name for entry in root.iterdir() if entry.is_dir())
