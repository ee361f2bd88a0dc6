# Keyed record table with per-record atomic updates.
# Created: 2026-10-12
#
# The stores never read-then-write a record without holding the lock stripe
# for that record's key. Stripes are selected by key hash, so unrelated codes
# and tokens do not contend with each other and there is no table-wide lock.

from __future__ import annotations

import json
import tempfile
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_DEFAULT_STRIPES = 64


def write_json_atomic(path: Path, data: Any) -> None:
    """Replace *path* with *data* as JSON (mode 0600).

    The document goes to a sibling temp file (created 0600) that is then
    renamed over *path*, so readers in any process see either the old file
    or the new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", delete=False
    ) as f:
        json.dump(data, f, indent=2)
        tmp = Path(f.name)
    try:
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class RecordTable(Generic[T]):
    """Thread-safe mapping of key -> record with compare-and-swap."""

    def __init__(self, stripes: int = _DEFAULT_STRIPES):
        self._records: dict[str, T] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def get(self, key: str) -> T | None:
        return self._records.get(key)

    def put(self, key: str, record: T) -> None:
        with self._lock_for(key):
            self._records[key] = record

    def insert(self, key: str, record: T) -> bool:
        """Store *record* only if *key* is unused. Returns False on collision."""
        with self._lock_for(key):
            if key in self._records:
                return False
            self._records[key] = record
            return True

    def compare_and_swap(
        self,
        key: str,
        expect: Callable[[T], bool],
        update: Callable[[T], T],
    ) -> tuple[T, T] | None:
        """Atomically replace the record at *key* if ``expect(current)`` holds.

        Returns ``(previous, new)`` on success and None when the key is
        missing or the expectation fails. Exactly one of several concurrent
        callers with the same expectation can succeed.
        """
        with self._lock_for(key):
            current = self._records.get(key)
            if current is None or not expect(current):
                return None
            new = update(current)
            self._records[key] = new
            return current, new

    def pop(self, key: str) -> T | None:
        with self._lock_for(key):
            return self._records.pop(key, None)

    def remove_where(self, predicate: Callable[[T], bool]) -> list[T]:
        """Drop every record matching *predicate*; returns what was removed."""
        removed = []
        for key in list(self._records):
            with self._lock_for(key):
                record = self._records.get(key)
                if record is not None and predicate(record):
                    removed.append(self._records.pop(key))
        return removed

    def values(self) -> list[T]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))
