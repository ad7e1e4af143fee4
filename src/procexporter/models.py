"""Data models for process-exporter."""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any


class MetricKind(Enum):
    """Exposition type of a metric."""

    GAUGE = "gauge"
    COUNTER = "counter"


@dataclass(slots=True, frozen=True)
class CachedEntry:
    """A monitored process as seen by the last cache refresh."""

    pid: int
    name: str  # resolved once at refresh time
    handle: Any  # psutil.Process or an equivalent handle


class CacheSnapshot(Mapping[int, CachedEntry]):
    """Read-only PID -> CachedEntry mapping published by the refresher.

    Snapshots are never mutated after construction, so any number of
    scrapes can hold and iterate the same instance while a newer one
    is being built.
    """

    __slots__ = ("_entries", "created_at")

    def __init__(
        self,
        entries: Iterable[CachedEntry] = (),
        created_at: float | None = None,
    ) -> None:
        self._entries: Mapping[int, CachedEntry] = MappingProxyType(
            {entry.pid: entry for entry in entries}
        )
        self.created_at = time.monotonic() if created_at is None else created_at

    @classmethod
    def empty(cls) -> CacheSnapshot:
        return cls()

    def __getitem__(self, pid: int) -> CachedEntry:
        return self._entries[pid]

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CacheSnapshot(pids={sorted(self._entries)!r})"

    @property
    def pids(self) -> frozenset[int]:
        return frozenset(self._entries)

    def entries(self) -> list[CachedEntry]:
        """Return the cached entries as a new list."""
        return list(self._entries.values())


@dataclass(slots=True, frozen=True)
class MetricSample:
    """One metric value for one process, produced fresh on every scrape."""

    metric: str  # statistic key, e.g. "cpu_user_seconds"
    value: float
    labels: Mapping[str, str]
