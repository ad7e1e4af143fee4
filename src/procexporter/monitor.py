"""Process cache and background refresher for process-exporter."""

from __future__ import annotations

import logging
import threading

import psutil

from procexporter.matcher import TargetSpec, matches
from procexporter.models import CacheSnapshot, CachedEntry
from procexporter.source import ProcessSource, PsutilSource

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 30.0


class ProcessCache:
    """
    Holder of the current CacheSnapshot.

    The refresher is the only writer and publishes fully built snapshots;
    scrapes read the current reference and never mutate it. The lock only
    guards the reference swap, never enumeration or per-process I/O.
    """

    def __init__(self, snapshot: CacheSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot if snapshot is not None else CacheSnapshot.empty()

    def current(self) -> CacheSnapshot:
        """Return the snapshot that is current right now."""
        with self._lock:
            return self._snapshot

    def publish(self, snapshot: CacheSnapshot) -> CacheSnapshot:
        """Replace the current snapshot and return the one it superseded."""
        with self._lock:
            previous, self._snapshot = self._snapshot, snapshot
        return previous


class CacheRefresher:
    """
    Background task that keeps a ProcessCache in step with the process table.

    Each cycle enumerates all processes, resolves their names, keeps the ones
    matching the TargetSpec and publishes the result as a new snapshot. A failed
    enumeration leaves the previous snapshot current until the next tick.
    """

    def __init__(
        self,
        cache: ProcessCache,
        targets: TargetSpec,
        source: ProcessSource | None = None,
        interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        """
        Initialize the CacheRefresher.

        Args:
            cache: Cache to publish snapshots into.
            targets: Names of the processes to keep.
            source: Process table access. Defaults to psutil.
            interval: Seconds between refresh cycles. Must be positive.
        """
        if interval <= 0:
            raise ValueError(f"refresh interval must be positive, got {interval!r}")

        self._cache = cache
        self._targets = targets
        self._source = source if source is not None else PsutilSource()
        self._interval = interval
        # One event per run, never cleared once set
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        """Get the refresh interval in seconds."""
        return self._interval

    @property
    def is_running(self) -> bool:
        """Check if the refresher thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run one refresh immediately, then keep refreshing in a daemon thread."""
        if self.is_running:
            return

        self._stop_event = threading.Event()
        self.refresh()

        self._thread = threading.Thread(
            target=self._refresh_loop,
            args=(self._stop_event,),
            daemon=True,
            name="CacheRefresher",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the refresher thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Cache refresher did not stop within %.1fs", timeout)
            self._thread = None

    def _refresh_loop(self, stop_event: threading.Event) -> None:
        """Main refresh loop running in the background thread."""
        while not stop_event.wait(timeout=self._interval):
            try:
                self.refresh()
            except Exception:
                logger.exception("Unexpected error while refreshing the process cache")

    def refresh(self) -> bool:
        """
        Run one refresh cycle.

        Returns:
            True if a new snapshot was published, False if enumeration failed
            and the previous snapshot was kept.
        """
        try:
            handles = self._source.processes()
        except (psutil.Error, OSError) as e:
            logger.warning("Process enumeration failed, keeping previous cache: %s", e)
            return False

        snapshot = CacheSnapshot(self._filter(handles))
        self._cache.publish(snapshot)
        logger.debug("Process cache refreshed, monitoring %d processes", len(snapshot))
        return True

    def _filter(self, handles: list) -> list[CachedEntry]:
        """Resolve names and keep the handles whose name matches the targets."""
        entries: list[CachedEntry] = []
        for handle in handles:
            try:
                name = handle.name()
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Exited mid-enumeration or unreadable
                continue

            if matches(name, self._targets):
                entries.append(CachedEntry(pid=handle.pid, name=name, handle=handle))
        return entries
