"""Per-scrape metric collection for process-exporter."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

import psutil

from procexporter.models import CacheSnapshot, CachedEntry, MetricKind, MetricSample
from procexporter.source import ProcessSource, PsutilSource

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_TIMEOUT = 10.0

# Failures a single probe may raise; each one only removes that probe's samples
PROBE_ERRORS = (psutil.Error, OSError, AttributeError, NotImplementedError)

METRIC_KINDS: dict[str, MetricKind] = {
    "up": MetricKind.GAUGE,
    "cpu_user_seconds": MetricKind.COUNTER,
    "cpu_system_seconds": MetricKind.COUNTER,
    "cpu_usage_percent": MetricKind.GAUGE,
    "memory_rss_bytes": MetricKind.GAUGE,
    "memory_vms_bytes": MetricKind.GAUGE,
    "memory_usage_percent": MetricKind.GAUGE,
    "num_threads": MetricKind.GAUGE,
    "open_fds": MetricKind.GAUGE,
    "open_files_count": MetricKind.GAUGE,
    "start_time_seconds": MetricKind.GAUGE,
    "read_bytes_total": MetricKind.COUNTER,
    "write_bytes_total": MetricKind.COUNTER,
}

# Canonical label keys; exporters rename them to their wire names
LABEL_PROCESS_NAME = "process_name"
LABEL_PID = "pid"
LABEL_CMDLINE = "cmdline"
LABEL_USER = "user"

UNKNOWN_USER = "unknown"


def memory_percent(rss: int, total: int) -> float:
    """Resident memory as a percentage of total physical memory."""
    return rss / total * 100.0


@dataclass(slots=True, frozen=True)
class ScrapeContext:
    """System-wide values read once per scrape and shared by every entry."""

    total_memory: int | None = None


@dataclass(slots=True, frozen=True)
class Probe:
    """One fallible OS query yielding values for one or more metrics."""

    name: str
    metrics: tuple[str, ...]
    read: Callable[[Any, ScrapeContext], tuple[float, ...] | None]


def _read_cpu_times(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    times = handle.cpu_times()
    return (times.user, times.system)


def _read_cpu_percent(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    # Relative to the previous call on the same cached handle
    return (handle.cpu_percent(interval=None),)


def _read_memory_info(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    mem = handle.memory_info()
    return (mem.rss, mem.vms)


def _read_memory_percent(handle: Any, ctx: ScrapeContext) -> tuple[float, ...] | None:
    if not ctx.total_memory:
        return None
    return (memory_percent(handle.memory_info().rss, ctx.total_memory),)


def _read_num_threads(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    return (handle.num_threads(),)


def _read_open_fds(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    if hasattr(handle, "num_fds"):
        return (handle.num_fds(),)
    return (handle.num_handles(),)  # Windows


def _read_open_files(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    return (len(handle.open_files()),)


def _read_create_time(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    return (handle.create_time(),)


def _read_io_counters(handle: Any, ctx: ScrapeContext) -> tuple[float, ...]:
    io = handle.io_counters()
    return (io.read_bytes, io.write_bytes)


PROBES: tuple[Probe, ...] = (
    Probe("cpu_times", ("cpu_user_seconds", "cpu_system_seconds"), _read_cpu_times),
    Probe("cpu_percent", ("cpu_usage_percent",), _read_cpu_percent),
    Probe("memory_info", ("memory_rss_bytes", "memory_vms_bytes"), _read_memory_info),
    Probe("memory_percent", ("memory_usage_percent",), _read_memory_percent),
    Probe("num_threads", ("num_threads",), _read_num_threads),
    Probe("open_fds", ("open_fds",), _read_open_fds),
    Probe("open_files", ("open_files_count",), _read_open_files),
    Probe("create_time", ("start_time_seconds",), _read_create_time),
    Probe("io_counters", ("read_bytes_total", "write_bytes_total"), _read_io_counters),
)


def attempt(read: Callable[..., Any], *args: Any) -> Any | None:
    """Run one OS query, turning an expected failure into ``None``."""
    try:
        return read(*args)
    except PROBE_ERRORS:
        return None


class MetricCollector:
    """
    Turns a CacheSnapshot into metric samples on each scrape.

    Every probe is attempted independently for every cached entry. A probe
    that fails only drops its own samples; an entry whose probes all fail
    contributes nothing and stays cached until the next refresh. Entries still
    being read when the scrape deadline passes are dropped the same way, and
    are not queried again until that earlier query returns.
    """

    def __init__(
        self,
        source: ProcessSource | None = None,
        metrics: Iterable[str] | None = None,
        suppress_zero: Iterable[str] = (),
        include_cmdline: bool = False,
        include_user: bool = False,
        timeout: float = DEFAULT_SCRAPE_TIMEOUT,
        max_workers: int | None = None,
    ) -> None:
        """
        Initialize the MetricCollector.

        Args:
            source: Used for the per-scrape system memory total.
            metrics: Metric keys to emit. Defaults to every known metric.
            suppress_zero: Metric keys omitted when their value is exactly zero.
            include_cmdline: Add the command line label to every sample.
            include_user: Add the owning user label to every sample.
            timeout: Upper bound on one scrape's collection time (seconds).
            max_workers: Size of the worker pool reading process statistics.
        """
        enabled = frozenset(METRIC_KINDS if metrics is None else metrics)
        unknown = enabled - METRIC_KINDS.keys()
        if unknown:
            raise ValueError(f"unknown metrics: {', '.join(sorted(unknown))}")
        if timeout <= 0:
            raise ValueError(f"scrape timeout must be positive, got {timeout!r}")

        self._source = source if source is not None else PsutilSource()
        self._metrics = enabled
        self._suppress_zero = frozenset(suppress_zero)
        self._include_cmdline = include_cmdline
        self._include_user = include_user
        self._timeout = timeout
        self._probes = tuple(
            probe for probe in PROBES if enabled.intersection(probe.metrics)
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="MetricCollector"
        )
        self._lock = threading.Lock()
        # PID -> query that outlived a scrape deadline and is still running
        self._overdue: dict[int, Future[list[MetricSample]]] = {}
        self._memory_query: Future[int | None] | None = None
        self._memory_overdue = False

    @property
    def metrics(self) -> frozenset[str]:
        return self._metrics

    @property
    def include_cmdline(self) -> bool:
        return self._include_cmdline

    @property
    def include_user(self) -> bool:
        return self._include_user

    @property
    def timeout(self) -> float:
        return self._timeout

    def close(self) -> None:
        """Release the worker pool without waiting for stuck queries."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def collect(self, snapshot: CacheSnapshot) -> list[MetricSample]:
        """Collect samples for every entry of ``snapshot``. Order is not significant."""
        entries = snapshot.entries()
        if not entries:
            return []

        deadline = time.monotonic() + self._timeout
        ctx = self._scrape_context(deadline)
        futures: dict[Future[list[MetricSample]], CachedEntry] = {}
        busy = 0
        with self._lock:
            for entry in entries:
                if entry.pid in self._overdue:
                    busy += 1
                    continue
                futures[self._executor.submit(self.collect_entry, entry, ctx)] = entry
        if busy:
            logger.warning(
                "Skipped %d processes still answering a query from an earlier scrape", busy
            )

        done, not_done = wait(futures, timeout=max(0.0, deadline - time.monotonic()))

        if not_done:
            for future in not_done:
                if not future.cancel():
                    self._mark_overdue(futures[future].pid, future)
            logger.warning(
                "Scrape deadline of %.1fs exceeded, skipped %d of %d processes",
                self._timeout,
                len(not_done),
                len(entries),
            )

        samples: list[MetricSample] = []
        for future in done:
            error = future.exception()
            if error is not None:
                entry = futures[future]
                logger.warning(
                    "Collection failed for %s (pid %d)",
                    entry.name,
                    entry.pid,
                    exc_info=error,
                )
                continue
            samples.extend(future.result())
        return samples

    def collect_entry(
        self, entry: CachedEntry, ctx: ScrapeContext | None = None
    ) -> list[MetricSample]:
        """Read every enabled statistic of one cached process."""
        ctx = ctx if ctx is not None else self._scrape_context()
        handle = entry.handle
        samples: list[MetricSample] = []
        answered = False

        with handle.oneshot():
            labels = self._labels(entry)
            for probe in self._probes:
                values = attempt(probe.read, handle, ctx)
                if values is None:
                    continue
                answered = True
                for metric, value in zip(probe.metrics, values):
                    if metric not in self._metrics:
                        continue
                    if value == 0 and metric in self._suppress_zero:
                        continue
                    samples.append(MetricSample(metric, float(value), labels))

        if answered and "up" in self._metrics:
            samples.append(MetricSample("up", 1.0, labels))
        return samples

    def _mark_overdue(self, pid: int, future: Future[list[MetricSample]]) -> None:
        with self._lock:
            self._overdue[pid] = future
        future.add_done_callback(lambda f: self._clear_overdue(pid, f))

    def _clear_overdue(self, pid: int, future: Future[list[MetricSample]]) -> None:
        with self._lock:
            if self._overdue.get(pid) is future:
                del self._overdue[pid]

    def _scrape_context(self, deadline: float | None = None) -> ScrapeContext:
        """Read the system memory total on the worker pool, bounded by ``deadline``."""
        if "memory_usage_percent" not in self._metrics:
            return ScrapeContext()
        if deadline is None:
            deadline = time.monotonic() + self._timeout

        with self._lock:
            query = self._memory_query
            if query is None or query.done():
                query = self._executor.submit(attempt, self._source.total_memory)
                self._memory_query = query
                self._memory_overdue = False
            elif self._memory_overdue:
                # Still hung from an earlier scrape
                return ScrapeContext()

        done, _ = wait([query], timeout=max(0.0, deadline - time.monotonic()))
        if not done:
            with self._lock:
                if self._memory_query is query:
                    self._memory_overdue = True
            logger.warning("System memory query did not answer within the scrape deadline")
            return ScrapeContext()
        return ScrapeContext(total_memory=query.result())

    def _labels(self, entry: CachedEntry) -> dict[str, str]:
        labels = {LABEL_PROCESS_NAME: entry.name, LABEL_PID: str(entry.pid)}
        if self._include_cmdline:
            cmdline = attempt(entry.handle.cmdline)
            labels[LABEL_CMDLINE] = " ".join(cmdline) if cmdline else ""
        if self._include_user:
            labels[LABEL_USER] = attempt(entry.handle.username) or UNKNOWN_USER
        return labels
