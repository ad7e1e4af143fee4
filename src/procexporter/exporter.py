"""Prometheus collectors exposing cached process metrics."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import ClassVar

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from procexporter.collector import (
    LABEL_CMDLINE,
    LABEL_PID,
    LABEL_PROCESS_NAME,
    LABEL_USER,
    METRIC_KINDS,
    MetricCollector,
)
from procexporter.matcher import MatchPolicy
from procexporter.models import MetricKind
from procexporter.monitor import ProcessCache


@dataclass(slots=True, frozen=True)
class Descriptor:
    """Wire identity of one metric."""

    metric: str  # statistic key produced by MetricCollector
    name: str
    documentation: str


class ProcessExporter(Collector):
    """
    Base for the exporter variants.

    A variant only declares its metric names and label names; reading the
    cache and the processes is shared through the ProcessCache and the
    MetricCollector it is given.
    """

    DESCRIPTORS: ClassVar[tuple[Descriptor, ...]] = ()
    # Canonical label key -> label name on the wire
    LABEL_NAMES: ClassVar[dict[str, str]] = {}

    # Metrics that may be omitted when zero, and which of them are by default
    ZERO_SUPPRESSIBLE: ClassVar[tuple[str, ...]] = ()
    DEFAULT_POLICY: ClassVar[MatchPolicy] = MatchPolicy.SUBSTRING
    DEFAULT_SUPPRESS_ZERO: ClassVar[tuple[str, ...]] = ()
    DEFAULT_CMDLINE_LABEL: ClassVar[bool] = False
    DEFAULT_USER_LABEL: ClassVar[bool] = False

    def __init__(self, cache: ProcessCache, collector: MetricCollector) -> None:
        missing = self.metric_keys() - collector.metrics
        if missing:
            raise ValueError(
                f"collector does not emit required metrics: {', '.join(sorted(missing))}"
            )
        self._cache = cache
        self._collector = collector
        self._label_keys = [LABEL_PROCESS_NAME, LABEL_PID]
        if collector.include_cmdline:
            self._label_keys.append(LABEL_CMDLINE)
        if collector.include_user:
            self._label_keys.append(LABEL_USER)

    @classmethod
    def metric_keys(cls) -> frozenset[str]:
        return frozenset(d.metric for d in cls.DESCRIPTORS)

    @property
    def label_names(self) -> list[str]:
        return [self.LABEL_NAMES[key] for key in self._label_keys]

    def describe(self) -> Iterable[Metric]:
        return list(self._families().values())

    def collect(self) -> Iterable[Metric]:
        # One snapshot reference for the whole scrape
        snapshot = self._cache.current()
        families = self._families()

        for sample in self._collector.collect(snapshot):
            family = families.get(sample.metric)
            if family is None:
                continue
            family.add_metric([sample.labels[key] for key in self._label_keys], sample.value)

        return list(families.values())

    def _families(self) -> dict[str, Metric]:
        families: dict[str, Metric] = {}
        labels = self.label_names
        for descriptor in self.DESCRIPTORS:
            if METRIC_KINDS[descriptor.metric] is MetricKind.COUNTER:
                family_cls = CounterMetricFamily
            else:
                family_cls = GaugeMetricFamily
            families[descriptor.metric] = family_cls(
                descriptor.name, descriptor.documentation, labels=labels
            )
        return families


class BasicProcessExporter(ProcessExporter):
    """Per-process liveness, CPU time, memory, threads, descriptors and start time."""

    DESCRIPTORS = (
        Descriptor("up", "process_up", "Whether the process is running (1) or not (0)."),
        Descriptor(
            "cpu_user_seconds",
            "process_cpu_user_seconds_total",
            "Total user CPU time spent in seconds.",
        ),
        Descriptor(
            "cpu_system_seconds",
            "process_cpu_system_seconds_total",
            "Total system CPU time spent in seconds.",
        ),
        Descriptor("memory_rss_bytes", "process_memory_rss_bytes", "Resident memory size in bytes."),
        Descriptor("memory_vms_bytes", "process_memory_vms_bytes", "Virtual memory size in bytes."),
        Descriptor("num_threads", "process_num_threads", "Total number of threads."),
        Descriptor("open_fds", "process_open_fds", "Number of open file descriptors."),
        Descriptor(
            "start_time_seconds",
            "process_start_time_seconds",
            "Start time of the process since unix epoch in seconds.",
        ),
    )
    LABEL_NAMES = {
        LABEL_PROCESS_NAME: "process_name",
        LABEL_PID: "pid",
        LABEL_CMDLINE: "cmdline",
        LABEL_USER: "user",
    }

    ZERO_SUPPRESSIBLE = ("num_threads", "open_fds")


class NodeProcessExporter(ProcessExporter):
    """Per-process CPU and memory usage percentages, open files and disk I/O."""

    DESCRIPTORS = (
        Descriptor(
            "cpu_usage_percent",
            "node_process_cpu_usage_percent",
            "Process CPU usage percentage.",
        ),
        Descriptor(
            "memory_usage_percent",
            "node_process_memory_usage_percent",
            "Process memory usage percentage.",
        ),
        Descriptor(
            "open_files_count",
            "node_process_open_files_count",
            "Number of open files by the process.",
        ),
        Descriptor(
            "read_bytes_total",
            "node_process_read_bytes_total",
            "Total number of bytes read by the process.",
        ),
        Descriptor(
            "write_bytes_total",
            "node_process_write_bytes_total",
            "Total number of bytes written by the process.",
        ),
    )
    LABEL_NAMES = {
        LABEL_PROCESS_NAME: "name",
        LABEL_PID: "pid",
        LABEL_CMDLINE: "cmd",
        LABEL_USER: "user",
    }

    DEFAULT_POLICY = MatchPolicy.NORMALIZED
    ZERO_SUPPRESSIBLE = ("cpu_usage_percent", "memory_usage_percent", "open_files_count")
    DEFAULT_SUPPRESS_ZERO = ZERO_SUPPRESSIBLE
    DEFAULT_CMDLINE_LABEL = True
    DEFAULT_USER_LABEL = True


VARIANTS: dict[str, type[ProcessExporter]] = {
    "process": BasicProcessExporter,
    "node": NodeProcessExporter,
}
