"""Deterministic stand-ins for psutil process handles and the process source."""

import threading
from contextlib import contextmanager
from types import SimpleNamespace

import psutil

MiB = 1024 * 1024


class FakeProcess:
    """
    Handle answering like ``psutil.Process`` from fixed values.

    ``gone`` makes every query raise NoSuchProcess; ``failing`` lists method
    names that raise AccessDenied; ``hang`` blocks every statistic query
    until the event is set.
    """

    def __init__(
        self,
        pid,
        name,
        *,
        cpu_user=1.5,
        cpu_system=0.5,
        cpu_percent=12.5,
        rss=200 * MiB,
        vms=400 * MiB,
        threads=4,
        fds=8,
        open_files=3,
        create_time=1_700_000_000.0,
        read_bytes=1024,
        write_bytes=2048,
        cmdline=None,
        username="daemon",
        failing=(),
        hang=None,
    ):
        self.pid = pid
        self._name = name
        self.cpu_user = cpu_user
        self.cpu_system = cpu_system
        self.cpu = cpu_percent
        self.rss = rss
        self.vms = vms
        self.threads = threads
        self.fds = fds
        self.files = open_files
        self.created = create_time
        self.read_bytes = read_bytes
        self.write_bytes = write_bytes
        self._cmdline = cmdline if cmdline is not None else [f"/usr/bin/{name}", "--serve"]
        self._username = username
        self.failing = set(failing)
        self.gone = False
        self.hang = hang
        self.calls = []

    def _check(self, method):
        self.calls.append(method)
        if self.gone:
            raise psutil.NoSuchProcess(self.pid, self._name)
        if method in self.failing:
            raise psutil.AccessDenied(self.pid, self._name)
        if self.hang is not None and method != "name":
            self.hang.wait()

    @contextmanager
    def oneshot(self):
        yield

    def name(self):
        self._check("name")
        return self._name

    def cpu_times(self):
        self._check("cpu_times")
        return SimpleNamespace(user=self.cpu_user, system=self.cpu_system)

    def cpu_percent(self, interval=None):
        self._check("cpu_percent")
        return self.cpu

    def memory_info(self):
        self._check("memory_info")
        return SimpleNamespace(rss=self.rss, vms=self.vms)

    def num_threads(self):
        self._check("num_threads")
        return self.threads

    def num_fds(self):
        self._check("num_fds")
        return self.fds

    def open_files(self):
        self._check("open_files")
        return [SimpleNamespace(path=f"/tmp/f{i}", fd=i) for i in range(self.files)]

    def create_time(self):
        self._check("create_time")
        return self.created

    def io_counters(self):
        self._check("io_counters")
        return SimpleNamespace(read_bytes=self.read_bytes, write_bytes=self.write_bytes)

    def cmdline(self):
        self._check("cmdline")
        return list(self._cmdline)

    def username(self):
        self._check("username")
        return self._username


class FakeSource:
    """ProcessSource over a mutable list of FakeProcess handles."""

    def __init__(self, processes=(), total_memory=2000 * MiB):
        self._lock = threading.Lock()
        self._processes = list(processes)
        self.total = total_memory
        self.fail_enumeration = False
        self.enumerations = 0
        self.memory_queries = 0
        # Set to block the next enumeration until released
        self.gate = None

    def set_processes(self, processes):
        with self._lock:
            self._processes = list(processes)

    def processes(self):
        self.enumerations += 1
        if self.gate is not None:
            self.gate.wait()
        if self.fail_enumeration:
            raise psutil.AccessDenied()
        with self._lock:
            return list(self._processes)

    def total_memory(self):
        self.memory_queries += 1
        return self.total
