"""Access to the operating system process table."""

from __future__ import annotations

from typing import Any, Protocol

import psutil


class ProcessSource(Protocol):
    """Capability the cache and collector use to reach the OS."""

    def processes(self) -> list[Any]:
        """Return handles for every process currently in the process table."""
        ...

    def total_memory(self) -> int:
        """Return total physical memory in bytes."""
        ...


class PsutilSource:
    """ProcessSource backed by psutil; handles are ``psutil.Process`` objects."""

    def processes(self) -> list[psutil.Process]:
        # Materialize so enumeration errors surface here, not mid-filter
        return list(psutil.process_iter())

    def total_memory(self) -> int:
        return psutil.virtual_memory().total
