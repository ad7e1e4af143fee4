"""Process name matching for process-exporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Executable suffixes stripped by the normalized-equality policy
PLATFORM_SUFFIXES = (".exe",)


class MatchPolicy(Enum):
    """How configured target names are compared against process names."""

    SUBSTRING = "substring"
    NORMALIZED = "normalized"


def normalize_name(name: str) -> str:
    """Lower-case a process name and strip a trailing executable suffix."""
    lowered = name.lower()
    for suffix in PLATFORM_SUFFIXES:
        if lowered.endswith(suffix):
            return lowered[: -len(suffix)]
    return lowered


@dataclass(slots=True, frozen=True)
class TargetSpec:
    """
    Immutable set of process names to monitor.

    ``names`` keeps the configured spelling for the substring policy;
    ``normalized`` holds the normalized forms for the equality policy.
    ``match_all_when_empty`` only applies to the normalized policy: a
    substring spec without names never matches.
    """

    names: tuple[str, ...]
    policy: MatchPolicy = MatchPolicy.SUBSTRING
    match_all_when_empty: bool = False
    normalized: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "names", tuple(self.names))
        object.__setattr__(
            self, "normalized", frozenset(normalize_name(n) for n in self.names)
        )

    @classmethod
    def from_csv(
        cls,
        text: str,
        policy: MatchPolicy = MatchPolicy.SUBSTRING,
        match_all_when_empty: bool = False,
    ) -> TargetSpec:
        """Build a TargetSpec from a comma-separated list, dropping blank items."""
        names = tuple(part.strip() for part in text.split(",") if part.strip())
        return cls(names, policy, match_all_when_empty)

    @property
    def is_empty(self) -> bool:
        return not self.names


def matches(process_name: str, spec: TargetSpec) -> bool:
    """Return True if ``process_name`` belongs to the monitored set."""
    if spec.policy is MatchPolicy.SUBSTRING:
        return any(target in process_name for target in spec.names)

    if not spec.normalized:
        return spec.match_all_when_empty
    return normalize_name(process_name) in spec.normalized
