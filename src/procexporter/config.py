"""Command-line configuration for process-exporter."""

from __future__ import annotations

import argparse
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass

from procexporter.collector import DEFAULT_SCRAPE_TIMEOUT
from procexporter.exporter import VARIANTS
from procexporter.matcher import MatchPolicy, TargetSpec
from procexporter.monitor import DEFAULT_REFRESH_INTERVAL

DEFAULT_LISTEN_ADDRESS = ":9002"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigurationError(ValueError):
    """Invalid startup configuration. The exporter must not start serving."""


@dataclass(slots=True, frozen=True)
class ExporterConfig:
    """Validated exporter configuration."""

    listen_host: str
    listen_port: int
    targets: TargetSpec
    variant: str = "process"
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    scrape_timeout: float = DEFAULT_SCRAPE_TIMEOUT
    suppress_zero: tuple[str, ...] = ()
    include_cmdline: bool = False
    include_user: bool = False
    log_level: str = "INFO"

    @property
    def listen_address(self) -> str:
        host = f"[{self.listen_host}]" if ":" in self.listen_host else self.listen_host
        return f"{host}:{self.listen_port}"


def parse_duration(text: str) -> float:
    """
    Parse a duration such as ``30s``, ``1m30s``, ``500ms`` or ``2.5`` into seconds.

    Raises:
        ConfigurationError: If the text is not a positive duration.
    """
    value = text.strip()
    try:
        seconds = float(value)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(value):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos == 0 or pos != len(value):
            raise ConfigurationError(f"invalid duration: {text!r}") from None

    if not (seconds > 0 and math.isfinite(seconds)):
        raise ConfigurationError(f"duration must be positive: {text!r}")
    return seconds


def parse_listen_address(address: str) -> tuple[str, int]:
    """
    Split ``host:port`` into its parts. An empty host means all interfaces.

    Raises:
        ConfigurationError: If the address has no valid port.
    """
    host, sep, port_text = address.strip().rpartition(":")
    if not sep:
        raise ConfigurationError(f"listen address must be host:port, got {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigurationError(f"invalid port in listen address {address!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"port out of range in listen address {address!r}")
    return host, port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="process-exporter",
        description="Expose resource usage of selected processes as Prometheus metrics.",
    )
    parser.add_argument(
        "--addr",
        default=DEFAULT_LISTEN_ADDRESS,
        help="Address to listen on for HTTP requests (default: %(default)s)",
    )
    parser.add_argument(
        "--names",
        default="",
        help="Comma separated list of process names to monitor, e.g. nginx,mysql",
    )
    parser.add_argument(
        "--variant",
        choices=sorted(VARIANTS),
        default="process",
        help="Metric set to expose (default: %(default)s)",
    )
    parser.add_argument(
        "--match-policy",
        choices=[policy.value for policy in MatchPolicy],
        default=None,
        help="substring: name contains a target; normalized: lower-cased name "
        "without .exe equals a target (default depends on --variant)",
    )
    parser.add_argument(
        "--match-all-when-empty",
        action="store_true",
        help="With the normalized policy and no --names, monitor every process",
    )
    parser.add_argument(
        "--refresh-interval",
        default=f"{DEFAULT_REFRESH_INTERVAL:g}s",
        help="Interval between full process table scans (default: %(default)s)",
    )
    parser.add_argument(
        "--scrape-timeout",
        default=f"{DEFAULT_SCRAPE_TIMEOUT:g}s",
        help="Upper bound on the time spent collecting one scrape (default: %(default)s)",
    )
    parser.add_argument(
        "--suppress-zero",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Omit percentage and count samples whose value is zero "
        "(default depends on --variant)",
    )
    parser.add_argument(
        "--cmdline-label",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Label samples with the process command line (default depends on --variant)",
    )
    parser.add_argument(
        "--user-label",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Label samples with the owning user (default depends on --variant)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: %(default)s)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ExporterConfig:
    """
    Validate parsed arguments and fill variant defaults.

    Raises:
        ConfigurationError: On missing target names, a bad listen address
            or a non-positive duration.
    """
    exporter_cls = VARIANTS[args.variant]
    policy = MatchPolicy(args.match_policy) if args.match_policy else exporter_cls.DEFAULT_POLICY
    targets = TargetSpec.from_csv(args.names, policy, args.match_all_when_empty)

    if targets.is_empty:
        if policy is MatchPolicy.SUBSTRING or not targets.match_all_when_empty:
            raise ConfigurationError(
                "no process names given, use --names (e.g. --names=nginx,mysql)"
            )

    host, port = parse_listen_address(args.addr)

    if args.suppress_zero is None:
        suppress_zero = exporter_cls.DEFAULT_SUPPRESS_ZERO
    elif args.suppress_zero:
        suppress_zero = exporter_cls.ZERO_SUPPRESSIBLE
    else:
        suppress_zero = ()

    return ExporterConfig(
        listen_host=host,
        listen_port=port,
        targets=targets,
        variant=args.variant,
        refresh_interval=parse_duration(args.refresh_interval),
        scrape_timeout=parse_duration(args.scrape_timeout),
        suppress_zero=tuple(suppress_zero),
        include_cmdline=_pick(args.cmdline_label, exporter_cls.DEFAULT_CMDLINE_LABEL),
        include_user=_pick(args.user_label, exporter_cls.DEFAULT_USER_LABEL),
        log_level=args.log_level,
    )


def parse_args(argv: Sequence[str] | None = None) -> ExporterConfig:
    """Parse and validate command-line arguments."""
    return config_from_args(build_parser().parse_args(argv))


def _pick(value: bool | None, default: bool) -> bool:
    return default if value is None else value
