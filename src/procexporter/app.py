"""process-exporter - HTTP entry point and lifecycle."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Sequence
from types import FrameType

from prometheus_client import CollectorRegistry, start_http_server

from procexporter.collector import MetricCollector
from procexporter.config import ConfigurationError, ExporterConfig, parse_args
from procexporter.exporter import VARIANTS, ProcessExporter
from procexporter.monitor import CacheRefresher, ProcessCache
from procexporter.source import ProcessSource, PsutilSource

logger = logging.getLogger("procexporter")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Exit status for configuration errors, matching argparse usage errors
EXIT_CONFIG_ERROR = 2


class ExporterApp:
    """
    Owns the cache, its refresher, the collector and the HTTP server.

    The refresher is the only writer of the cache; every scrape handled by the
    server thread pool reads it through the registered exporter.
    """

    def __init__(self, config: ExporterConfig, source: ProcessSource | None = None) -> None:
        self.config = config
        source = source if source is not None else PsutilSource()
        exporter_cls = VARIANTS[config.variant]

        self.cache = ProcessCache()
        self.refresher = CacheRefresher(
            self.cache,
            config.targets,
            source=source,
            interval=config.refresh_interval,
        )
        self.collector = MetricCollector(
            source,
            metrics=exporter_cls.metric_keys(),
            suppress_zero=config.suppress_zero,
            include_cmdline=config.include_cmdline,
            include_user=config.include_user,
            timeout=config.scrape_timeout,
        )
        self.exporter: ProcessExporter = exporter_cls(self.cache, self.collector)
        # Private registry: no interpreter or exporter self-metrics
        self.registry = CollectorRegistry()
        self.registry.register(self.exporter)

        self._stop_event = threading.Event()
        self._server = None
        self._server_thread: threading.Thread | None = None

    @property
    def server_port(self) -> int | None:
        if self._server is None:
            return None
        return self._server.server_port

    def start(self) -> None:
        """Fill the cache once, start the refresher and bind the HTTP server."""
        self.refresher.start()
        try:
            self._server, self._server_thread = start_http_server(
                self.config.listen_port,
                addr=self.config.listen_host or "0.0.0.0",
                registry=self.registry,
            )
        except OSError:
            self.refresher.stop()
            self.collector.close()
            raise

    def stop(self) -> None:
        """Stop the refresher, shut the server down and release the worker pool."""
        self._stop_event.set()
        self.refresher.stop()
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._server_thread is not None:
            self._server_thread.join(timeout=5.0)
            self._server_thread = None
        self.collector.close()

    def request_stop(self, signum: int | None = None, frame: FrameType | None = None) -> None:
        """Signal handler: ask the serving loop to exit."""
        if signum is not None:
            logger.info("Received %s, shutting down", signal.Signals(signum).name)
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._stop_event.wait(timeout)

    def run(self) -> None:
        """Serve until SIGINT or SIGTERM."""
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

        self.start()
        logger.info("Starting process exporter on %s", self.config.listen_address)
        logger.info("Monitoring: %s", ", ".join(self.config.targets.names) or "all processes")
        logger.info("Process list refresh interval: %gs", self.config.refresh_interval)
        try:
            self.wait()
        finally:
            self.stop()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logging.getLogger().setLevel(level)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for process-exporter."""
    configure_logging()
    try:
        config = parse_args(argv)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_CONFIG_ERROR

    configure_logging(config.log_level)
    app = ExporterApp(config)
    try:
        app.run()
    except OSError as e:
        logger.error("Error starting server: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
