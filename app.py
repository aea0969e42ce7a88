#!/usr/bin/env python3
"""
Host Monitor - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the monitor.

- Compatible with PM2 / systemd process management
- Handles SIGINT and SIGTERM gracefully
- Wires collectors, storage, alerts and the API into one runtime

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py --backend redis --log-level DEBUG

One collection and alert cycle, then exit:
    python app.py --single-cycle

Environment-based configuration (.env is read when present):
    STORAGE_BACKEND=redis REDIS_URL=redis://localhost:6379/0 python app.py

============================================================
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from aiohttp import web

from core.exceptions import ConfigurationError, MonitoringException
from core.logging_setup import setup_logging
from monitoring.alerts import AlertManager, AlertRuleEngine, get_default_rules
from monitoring.api import create_app
from monitoring.collectors import (
    DockerCollector,
    NetworkCollector,
    RtspCollector,
    StorageCollector,
    SystemCollector,
)
from monitoring.config import VALID_BACKENDS, VALID_LOG_FORMATS, MonitorConfig
from monitoring.notifications import (
    AlertStreamHub,
    FanoutSink,
    LoggingSink,
    TelegramNotifier,
)
from monitoring.recorder import MetricsReader, MetricsRecorder
from monitoring.scheduler import MonitorScheduler
from storage import CurrentValueTable, KeyNamespace, create_backend
from storage.alert_store import AlertStore


logger = logging.getLogger("monitor")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="host-monitor",
        description="Host health monitor with bounded storage and alerting",
    )
    parser.add_argument(
        "--backend",
        choices=VALID_BACKENDS,
        help="Storage backend (overrides STORAGE_BACKEND)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format",
        choices=VALID_LOG_FORMATS,
        help="Log format (overrides LOG_FORMAT)",
    )
    parser.add_argument(
        "--single-cycle",
        action="store_true",
        help="Run one collection and alert cycle, then exit",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the HTTP API",
    )
    return parser


def build_config(args: argparse.Namespace) -> MonitorConfig:
    """Environment config with command-line overrides applied."""
    config = MonitorConfig.from_env()
    if args.backend:
        config.storage_backend = args.backend
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config.ensure_valid()


# ============================================================
# RUNTIME
# ============================================================

class MonitorRuntime:
    """Everything one monitor process owns."""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self.host = config.host_identity()
        self.backend = create_backend(
            config.storage_backend,
            redis_url=config.redis_url,
            timeout_seconds=config.redis_timeout_seconds,
        )

        # Notification sinks
        self.stream = AlertStreamHub()
        self.telegram: Optional[TelegramNotifier] = None
        sinks = [LoggingSink(), self.stream]
        if config.telegram_enabled:
            self.telegram = TelegramNotifier(
                bot_token=config.telegram_bot_token,
                chat_ids=[c.strip() for c in config.telegram_chat_id.split(",")],
                host_name=self.host.display_name,
            )
            sinks.append(self.telegram)
        self.sink = FanoutSink(sinks)

        # Storage
        self.alert_store = AlertStore(
            self.backend,
            sink=self.sink,
            history_cap=config.alert_history_cap,
        )
        self.recorder = MetricsRecorder(self.host, self.backend, config.max_records)
        self.reader = MetricsReader(self.backend, self.alert_store)

        # Alerts
        engine = AlertRuleEngine(get_default_rules(
            cpu_threshold=config.cpu_threshold,
            memory_threshold=config.memory_threshold,
            disk_threshold=config.disk_threshold,
        ))
        self.alert_manager = AlertManager(
            engine,
            self.alert_store,
            CurrentValueTable(KeyNamespace(self.host), self.backend),
        )

        # Collectors
        self.scheduler = MonitorScheduler(
            self.recorder,
            self.alert_manager,
            alert_interval=config.alert_interval,
        )
        self.scheduler.add_collector(SystemCollector(self.host), config.system_interval)
        self.scheduler.add_collector(StorageCollector(), config.storage_interval)
        self.scheduler.add_collector(NetworkCollector(), config.system_interval)
        self.scheduler.add_collector(
            DockerCollector(enabled=config.docker_enabled),
            config.docker_interval,
        )
        self.scheduler.add_collector(
            RtspCollector(config.rtsp_streams, config.rtsp_connect_timeout),
            config.rtsp_interval,
        )

        self._runner: Optional[web.AppRunner] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def start(self, with_api: bool = True) -> None:
        loop = asyncio.get_running_loop()
        self.stream.bind(loop)
        if self.telegram:
            await self.telegram.start()

        if not await asyncio.to_thread(self.backend.ping):
            logger.warning(f"{self.config.storage_backend} backend not reachable at startup")
        await asyncio.to_thread(self.recorder.record_host_info)

        if with_api:
            app = create_app(self.reader, self.alert_manager, self.stream)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.config.api_host, self.config.api_port)
            await site.start()
            logger.info(f"API listening on {self.config.api_host}:{self.config.api_port}")

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.stream.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self.telegram:
            await self.telegram.stop()
        await asyncio.to_thread(self.backend.close)
        logger.info("Monitor stopped")

    def request_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    def _install_signal_handlers(self) -> List[signal.Signals]:
        if sys.platform == "win32":
            return []
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)
            installed.append(sig)
        return installed

    async def run_forever(self, with_api: bool = True) -> None:
        self._stop_event = asyncio.Event()
        installed = self._install_signal_handlers()
        try:
            await self.start(with_api)
            await self.scheduler.start()
            logger.info(
                f"Monitoring {self.host.id} ({self.host.display_name}) "
                f"with {self.config.storage_backend} backend"
            )
            await self._stop_event.wait()
            logger.info("Shutdown requested")
        finally:
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.stop()

    async def run_single_cycle(self) -> int:
        try:
            await self.start(with_api=False)
            result = await self.scheduler.run_once()
            if result is not None:
                logger.info(f"Single cycle complete: {result.to_dict()}")
                return 0 if result.ok else 1
            return 0
        finally:
            await self.stop()


# ============================================================
# MAIN
# ============================================================

async def run_application(args: argparse.Namespace, config: MonitorConfig) -> int:
    runtime = MonitorRuntime(config)
    try:
        if args.single_cycle:
            return await runtime.run_single_cycle()
        await runtime.run_forever(with_api=not args.no_api)
        return 0
    except MonitoringException as e:
        logger.error(e.to_log_format())
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format, config.server_identity)
    return asyncio.run(run_application(args, config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
