#!/usr/bin/env python3
"""adguard-sync - AdGuard Home configuration sync

Keeps one AdGuard Home "origin" and any number of "replica" instances aligned:
filters, DNS rewrites, clients, DHCP, access lists and the other settings of
every replica are driven to match the origin. The origin always wins.

Modes:
    once     Run a single pass and exit (default when neither
             SYNC_INTERVAL_SECONDS nor API_PORT is set, or with --once).
             Exit code 1 if the pass did not fully succeed.
    serve    Run passes every SYNC_INTERVAL_SECONDS and/or serve the HTTP API
             on API_PORT until SIGINT/SIGTERM.

See adguard_sync.config for every configuration variable. LOG_LEVEL selects
DEBUG, INFO, WARNING or ERROR (default: INFO).
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import time
from typing import List, Optional

import uvicorn

from adguard_sync.actions import build_actions, describe_actions
from adguard_sync.api import create_app
from adguard_sync.config import Config, ConfigError, load_config
from adguard_sync.scheduler import IntervalScheduler
from adguard_sync.sync import InstanceState, SyncAlreadyRunningError, Worker

logger = logging.getLogger("adguard_sync")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="adguard-sync", description="Sync AdGuard Home origin to replicas")
    parser.add_argument("--config", help="YAML config file (default: $CONFIG_FILE or ~/.adguardhome-sync.yaml)")
    parser.add_argument("--once", action="store_true", help="run a single sync pass and exit")
    parser.add_argument("--print-config", action="store_true", help="print the masked config and exit")
    return parser.parse_args(argv)


# =============================================================================
# Modes
# =============================================================================


def run_once(worker: Worker) -> int:
    try:
        status = worker.run_sync()
    except SyncAlreadyRunningError:
        logger.error("A sync is already running")
        return 1
    if status.last_outcome != InstanceState.SUCCESS:
        outcome = status.last_outcome.value if status.last_outcome else "unknown"
        logger.error(f"Sync finished with outcome: {outcome}")
        return 1
    return 0


def shutdown(
    scheduler: IntervalScheduler,
    worker: Worker,
    server: Optional[uvicorn.Server],
    server_thread: Optional[threading.Thread],
    timeout: float,
) -> None:
    """Stop the schedule, wait for an in-flight pass, then close the API.

    All three steps share one deadline of ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout

    def remaining() -> float:
        return max(0.0, deadline - time.monotonic())

    scheduler.stop(timeout=remaining())

    if not worker.wait_idle(remaining()):
        logger.warning(f"Sync still running after {timeout}s, abandoning it")

    if server is not None:
        server.should_exit = True
    if server_thread is not None:
        server_thread.join(timeout=remaining())
    logger.info("Shutdown complete")


def serve(config: Config, worker: Worker) -> None:
    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    scheduler = IntervalScheduler(worker, config.interval, run_on_start=config.run_on_start)
    scheduler.start()

    server: Optional[uvicorn.Server] = None
    server_thread: Optional[threading.Thread] = None
    if config.api.port:
        app = create_app(worker, config.api)
        server = uvicorn.Server(
            uvicorn.Config(app, host="0.0.0.0", port=config.api.port, log_level="warning", access_log=False)
        )
        server_thread = threading.Thread(target=server.run, name="ApiServer", daemon=True)
        server_thread.start()
        logger.info(f"API listening on port {config.api.port}")

    while not stop_event.wait(1.0):
        pass

    shutdown(scheduler, worker, server, server_thread, config.shutdown_timeout)


# =============================================================================
# Main
# =============================================================================


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    if args.print_config or config.print_config_only:
        logger.info(f"Printing adguard-sync config (the sync will not start in this mode):\n{config.dump()}")
        return

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Configuration validation failed")
        sys.exit(1)

    replicas = config.unique_replicas()
    logger.info(f"adguard-sync: {config.origin.host} -> {', '.join(r.host for r in replicas)}")
    logger.debug(f"Using config:\n{config.dump()}")
    disabled = config.features.disabled()
    if disabled:
        logger.info(f"Disabled features: {', '.join(disabled)}")
    logger.info(f"Sync actions: {describe_actions(build_actions(config.features))}")

    worker = Worker(config)

    if args.once or (config.interval <= 0 and not config.api.port):
        if not args.once and not config.run_on_start:
            logger.info("Nothing to do: no interval, no API and RUN_ON_START=false")
            return
        sys.exit(run_once(worker))

    try:
        serve(config, worker)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
