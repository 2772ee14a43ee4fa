"""
near-lake-supervisor: watches the indexer's block height and restarts its container when it stalls.
Reads config/local.yaml (optional) with environment overrides, then polls until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

from near_lake_supervisor.config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from near_lake_supervisor.fetcher import MetricFetcher
from near_lake_supervisor.log import Logger
from near_lake_supervisor.monitor import StallMonitor
from near_lake_supervisor.restarter import ContainerRestarter
from near_lake_supervisor.scheduler import Scheduler


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="near-lake-supervisor",
        description="Monitors the indexer block height metric and restarts its container when progress stalls.",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to YAML config (default: %(default)s; missing file means defaults)",
    )
    parser.add_argument("-n", "--dry-run", action="store_true", help="Log restart commands instead of executing them")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log query API fallback reasons")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_arguments(argv)
    log = Logger()

    try:
        config = load_config(args.config, log=log)
    except ConfigError as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    log = Logger(config.log_file)
    dry_run = args.dry_run or config.dry_run
    verbose = args.verbose or config.verbose

    log("Starting near-lake-supervisor")
    log(f"Indexer URL: {config.indexer_url}")
    log(f"Metric: {config.metric_name}")
    log(f"Query Interval: {config.query_interval:g}s")
    log(f"Stall Timeout: {config.stall_timeout:g}s")
    log(f"Restart Cooldown: {config.restart_sleep:g}s")
    log(f"Container: {config.container_name or '(not set)'} ({config.installation_type})")
    if dry_run:
        log("DRY RUN MODE: Container restarts will be simulated only")

    fetcher = MetricFetcher(timeout=config.request_timeout, log=log, verbose=verbose)
    restarter = ContainerRestarter(installation_type=config.installation_type, dry_run=dry_run, log=log)
    monitor = StallMonitor(config, fetcher, restarter, log=log)

    shutdown = threading.Event()

    def on_signal(signum: int, frame: object) -> None:
        shutdown.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    monitor.prime()
    Scheduler(monitor, config.query_interval, config.restart_sleep, shutdown=shutdown).run()
    log("Monitoring stopped")


if __name__ == "__main__":
    main()
