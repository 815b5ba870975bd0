"""Command-line entry point for the MySQL health sampler."""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from .errors import ConfigError
from .models import Instance
from .sampler import Sampler
from .scheduler import Scheduler
from .sinks import LoggingSink, PrometheusSink
from .utils import DEFAULT_CONFIG_FILE, load_config, setup_logging

logger = logging.getLogger("mysql-sampler")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Periodically sample MySQL server health.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_FILE, help="YAML instance configuration")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between cycles (overrides config)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle for every instance and exit")
    parser.add_argument("--prometheus-port", type=int, default=None, help="Expose values for Prometheus on this port")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger.info("Starting MySQL sampler...")
    try:
        configs, interval = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1
    if args.interval is not None:
        interval = args.interval

    if not configs:
        logger.error(f"No instances configured in {args.config}")
        return 1

    logger.info(f"Loaded {len(configs)} instance(s) from configuration:")
    for c in configs:
        flags = [name for name in ("primary_stats", "replica_stats", "innodb_stats", "wsrep_stats",
                                   "replica_notifications") if getattr(c, name)]
        logger.info(f"  - {c.label} host={c.host_tag} user={c.user} flags={flags or 'none'}")

    if args.prometheus_port is not None:
        sink = PrometheusSink()
        start_http_server(args.prometheus_port, registry=sink.registry)
        logger.info(f"Serving values for Prometheus on port {args.prometheus_port}")
    else:
        sink = LoggingSink()

    instances = [Instance(config=c) for c in configs]
    scheduler = Scheduler(Sampler(sink), instances, interval=interval)

    if args.once:
        try:
            results = scheduler.run_once()
        finally:
            scheduler.close()
        failed = [r.instance for r in results if not r.success]
        for r in results:
            status = "OK" if r.success else f"FAILED ({r.error})"
            logger.info(f"[{r.instance}] {status} - {r.emitted} value(s), {r.notified} notification(s) in {r.duration:.2f}s")
        return 1 if len(failed) == len(results) else 0

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        scheduler.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    scheduler.run_forever()
    logger.info("MySQL sampler stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
