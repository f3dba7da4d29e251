"""
Run the maintenance scheduler without the HTTP API.

    python -m relay.worker                 # tick forever
    python -m relay.worker --once award_badges
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import asdict, is_dataclass

from relay.app import configure_logging
from relay.config import get_settings
from relay.dependencies import build_clients
from relay.jobs import register_maintenance_jobs
from relay.scheduler import JobScheduler, UnknownJobError

logger = logging.getLogger(__name__)


def build_scheduler() -> JobScheduler:
    settings = get_settings()
    clients = build_clients(settings)
    scheduler = JobScheduler()
    register_maintenance_jobs(
        scheduler, store=clients.store, push=clients.push, settings=settings
    )
    return scheduler


def run_loop(scheduler: JobScheduler, poll_interval_seconds: float = 60.0) -> None:
    """Block until interrupted. Intended to be run under systemd/supervisor."""
    scheduler.start()
    try:
        while True:
            time.sleep(poll_interval_seconds)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping scheduler")
    finally:
        scheduler.shutdown()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Relay maintenance scheduler")
    parser.add_argument(
        "--once",
        metavar="JOB",
        default=None,
        help="Run a single job and exit",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the registered jobs and exit",
    )
    args = parser.parse_args(argv)

    configure_logging(get_settings().log_level)
    scheduler = build_scheduler()

    if args.list:
        for status in scheduler.status():
            print(f"{status['name']}\tevery {status['intervalSeconds']:g}s")
        return 0

    if args.once:
        try:
            run = scheduler.run_now(args.once)
        except UnknownJobError:
            logger.error("Unknown job %s (known: %s)", args.once, ", ".join(scheduler.jobs))
            return 2
        if run.error:
            return 1
        result = asdict(run.result) if is_dataclass(run.result) else run.result
        logger.info("%s finished: %s", run.name, result)
        return 0

    run_loop(scheduler)
    return 0


if __name__ == "__main__":
    sys.exit(main())
