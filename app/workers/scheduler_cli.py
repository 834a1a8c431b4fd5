from __future__ import annotations

import argparse
import json
import logging
import time

from app.config import load_config, setup_logging
from app.services.container import ServiceContainer
from app.workers.scheduled_tasks import schedule_default_jobs

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="careplan-scheduler")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the background job loop (default)")
    sub.add_parser("list-tasks", help="Print the registered task names")
    run_once = sub.add_parser("run-once", help="Run one task synchronously and print its result")
    run_once.add_argument("task", help="Task name, e.g. notify.task_reminders")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the care plan background jobs without a web server."""
    args = _build_parser().parse_args(argv)

    config = load_config()
    setup_logging(debug=args.debug or config.log_level.upper() == "DEBUG", log_file=config.log_file)
    container = ServiceContainer.build(config)

    try:
        if args.command == "list-tasks":
            for name in container.scheduler.task_names:
                print(name)
            return 0

        if args.command == "run-once":
            try:
                result = container.scheduler.run_now(args.task)
            except ValueError as exc:
                print(exc)
                return 2
            print(json.dumps({"success": result.success, "result": result.result, "error": result.error}, indent=2, default=str))
            return 0 if result.success else 1

        schedule_default_jobs(container.scheduler, config)
        container.scheduler.start()
        logger.info("Scheduler running (press Ctrl+C to stop)")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping scheduler...")
        return 0
    finally:
        try:
            container.shutdown()
        except (RuntimeError, OSError):
            logger.exception("Failed to shut down scheduler cleanly")


if __name__ == "__main__":
    import sys

    raise SystemExit(main(sys.argv[1:]))
