"""
Alarm Runner
============
Command-line entry point that runs the alarm scheduler until interrupted.
"""

import argparse
import logging
import threading

from dotenv import load_dotenv

from .alarms.defaults import seed_default_definitions
from .alarms.service import AlarmService
from .config import DEFAULT_CONFIG_FILE, load_config

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Parking alarm engine")
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_FILE),
        help="Path to YAML config",
    )
    parser.add_argument("--seed", action="store_true", help="Install the default alarm definitions")
    parser.add_argument("--once", action="store_true", help="Run one scheduler tick and exit")
    args = parser.parse_args(argv)

    load_dotenv()
    config = load_config(args.config)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    service = AlarmService.from_config(config)

    if args.seed:
        created = seed_default_definitions(service.store)
        logger.info(f"Seeded {len(created)} default alarm definitions")

    if args.once:
        service.scheduler.refresh()
        evaluated = service.scheduler.tick()
        logger.info(f"Evaluated {len(evaluated)} scheduled definitions")
        return 0

    service.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        service.shutdown()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
