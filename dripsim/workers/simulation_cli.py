from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Any

from dripsim.config import load_config, setup_logging
from dripsim.domain.exceptions import DripSimError
from dripsim.enums import WeatherCondition
from dripsim.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dripsim-sim", description="Drip irrigation simulator")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the simulation loop headless (Ctrl+C to stop)")
    sub.add_parser("status", help="Print the current status snapshot as JSON")
    sub.add_parser("trigger", help="Request one manual drip cycle")

    weather = sub.add_parser("weather", help="Override the weather condition")
    weather.add_argument("condition", choices=[c.value for c in WeatherCondition])

    sub.add_parser("refill", help="Refill the tank to capacity")

    empty = sub.add_parser("empty", help="Empty the tank or reset soil moisture")
    empty.add_argument("target", nargs="?", choices=["tank", "soil"], default="tank")
    return parser


def _run_loop(container: ServiceContainer) -> int:
    logger.info("Simulation running (press Ctrl+C to stop)")
    try:
        while container.scheduler.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping simulation...")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the simulator without the web server, or apply one command to stored state."""
    args = _build_parser().parse_args(argv)

    config = load_config()
    if args.command != "run":
        # One-shot commands: deliver events inline and never start background jobs.
        config.eventbus_worker_count = 0
    setup_logging(debug=config.DEBUG, level=config.log_level, log_dir=config.log_dir)

    container = ServiceContainer.build(config, start_scheduler=args.command == "run")
    coordinator = container.coordinator
    try:
        if args.command == "run":
            return _run_loop(container)
        if args.command == "status":
            _print(coordinator.get_status())
        elif args.command == "trigger":
            result = coordinator.trigger_irrigation()
            _print(result.to_dict())
            return 0 if result.started else 3
        elif args.command == "weather":
            _print(coordinator.set_weather(args.condition))
        elif args.command == "refill":
            _print(coordinator.refill_tank())
        elif args.command == "empty":
            _print(coordinator.empty_soil() if args.target == "soil" else coordinator.empty_tank())
        return 0
    except DripSimError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 2
    finally:
        try:
            container.shutdown()
        except (RuntimeError, OSError):
            logger.exception("Failed to shut down cleanly")


if __name__ == "__main__":
    raise SystemExit(main())
