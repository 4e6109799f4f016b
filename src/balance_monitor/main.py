from __future__ import annotations

import argparse
import asyncio
import logging

from .config import MonitorConfig, load_config
from .errors import ConfigError
from .service import MonitorService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="balance-monitor",
        description="Alert when watched wallet balances drop below their thresholds.",
    )
    parser.add_argument(
        "config",
        nargs="?",
        default=None,
        help="Path to the JSON configuration (default: $BALANCE_MONITOR_CONFIG or config.json)",
    )
    return parser.parse_args(argv)


async def _main(config: MonitorConfig) -> None:
    service = MonitorService(config)
    await service.run()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging("INFO")
        logger.error("Cannot start balance monitor: %s", exc)
        raise SystemExit(1) from exc

    configure_logging(config.log_level)
    try:
        asyncio.run(_main(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
