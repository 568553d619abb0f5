"""Logging setup shared by the API process and the CLI."""

import logging
import sys

from walletwatch.config import settings

_NOISY_LOGGERS = ("httpx", "apscheduler", "ccxt", "telegram")


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once, writing to stdout."""
    root = logging.getLogger()
    if any(getattr(h, "_walletwatch", False) for h in root.handlers):
        return

    level_name = (level or settings.log_level).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler._walletwatch = True
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
