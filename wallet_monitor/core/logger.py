"""Logging setup with rich formatting"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from wallet_monitor.core.config import LOG_FILE, LOG_LEVEL

console = Console()


def setup_logger(name: str = "wallet_monitor", level: str = LOG_LEVEL) -> logging.Logger:
    """Rich console output plus a debug-level log file"""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))
    logger.handlers.clear()

    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        tracebacks_show_locals=True,
        markup=True,
        show_path=False,
    )
    console_handler.setLevel(getattr(logging, level))

    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    # aiohttp logs every request at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    return logger


def enable_debug():
    logger.setLevel(logging.DEBUG)
    for handler in logger.handlers:
        handler.setLevel(logging.DEBUG)


def short_address(address: str) -> str:
    """First 8 characters, enough to tell wallets apart in log lines"""
    return address[:8]


logger = setup_logger()
