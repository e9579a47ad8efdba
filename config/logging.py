# coding: utf-8
"""
Loguru sinks for the CTG API: console, daily files and Sentry
"""
import logging
import sys
from pathlib import Path

import sentry_sdk
from loguru import logger

from config.config import LOG_LEVEL, LOG_DIR, ENVIRONMENT, SENTRY_DSN

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

# logger name -> minimum level
QUIET_LOGGERS = {
    "aiohttp": logging.WARNING,
    "apscheduler": logging.WARNING,
    "asyncio": logging.WARNING,
    "sqlalchemy.engine": logging.ERROR,
    "stripe": logging.WARNING,
}

SENTRY_LEVELS = {"ERROR": "error", "CRITICAL": "fatal"}


def _file_sink(logs_dir: Path, prefix: str, level: str, retention: str) -> None:
    logger.add(
        logs_dir / f"{prefix}_{{time:YYYY-MM-DD}}.log",
        format=FILE_FORMAT,
        level=level,
        rotation="00:00",
        retention=retention,
        compression="zip",
        encoding="utf-8",
    )


def setup_logging() -> None:
    """
    Replace loguru's default handler with the API sinks

    Console follows LOG_LEVEL. When LOG_DIR is set, everything goes to
    api_*.log (kept a week) and errors also to error_*.log (kept a month).
    """
    logger.remove()
    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=LOG_LEVEL, colorize=True)

    if LOG_DIR:
        logs_dir = Path(LOG_DIR)
        if not logs_dir.is_absolute():
            logs_dir = Path(__file__).parent.parent / logs_dir
        logs_dir.mkdir(parents=True, exist_ok=True)

        _file_sink(logs_dir, "api", "DEBUG", "7 days")
        _file_sink(logs_dir, "error", "ERROR", "30 days")

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logger.info(f"CTG API logging initialized | Environment: {ENVIRONMENT} | Log level: {LOG_LEVEL}")


def sentry_sink(message):
    """Forward ERROR/CRITICAL records (and their exceptions) to Sentry"""
    record = message.record
    sentry_level = SENTRY_LEVELS.get(record["level"].name)

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
    elif sentry_level:
        sentry_sdk.capture_message(
            record["message"],
            level=sentry_level,
            extras={
                "module": record["name"],
                "function": record["function"],
                "line": record["line"],
            },
        )
