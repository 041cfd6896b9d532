"""
Logging setup for applications embedding mapreducer.

Library modules only call logging.getLogger(__name__); nothing is configured on import.
Applications (and the CLI) call configure_logging() once.
"""

from __future__ import annotations
import logging
import os
import sys

# PYTHON_LOG_LEVEL=1|2|3
ENV_LEVELS = {1: logging.WARNING, 2: logging.INFO, 3: logging.DEBUG}
# --log w|i|d
FLAG_LEVELS = {"w": logging.WARNING, "i": logging.INFO, "d": logging.DEBUG}

NOISY_LIBRARIES = ["httpx", "httpcore", "openai", "urllib3", "markdown_it"]

LOG_FORMAT = (
    "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d (%(funcName)s) - %(message)s"
)


def level_from_env(default: int = logging.WARNING) -> int:
    raw = os.getenv("PYTHON_LOG_LEVEL")
    if not raw:
        return default
    try:
        return ENV_LEVELS.get(int(raw), default)
    except ValueError:
        return default


def level_from_flag(flag: str | None, default: int = logging.WARNING) -> int:
    if not flag:
        return default
    return FLAG_LEVELS.get(flag.lower()[0], default)


def configure_logging(level: int | None = None) -> None:
    """
    Configure the root logger on stderr, once.
    """
    root = logging.getLogger()

    # If already configured (library usage), respect existing config
    if root.handlers:
        logging.getLogger(__name__).debug(
            "Logging already configured, using existing setup"
        )
        return

    if level is None:
        level = level_from_env()

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    # Silence noisy libraries
    for lib in NOISY_LIBRARIES:
        logging.getLogger(lib).setLevel(logging.WARNING)
