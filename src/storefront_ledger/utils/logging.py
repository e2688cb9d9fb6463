"""
Logging utilities for the storefront ledger.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from .config import Config

ROOT_LOGGER = "storefront_ledger"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    config: Optional[Config] = None,
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Explicit arguments win; otherwise ``log_level`` and ``log_file`` come
    from the configuration, so a deployment can turn on DEBUG tier tracing
    or a persistent checkout log through its env file alone.

    Args:
        level: Logging level name; an unknown name falls back to INFO
        log_file: Path to log file (optional)
        format_string: Custom format string for log messages
        config: Settings to read defaults from (defaults only when omitted)

    Returns:
        The package logger
    """
    config = config or Config()
    level_name = (level or config.get("log_level") or "INFO").upper()
    level_num = logging.getLevelName(level_name)
    if not isinstance(level_num, int):
        level_num = logging.INFO
    log_file = log_file or config.get("log_file") or None

    formatter = logging.Formatter(format_string or LOG_FORMAT)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level_num)

    # Reconfiguring replaces handlers instead of stacking them
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level_num)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Child of the package logger; module names already under it are used as is."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
