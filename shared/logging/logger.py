import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict

FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LOGGERS: Dict[str, logging.Logger] = {}
# one file per runtime prefix per process; every logger of that prefix writes to it
_FILE_HANDLERS: Dict[str, logging.FileHandler] = {}


def log_dir() -> Path:
    return Path(os.getenv("LOFILIVE_LOG_DIR", "logs"))


def console_level() -> int:
    """
    Console verbosity from LOFILIVE_LOG_LEVEL (name or number).
    Unknown values fall back to INFO. The log file always gets DEBUG.
    """
    raw = os.getenv("LOFILIVE_LOG_LEVEL", "INFO").strip()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(runtime: str, formatter: logging.Formatter) -> logging.FileHandler:
    handler = _FILE_HANDLERS.get(runtime)
    if handler is not None:
        return handler

    directory = log_dir()
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")

    handler = logging.FileHandler(directory / f"{runtime}-{timestamp}.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    _FILE_HANDLERS[runtime] = handler
    return handler


def get_logger(
    name: str,
    *,
    runtime: str = "lofilive",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. encoder.supervisor, engagement.scheduler)
    - runtime: log file prefix (lofilive | control_api)
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(FORMAT)

    # ------------------------------
    # Console
    # ------------------------------
    console = logging.StreamHandler()
    console.setLevel(console_level())
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # Shared per-run file
    # ------------------------------
    logger.addHandler(_file_handler(runtime, formatter))

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
