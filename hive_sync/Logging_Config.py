# Logging_Config.py
# Description: Configuration for logging
#
# The DB layer logs through standard `logging`; the sync core, API and config modules log through
# loguru. Loguru is bridged into standard logging so both end up on the same handlers.
#
# Imports
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger

from hive_sync.config import DEFAULT_CONFIG, get_setting
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "{asctime} [{levelname:<8}] {name}:{lineno:<4} : {message}"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("uvicorn.access", "httpx", "urllib3", "requests")

_LOGURU_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Marks handlers installed here so a second call replaces them instead of stacking more
_HANDLER_MARKER = "_hive_sync_handler"


def sink_to_standard_logging(message):
    """Loguru sink that re-emits each record on the standard logger of the same name."""
    record = message.record
    std_level = _LOGURU_LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def _make_formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, style="{", datefmt=LOG_DATE_FORMAT)


def configure_logging(settings: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Sets up the root logger handlers and the loguru bridge from the [logging] settings."""
    settings = settings or DEFAULT_CONFIG
    defaults = DEFAULT_CONFIG["logging"]
    level_name = str(get_setting(settings, "logging", "level", defaults["level"])).upper()
    level = getattr(logging, level_name, logging.INFO)

    # --- Loguru -> standard logging ---
    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, level="TRACE", format="{message}")

    # --- Standard logging root handlers ---
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if getattr(handler, _HANDLER_MARKER, False):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(_make_formatter())
    setattr(console_handler, _HANDLER_MARKER, True)
    root_logger.addHandler(console_handler)

    log_file = get_setting(settings, "logging", "log_file", defaults["log_file"])
    if log_file:
        log_file_path = Path(log_file).expanduser()
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=int(get_setting(settings, "logging", "max_bytes", defaults["max_bytes"])),
                backupCount=int(get_setting(settings, "logging", "backup_count", defaults["backup_count"])),
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(_make_formatter())
            setattr(file_handler, _HANDLER_MARKER, True)
            root_logger.addHandler(file_handler)
        except OSError as e:
            logging.warning(f"Could not set up file logging at '{log_file_path}': {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured (level {logging.getLevelName(level)}"
                                     f"{', file ' + str(log_file) if log_file else ''})")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################
