"""
Convoy logging setup.

Diagnostic logging goes through the standard ``logging`` module; user-facing
play/task output is printed by the visitor. Verbosity flags on the CLI map to
log levels here.
"""

import logging
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

# Below DEBUG; emits every remote command
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
    3: TRACE,
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS.get(min(max(verbosity, 0), 3), TRACE)


def configure_logging(
    verbosity: int = 0,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    Configure the root logger for a CLI run.

    Args:
        verbosity: Number of -v flags
        log_file: Optional path to also write diagnostic logs to
    """
    level = get_level_from_verbosity(verbosity)
    format_string = DEBUG_FORMAT if level <= logging.DEBUG else DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)

    # asyncssh is chatty at INFO
    if level > logging.DEBUG:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)
