import logging
import sys
from typing import Optional, Union

from tines.config import effective_settings as config


class MainFormatter(logging.Formatter):
    """A formatter that tags records emitted inside forked children with their pid."""

    def __init__(self) -> None:
        super().__init__(config.LOG_FORMAT)
        self._child_formatter = logging.Formatter(config.CHILD_LOG_FORMAT)

    def format(self, record):
        if record.name.startswith(config.CHILD_LOGGER_PREFIX):
            return self._child_formatter.format(record)
        return super().format(record)


def setup_logging(console_level: Optional[Union[int, str]] = None) -> None:
    """
    Configures the root logger for an application using the supervisor.
    This sets up the console handler and, if configured, a file handler,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
                          Defaults to the LOG_LEVEL setting.
    """
    if console_level is None:
        console_level = config.LOG_LEVEL

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- File Handler (conditional) ---
    if config.LOG_FILE_PATH:
        try:
            config.LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(config.LOG_FILE_PATH, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(MainFormatter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.error(f"Failed to initialize file logging handler at {config.LOG_FILE_PATH}: {e}")
