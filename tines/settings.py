"""
This module contains the configuration defaults for the tines fork supervisor.
It defines logging, child exit-code and timeout settings, all of which can be
overridden through environment variables (or a .env file) prefixed with TINES_.
"""

import os
import signal
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)

#* --- Core Paths ---
# JSON overrides are only read when a path is configured.
_overrides_path = os.getenv("TINES_OVERRIDES_PATH", "")
OVERRIDES_JSON_PATH = pathlib.Path(_overrides_path) if _overrides_path else None

#* --- Logging Settings ---
LOG_LEVEL = os.getenv("TINES_LOG_LEVEL", "INFO").upper()
_log_file = os.getenv("TINES_LOG_FILE", "")
LOG_FILE_PATH = pathlib.Path(_log_file) if _log_file else None
LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
CHILD_LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s:%(process)d] - %(message)s'
CHILD_LOGGER_PREFIX = "tines.fork."

#* --- Child Process Settings ---
# Exit code used when a unit callback raises or returns something that is not an exit code.
CHILD_ERROR_EXIT_CODE = int(os.getenv("TINES_CHILD_ERROR_EXIT_CODE", "255"))
# Platform exit codes are truncated to one byte.
EXIT_CODE_MASK = 0xFF

#* --- Timeout Settings ---
# Signal sent by the single-value 'timeout' option. Accepts a name ("SIGTERM") or a number.
DEFAULT_TIMEOUT_SIGNAL = os.getenv("TINES_DEFAULT_TIMEOUT_SIGNAL", "SIGTERM")
# Smallest interval the coalesced alarm is armed for, in seconds.
MIN_ALARM_INTERVAL = float(os.getenv("TINES_MIN_ALARM_INTERVAL", "0.001"))

#* --- Wait Loop Settings ---
WAKEUP_READ_SIZE = 512
# Signals the parent listens for while children are running.
WAKEUP_SIGNALS = (signal.SIGCHLD, signal.SIGALRM)

#* --- MODIFIABLE SETTINGS (Changeable at runtime via the overrides file) ---
MODIFIABLE_SETTINGS = {
    "LOG_LEVEL",
    "CHILD_ERROR_EXIT_CODE",
    "DEFAULT_TIMEOUT_SIGNAL",
    "MIN_ALARM_INTERVAL",
}
