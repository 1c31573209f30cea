import json
import signal
import logging
from pathlib import Path
from typing import Any, Optional

import tines.settings as default_settings

log = logging.getLogger(__name__)


def coerce_signal(value: Any) -> signal.Signals:
    """
    Converts a signal given as a name ("SIGTERM", "TERM") or a number into a Signals member.

    :param value: The signal name, number or Signals member.
    :return: The matching signal.Signals member.
    :raises ValueError: If the value does not name a known signal.
    """
    if isinstance(value, signal.Signals):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return signal.Signals(int(name))
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return signal.Signals[name]
        except KeyError:
            raise ValueError(f"Unknown signal name '{value}'.") from None
    try:
        return signal.Signals(int(value))
    except (TypeError, ValueError):
        raise ValueError(f"Unknown signal '{value!r}'.") from None


class MergedSettings:
    """
    A class that merges default settings with JSON/env overrides.

    This class provides a unified, attribute-based access point for all
    supervisor configuration. It follows a clear precedence:
    1. Base values from `settings.py`.
    2. Overrides from the environment / `.env` file (handled by `python-dotenv` in settings.py).
    3. Overrides from the overrides JSON file for settings in `MODIFIABLE_SETTINGS`.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """Initializes the settings object by loading defaults and overrides."""
        self._load_defaults()
        if overrides_path is not None:
            self.OVERRIDES_JSON_PATH = Path(overrides_path)
        self._load_overrides()
        self._coerce_values()

    def _load_defaults(self) -> None:
        """
        Loads all uppercase attributes from the settings.py module as defaults.
        """
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def _load_overrides(self) -> None:
        """
        Loads and applies settings from the overrides JSON file.

        It will only apply overrides for keys that are explicitly listed in
        the `MODIFIABLE_SETTINGS` set in `settings.py`.
        """
        if self.OVERRIDES_JSON_PATH is None or not self.OVERRIDES_JSON_PATH.exists():
            return

        try:
            with self.OVERRIDES_JSON_PATH.open('r') as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return

        log.info(f"Loading runtime configuration overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue
            setattr(self, key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def _coerce_values(self) -> None:
        """Normalizes values that arrive as strings from the environment or JSON."""
        self.DEFAULT_TIMEOUT_SIGNAL = coerce_signal(self.DEFAULT_TIMEOUT_SIGNAL)
        self.CHILD_ERROR_EXIT_CODE = int(self.CHILD_ERROR_EXIT_CODE)
        self.MIN_ALARM_INTERVAL = float(self.MIN_ALARM_INTERVAL)
        self.LOG_LEVEL = str(self.LOG_LEVEL).upper()




# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
