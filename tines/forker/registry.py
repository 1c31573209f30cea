import logging
from collections import namedtuple
from numbers import Real
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from tines.config import coerce_signal
from .errors import AlreadyRunning

log = logging.getLogger(__name__)

KNOWN_OPTIONS = {"process_title", "timeout", "timeouts"}

TimeoutSpec = namedtuple('TimeoutSpec', ['signal', 'duration'])


class WorkUnit(namedtuple('WorkUnit', ['index', 'callback', 'options', 'data', 'name', 'timeouts'])):
    """One registered task. Immutable once created."""
    __slots__ = ()

    @property
    def key(self) -> Hashable:
        """The identifier used for this unit in the result mapping."""
        return self.index if self.name is None else self.name

    @property
    def label(self) -> str:
        return str(self.key)


def _coerce_duration(value: Any, option: str) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValueError(f"Option '{option}' must be a number of seconds, got {value!r}.")
    return float(value)


def parse_timeouts(options: Dict[str, Any], default_signal: Any) -> Tuple[TimeoutSpec, ...]:
    """
    Builds the timeout entries configured by a unit's options.

    `timeouts` entries come first, in the order given, followed by the
    `timeout` shorthand, which sends `default_signal`.

    :raises ValueError: If an entry is malformed.
    """
    specs: List[TimeoutSpec] = []

    entries = options.get("timeouts") or ()
    if isinstance(entries, dict):
        raise ValueError("Option 'timeouts' must be a list of {'signal', 'timeout'} entries.")
    for entry in entries:
        try:
            signal_value, duration = entry["signal"], entry["timeout"]
        except (KeyError, TypeError):
            raise ValueError(f"Invalid 'timeouts' entry {entry!r}; expected {{'signal': ..., 'timeout': ...}}.") from None
        specs.append(TimeoutSpec(coerce_signal(signal_value), _coerce_duration(duration, "timeouts")))

    if options.get("timeout") is not None:
        specs.append(TimeoutSpec(coerce_signal(default_signal), _coerce_duration(options["timeout"], "timeout")))

    return tuple(specs)


class ForkRegistry:
    """
    Ordered collection of registered work units.

    Once frozen, the registry rejects every further registration; a child
    process holds a frozen copy, so registering from inside a unit fails too.
    """

    def __init__(self, default_signal: Any) -> None:
        self._units: List[WorkUnit] = []
        self._frozen = False
        self._default_signal = default_signal

    def __len__(self) -> int:
        return len(self._units)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, callback: Callable[[Any], Any], options: Optional[Dict[str, Any]] = None,
                 data: Any = None, name: Optional[Hashable] = None) -> int:
        """
        Appends a work unit and returns its index.

        :raises AlreadyRunning: If the registry has been frozen by a run.
        :raises TypeError: If the callback is not callable.
        :raises ValueError: If the options are malformed or the unit's key is already taken.
        """
        if self._frozen:
            raise AlreadyRunning()
        if not callable(callback):
            raise TypeError(f"Fork callback must be callable, got {type(callback).__name__}.")

        options = dict(options or {})
        unknown = set(options) - KNOWN_OPTIONS
        if unknown:
            log.debug(f"Ignoring unknown fork options: {sorted(unknown)}")

        index = len(self._units)
        key = index if name is None else name
        if any(unit.key == key for unit in self._units):
            raise ValueError(f"A fork is already registered under the key {key!r}.")
        unit = WorkUnit(
            index=index,
            callback=callback,
            options=options,
            data=data,
            name=name,
            timeouts=parse_timeouts(options, self._default_signal),
        )
        self._units.append(unit)
        log.debug(f"Registered fork #{index} ({unit.label}) with {len(unit.timeouts)} timeout(s).")
        return index

    def freeze(self) -> Sequence[WorkUnit]:
        """
        Freezes the registry and returns its units in registration order.

        :raises AlreadyRunning: If the registry was already frozen.
        """
        if self._frozen:
            raise AlreadyRunning()
        self._frozen = True
        return tuple(self._units)
