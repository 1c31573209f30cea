import signal
import logging
import threading
from collections import namedtuple
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Sequence

from tines.config import effective_settings
from . import launcher
from .errors import AlreadyRunning, ForkFailed
from .process_title import ProcessTitle
from .reaper import Reaper, WakeupChannel
from .registry import ForkRegistry, WorkUnit
from .results import EXIT, ExitOutcome, map_results
from .timeouts import TimeoutTracker

log = logging.getLogger(__name__)

Hooks = namedtuple('Hooks', [
    'on_fork_failed', 'on_child_init', 'on_child_exited',
    'on_exit_status', 'on_exit_signal', 'process_title',
])


def _require_main_thread() -> None:
    """Signals are only delivered to the main thread, which the wait loop relies on."""
    if threading.current_thread() is not threading.main_thread():
        raise RuntimeError("Forker.run() must be called from the main thread.")


class Forker:
    """
    Collects units of work and runs each one in its own forked process.

    Registration is only possible until the batch starts: `run()` (or
    `freeze()`) consumes the forker and any later `register()` raises
    AlreadyRunning, including from inside a child, which holds a copy of
    this object.

    Example:
        forker = Forker()
        forker.register(lambda data: 0, name="a")
        forker.register(lambda data: 2, name="b", options={"timeout": 5})
        forker.run()  # {"a": 0, "b": 2}
    """

    def __init__(self, *,
                 on_fork_failed: Optional[Callable[[int, Any], None]] = None,
                 on_child_init: Optional[Callable[[], None]] = None,
                 on_child_exited: Optional[Callable[[ExitOutcome, Any], None]] = None,
                 on_exit_status: Optional[Callable[[int, Any], None]] = None,
                 on_exit_signal: Optional[Callable[[int, Any], None]] = None,
                 process_title: Optional[Callable[[str, str], Optional[str]]] = None,
                 title: Optional[ProcessTitle] = None,
                 settings=None) -> None:
        self.settings = settings if settings is not None else effective_settings
        self.hooks = Hooks(
            on_fork_failed=on_fork_failed or launcher.default_fork_failed,
            on_child_init=on_child_init,
            on_child_exited=on_child_exited,
            on_exit_status=on_exit_status,
            on_exit_signal=on_exit_signal,
            process_title=process_title,
        )
        self.title = title if title is not None else ProcessTitle()
        self._registry = ForkRegistry(self.settings.DEFAULT_TIMEOUT_SIGNAL)

    def __len__(self) -> int:
        return len(self._registry)

    @property
    def has_run(self) -> bool:
        return self._registry.frozen

    def register(self, callback: Callable[[Any], Any], options: Optional[Dict[str, Any]] = None,
                 data: Any = None, name: Optional[Hashable] = None) -> int:
        """
        Registers a unit of work.

        :param callback: Called in the child with `data`; its return value becomes the exit code.
        :param options: Per-unit options: `process_title`, `timeout`, `timeouts`.
        :param data: Opaque value handed to the callback and to the exit hooks.
        :param name: Key for this unit in the result mapping; defaults to its index.
        :return: The unit's index.
        :raises AlreadyRunning: If the forker has already been run.
        """
        return self._registry.register(callback, options, data, name)

    add = register

    def freeze(self) -> "ForkRunner":
        """Ends registration and returns the runner for this batch."""
        units = self._registry.freeze()
        return ForkRunner(units, self.hooks, self.title, self.settings)

    def run(self) -> Dict[Hashable, int]:
        """
        Forks every registered unit and waits for all of them.

        :return: Outcome per unit: the exit code, or minus the terminating signal number.
        :raises AlreadyRunning: If the forker has already been run.
        :raises ForkFailed: If a process could not be created (default failure policy).
        :raises RuntimeError: If called outside the main thread; the forker stays usable.
        """
        _require_main_thread()
        return self.freeze().run()

    def fork(self, callbacks: Mapping[Hashable, Callable[[Any], Any]]) -> Dict[Hashable, int]:
        """Registers each named callback, runs the batch and returns outcomes by name."""
        for name, callback in callbacks.items():
            self.register(callback, data={'fork_name': name}, name=name)
        return self.run()


class ForkRunner:
    """
    Runs one frozen batch: spawns, enforces timeouts and reaps.

    A runner may only be run once.
    """

    def __init__(self, units: Sequence[WorkUnit], hooks: Hooks, title: ProcessTitle, settings) -> None:
        self.units = tuple(units)
        self.hooks = hooks
        self.title = title
        self.settings = settings
        self.channel = WakeupChannel(settings.WAKEUP_SIGNALS, settings.WAKEUP_READ_SIZE)
        self.timeouts = TimeoutTracker(min_interval=settings.MIN_ALARM_INTERVAL)
        self.reaper = Reaper(self)
        self._started = False
        self._hook_error: Optional[Exception] = None

    def run(self) -> Dict[Hashable, int]:
        if self._started:
            raise AlreadyRunning()
        _require_main_thread()
        self._started = True

        log.info(f"Starting {len(self.units)} fork(s).")
        failure: Optional[Exception] = None
        previous_timer = signal.getitimer(signal.ITIMER_REAL)
        self.channel.open()
        try:
            try:
                self._spawn_all()
            except Exception as e:
                failure = e
                log.critical(f"Spawning stopped ({e}); waiting for {len(self.reaper.pending)} running fork(s) before aborting.")
            self.timeouts.recompute_and_arm()
            outcomes = self.reaper.drain()
        finally:
            self.timeouts.disarm()
            self.channel.close()
            if previous_timer[0] > 0:
                signal.setitimer(signal.ITIMER_REAL, *previous_timer)

        results = map_results(outcomes, self.units)
        if failure is not None:
            if isinstance(failure, ForkFailed):
                failure.partial_results = results
            raise failure
        if self._hook_error is not None:
            self._hook_error.partial_results = results
            raise self._hook_error
        log.info(f"All {len(results)} fork(s) finished: {results}")
        return results

    def _spawn_all(self) -> None:
        for unit in self.units:
            pid = launcher.spawn(self, unit)
            if pid is None:
                continue
            self.reaper.track(pid, unit.index)
            self.timeouts.add(pid, unit.timeouts)

    def notify_exit(self, outcome: ExitOutcome, unit: WorkUnit) -> None:
        """
        Invokes the exit hooks for a reaped unit. The first hook error is kept
        and raised once every child has been reaped, with the mapped outcomes
        attached as `partial_results`.
        """
        try:
            if outcome.type == EXIT:
                if self.hooks.on_exit_status is not None:
                    self.hooks.on_exit_status(outcome.status, unit.data)
            elif self.hooks.on_exit_signal is not None:
                self.hooks.on_exit_signal(outcome.signal, unit.data)
            if self.hooks.on_child_exited is not None:
                self.hooks.on_child_exited(outcome, unit.data)
        except Exception as e:
            log.error(f"Exit hook for fork #{unit.index} ({unit.label}) raised: {e}", exc_info=True)
            if self._hook_error is None:
                self._hook_error = e


def fork(callbacks: Mapping[Hashable, Callable[[Any], Any]], **hooks) -> Dict[Hashable, int]:
    """Runs the named callbacks on a fresh Forker and returns outcomes by name."""
    return Forker(**hooks).fork(callbacks)
