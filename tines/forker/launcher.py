import os
import sys
import signal
import logging
from numbers import Integral
from typing import TYPE_CHECKING, Any, Optional

from .errors import ForkFailed
from .process_title import resolve_title
from .registry import WorkUnit

if TYPE_CHECKING:
    from .forker import ForkRunner

log = logging.getLogger(__name__)


def coerce_exit_code(value: Any, error_code: int, mask: int = 0xFF) -> int:
    """
    Maps a unit callback's return value to a process exit code.

    None is success, booleans map to 0/1, anything integer-like is truncated
    to the platform's exit-code range. Everything else is an error.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value) & mask
    except (TypeError, ValueError, OverflowError):
        return error_code & mask


def _system_exit_code(exc: SystemExit, mask: int) -> int:
    """Follows Python's own convention for SystemExit codes."""
    if exc.code is None:
        return 0
    if isinstance(exc.code, bool):
        return int(exc.code)
    if isinstance(exc.code, Integral):
        return int(exc.code) & mask
    # sys.exit("message") prints the message and exits with 1.
    print(exc.code, file=sys.stderr)
    return 1


def _reset_child_signals(runner: "ForkRunner") -> None:
    """Drops everything the parent installed for its wait loop."""
    for signum in runner.settings.WAKEUP_SIGNALS:
        signal.signal(signum, signal.SIG_DFL)
    runner.channel.close_in_child()


def _flush_stdio() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (AttributeError, OSError, ValueError):
            pass


def run_child(runner: "ForkRunner", unit: WorkUnit) -> None:
    """
    Executes a unit inside the freshly forked child and terminates the process.

    Never returns: every path ends in os._exit.
    """
    settings = runner.settings
    mask = settings.EXIT_CODE_MASK
    exit_code = settings.CHILD_ERROR_EXIT_CODE & mask
    try:
        _reset_child_signals(runner)

        title = resolve_title(runner.title, unit.options.get("process_title"), runner.hooks.process_title, unit.label)
        if title:
            runner.title.set(title)

        if runner.hooks.on_child_init is not None:
            runner.hooks.on_child_init()

        result = unit.callback(unit.data)
        exit_code = coerce_exit_code(result, settings.CHILD_ERROR_EXIT_CODE, mask)
    except SystemExit as e:
        exit_code = _system_exit_code(e, mask)
    except BaseException:
        child_log = logging.getLogger(f"{settings.CHILD_LOGGER_PREFIX}{unit.label}")
        child_log.exception(f"Fork #{unit.index} ({unit.label}) failed with an unhandled exception.")
    finally:
        _flush_stdio()
        os._exit(exit_code)


def spawn(runner: "ForkRunner", unit: WorkUnit) -> Optional[int]:
    """
    Forks the process for one unit.

    In the parent, returns the child's pid, or None when the fork failed and
    the failure hook chose to continue. The child never returns from here.

    :raises ForkFailed: When the fork failed and the failure hook raised it.
    """
    try:
        pid = os.fork()
    except OSError as e:
        log.error(f"Could not create fork #{unit.index} ({unit.label}): {e}")
        try:
            runner.hooks.on_fork_failed(unit.index, unit.data)
        except ForkFailed as failure:
            if failure.__cause__ is None:
                failure.__cause__ = e
            raise
        return None

    if pid == 0:
        run_child(runner, unit)

    log.info(f"Started fork #{unit.index} ({unit.label}) with PID: {pid}")
    return pid


def default_fork_failed(unit_index: int, data: Any) -> None:
    """The default failure policy: abort the spawn loop."""
    raise ForkFailed(unit_index, data)
