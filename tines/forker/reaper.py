import os
import signal
import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

from .errors import WaitInterrupted
from .results import ExitOutcome, decode_wait_status

if TYPE_CHECKING:
    from .forker import ForkRunner

log = logging.getLogger(__name__)


def _ignore_signal(signum, frame) -> None:
    """Installed so the interpreter posts the signal to the wakeup fd."""


class WakeupChannel:
    """
    Self-pipe the parent blocks on while children run.

    SIGCHLD and SIGALRM are posted into the pipe by the interpreter
    (signal.set_wakeup_fd), so both child state changes and the timeout
    alarm are consumed by the wait loop itself rather than inside a handler.
    """

    def __init__(self, signals, read_size: int = 512) -> None:
        self._signals = tuple(signals)
        self._read_size = read_size
        self._read_fd: Optional[int] = None
        self._write_fd: Optional[int] = None
        self._previous_handlers: Dict[int, object] = {}
        self._previous_wakeup_fd = -1

    @property
    def is_open(self) -> bool:
        return self._read_fd is not None

    def open(self) -> None:
        self._read_fd, self._write_fd = os.pipe()
        os.set_blocking(self._write_fd, False)
        for signum in self._signals:
            self._previous_handlers[signum] = signal.signal(signum, _ignore_signal)
        self._previous_wakeup_fd = signal.set_wakeup_fd(self._write_fd, warn_on_full_buffer=False)

    def close(self) -> None:
        """Restores the handlers and wakeup fd that were active before open()."""
        if not self.is_open:
            return
        signal.set_wakeup_fd(self._previous_wakeup_fd)
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()
        self._close_fds()

    def close_in_child(self) -> None:
        """Detaches an inherited channel inside a forked child."""
        if not self.is_open:
            return
        signal.set_wakeup_fd(-1)
        self._previous_handlers.clear()
        self._close_fds()

    def _close_fds(self) -> None:
        for fd in (self._read_fd, self._write_fd):
            try:
                os.close(fd)
            except OSError:
                pass
        self._read_fd = self._write_fd = None

    def wait(self) -> Set[int]:
        """Blocks until at least one signal has been posted; returns the signal numbers seen."""
        data = os.read(self._read_fd, self._read_size)
        return set(data)


class Reaper:
    """Parent-side wait loop that drives every pending child to a terminal state."""

    def __init__(self, runner: "ForkRunner") -> None:
        self.runner = runner
        self.pending: Dict[int, int] = {}
        self.outcomes: Dict[int, ExitOutcome] = {}

    def track(self, pid: int, unit_index: int) -> None:
        self.pending[pid] = unit_index

    def reap_ready(self) -> int:
        """Collects every pending child that has terminated. Returns how many were reaped."""
        reaped = 0
        for pid in list(self.pending):
            try:
                waited_pid, wait_status = os.waitpid(pid, os.WNOHANG)
            except ChildProcessError:
                log.error(f"PID {pid} is no longer a child of this process; its outcome is lost.")
                self.pending.pop(pid)
                self.runner.timeouts.discard(pid)
                continue
            if waited_pid == 0:
                continue
            if self._handle_status(pid, wait_status):
                reaped += 1
        return reaped

    def _handle_status(self, pid: int, wait_status: int) -> bool:
        outcome = decode_wait_status(wait_status)
        if outcome is None:
            # Stopped or continued; keep waiting for this pid.
            return False

        unit_index = self.pending.pop(pid)
        self.runner.timeouts.discard(pid)
        self.outcomes[unit_index] = outcome
        unit = self.runner.units[unit_index]

        if outcome.type == "exit":
            log.info(f"Fork #{unit_index} ({unit.label}, PID {pid}) exited with status {outcome.status}.")
        else:
            log.warning(f"Fork #{unit_index} ({unit.label}, PID {pid}) was terminated by signal {outcome.signal}.")
        self.runner.notify_exit(outcome, unit)
        return True

    def wait_once(self) -> None:
        """
        Blocks for the next wakeup and reaps whatever changed.

        :raises WaitInterrupted: When only the alarm woke the loop and no child was reaped.
        """
        seen = self.runner.channel.wait()
        if signal.SIGALRM in seen:
            self.runner.timeouts.recompute_and_arm()
        if not self.reap_ready() and self.pending:
            raise WaitInterrupted()

    def drain(self) -> Dict[int, ExitOutcome]:
        """Loops until every pending pid has been reaped."""
        self.reap_ready()
        while self.pending:
            try:
                self.wait_once()
            except WaitInterrupted:
                continue
        return self.outcomes
