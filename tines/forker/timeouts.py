"""
Per-child deadlines and the single coalesced alarm that enforces them.

Every configured timeout becomes one entry. `recompute_and_arm` delivers the
signal of each entry whose deadline has passed and arms one ITIMER_REAL for
the earliest deadline still in the future, so at most one OS timer is pending
no matter how many entries exist.
"""
import time
import signal
import psutil
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .registry import TimeoutSpec

log = logging.getLogger(__name__)


class TimeoutEntry:
    """A signal due to a pid at a monotonic deadline. `fired` flips once, on delivery."""
    __slots__ = ('pid', 'signal', 'deadline', 'fired', 'sequence')

    def __init__(self, pid: int, sig: signal.Signals, deadline: float, sequence: int) -> None:
        self.pid = pid
        self.signal = sig
        self.deadline = deadline
        self.fired = False
        self.sequence = sequence

    def __repr__(self) -> str:
        return f"TimeoutEntry(pid={self.pid}, signal={self.signal!r}, deadline={self.deadline:.3f}, fired={self.fired})"


def _arm_real_timer(delay: float) -> None:
    signal.setitimer(signal.ITIMER_REAL, delay)


class TimeoutTracker:
    """
    Tracks timeout entries for the children of one run.

    :param clock: Monotonic time source.
    :param arm_timer: Called with the delay in seconds to arm the alarm, or 0 to disarm it.
    :param process_factory: Builds the handle used to signal a pid (psutil.Process by default).
    :param min_interval: Smallest delay the alarm is armed for.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 arm_timer: Callable[[float], None] = _arm_real_timer,
                 process_factory: Callable[[int], psutil.Process] = psutil.Process,
                 min_interval: float = 0.001) -> None:
        self._clock = clock
        self._arm_timer = arm_timer
        self._process_factory = process_factory
        self._min_interval = min_interval
        self._entries: List[TimeoutEntry] = []
        self._handles: Dict[int, Optional[psutil.Process]] = {}
        self._sequence = 0
        self.armed_delay = 0.0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[TimeoutEntry]:
        return list(self._entries)

    def add(self, pid: int, specs: Sequence[TimeoutSpec]) -> None:
        """Records one unfired entry per timeout spec, with deadlines measured from now."""
        if not specs:
            return
        now = self._clock()
        try:
            self._handles[pid] = self._process_factory(pid)
        except psutil.NoSuchProcess:
            # Already gone and reaped elsewhere; nothing left to signal.
            self._handles[pid] = None
        for spec in specs:
            self._entries.append(TimeoutEntry(pid, spec.signal, now + spec.duration, self._sequence))
            self._sequence += 1
            log.debug(f"Armed {spec.signal.name} for PID {pid} in {spec.duration:.3f}s.")

    def discard(self, pid: int) -> None:
        """Forgets every entry of a reaped pid so its number is never signaled again."""
        self._entries = [entry for entry in self._entries if entry.pid != pid]
        self._handles.pop(pid, None)

    def next_deadline(self) -> Optional[float]:
        pending = [entry.deadline for entry in self._entries if not entry.fired]
        return min(pending) if pending else None

    def recompute_and_arm(self) -> None:
        """
        Delivers every overdue signal, then arms the alarm for the earliest
        remaining deadline, or disarms it when nothing is left.
        """
        now = self._clock()
        due = sorted(
            (entry for entry in self._entries if not entry.fired and entry.deadline <= now),
            key=lambda entry: (entry.deadline, entry.sequence),
        )
        for entry in due:
            self._deliver(entry)

        next_deadline = self.next_deadline()
        if next_deadline is None:
            if self.armed_delay:
                self._arm_timer(0)
                self.armed_delay = 0.0
            return

        self.armed_delay = max(next_deadline - now, self._min_interval)
        self._arm_timer(self.armed_delay)

    def disarm(self) -> None:
        self._arm_timer(0)
        self.armed_delay = 0.0

    def _deliver(self, entry: TimeoutEntry) -> None:
        entry.fired = True
        handle = self._handles.get(entry.pid)
        if handle is None:
            log.debug(f"PID {entry.pid} no longer exists; skipping {entry.signal.name}.")
            return
        try:
            handle.send_signal(entry.signal)
            log.warning(f"Timeout reached for PID {entry.pid}. Sent {entry.signal.name}.")
        except psutil.NoSuchProcess:
            log.debug(f"PID {entry.pid} exited before {entry.signal.name} could be delivered.")
