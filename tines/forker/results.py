import os
from collections import namedtuple
from typing import Dict, Hashable, Optional, Sequence

from .registry import WorkUnit

EXIT = "exit"
SIGNAL = "signal"


class ExitOutcome(namedtuple('ExitOutcome', ['type', 'status', 'signal'])):
    """
    The terminal state of one child: either `exit` with a status, or `signal`
    with the number of the signal that terminated it. The unused field is None.
    """
    __slots__ = ()

    @classmethod
    def exited(cls, status: int) -> "ExitOutcome":
        return cls(EXIT, status, None)

    @classmethod
    def signaled(cls, signal_number: int) -> "ExitOutcome":
        return cls(SIGNAL, None, signal_number)

    @property
    def code(self) -> int:
        """The caller-facing integer: the exit status, or minus the signal number."""
        if self.type == EXIT:
            return self.status
        return -1 * self.signal


def decode_wait_status(wait_status: int) -> Optional[ExitOutcome]:
    """
    Decodes a raw wait status into an ExitOutcome.

    :return: The outcome, or None for non-terminal changes (stopped/continued).
    """
    if os.WIFEXITED(wait_status):
        return ExitOutcome.exited(os.WEXITSTATUS(wait_status))
    if os.WIFSIGNALED(wait_status):
        return ExitOutcome.signaled(os.WTERMSIG(wait_status))
    return None


def map_results(outcomes: Dict[int, ExitOutcome], units: Sequence[WorkUnit]) -> Dict[Hashable, int]:
    """
    Converts index-keyed outcomes into the caller-facing mapping, keyed by
    unit name where one was given at registration and by index otherwise.
    Units that were never spawned have no entry.
    """
    mapped: Dict[Hashable, int] = {}
    for index, outcome in outcomes.items():
        mapped[units[index].key] = outcome.code
    return mapped
