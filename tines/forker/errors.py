from typing import Any, Dict, Hashable, Optional


class ForkerError(Exception):
    """Base class for all errors raised by the fork supervisor."""


class AlreadyRunning(ForkerError):
    """Raised when work is registered (or a run started) after the batch has started running."""

    def __init__(self, message: str = "This forker has already been run; use a new Forker for another batch.") -> None:
        super().__init__(message)


class ForkFailed(ForkerError):
    """
    Raised when the operating system could not create the process for a unit.

    `partial_results` holds the outcomes of every child that was spawned
    before the failure and reaped afterwards.
    """

    def __init__(self, unit_index: int, data: Any = None, partial_results: Optional[Dict[Hashable, int]] = None) -> None:
        super().__init__(f"Could not create fork #{unit_index}.")
        self.unit_index = unit_index
        self.data = data
        self.partial_results = partial_results if partial_results is not None else {}


class WaitInterrupted(ForkerError):
    """The blocking wait woke up without any child changing state. Always retried."""
