"""
tines: run independent units of work in forked processes and collect their exit outcomes.
"""
from tines.forker import (
    AlreadyRunning, ExitOutcome, ForkFailed, Forker, ForkerError, ForkRunner,
    ProcessTitle, WaitInterrupted, fork,
)

__all__ = [
    'Forker', 'ForkRunner', 'fork', 'ExitOutcome', 'ProcessTitle',
    'ForkerError', 'AlreadyRunning', 'ForkFailed', 'WaitInterrupted',
]
