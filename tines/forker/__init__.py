"""
The Forker package.
Runs a flat batch of callables, each in its own forked process.

This package contains the Forker builder and ForkRunner, and their helper
modules, which together handle registering, spawning, timing out and reaping
the children of one batch.
"""
from .errors import AlreadyRunning, ForkerError, ForkFailed, WaitInterrupted
from .forker import Forker, ForkRunner, fork
from .process_title import ProcessTitle
from .results import ExitOutcome

__all__ = [
    'Forker', 'ForkRunner', 'fork', 'ExitOutcome', 'ProcessTitle',
    'ForkerError', 'AlreadyRunning', 'ForkFailed', 'WaitInterrupted',
]
