"""Pytest configuration and fixtures."""

import signal
import logging
import pytest

from tines.config import MergedSettings
from tines.forker import ProcessTitle


class FakeTitle(ProcessTitle):
    """Keeps the title in memory; a child sees its own copy after forking."""

    def __init__(self, initial="pytest-runner"):
        self.current = initial
        self.history = []

    def get(self):
        return self.current

    def set(self, title):
        self.current = title
        self.history.append(title)
        return True


@pytest.fixture
def fake_title():
    return FakeTitle()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from any overrides file on disk."""
    return MergedSettings(overrides_path=tmp_path / "overrides.json")


@pytest.fixture
def restore_signals():
    """Snapshot SIGALRM/SIGCHLD dispositions and restore them after the test."""
    saved = {signum: signal.getsignal(signum) for signum in (signal.SIGALRM, signal.SIGCHLD)}
    yield saved
    for signum, handler in saved.items():
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
