import shlex
import psutil
import logging
import setproctitle
from typing import Optional

log = logging.getLogger(__name__)


class ProcessTitle:
    """
    Read/write access to the OS-level process title.

    Passed into the child-side execution path so tests can substitute a fake.
    """

    def get(self) -> str:
        """Returns the current title, or the shell-quoted command line if none is set."""
        title = setproctitle.getproctitle()
        if title:
            return title
        return self.command_line()

    def set(self, title: str) -> bool:
        """
        Sets the process title. Best effort: platform failures are logged and ignored.

        :return: True if the title was applied.
        """
        try:
            setproctitle.setproctitle(title)
            return True
        except (OSError, RuntimeError) as e:
            log.debug(f"Process title could not be set to '{title}': {e}")
            return False

    @staticmethod
    def command_line() -> str:
        """The current process's command line, quoted the way a shell would need it."""
        try:
            return " ".join(shlex.quote(arg) for arg in psutil.Process().cmdline())
        except psutil.Error:
            return ""


def resolve_title(title: ProcessTitle, option_title: Optional[str], title_hook, unit_label: str) -> Optional[str]:
    """
    Decides the title a child should carry.

    A per-unit `process_title` option wins; otherwise the configured hook is
    asked with the existing title and the unit's label. A falsy result means
    the title is left alone.
    """
    if option_title:
        return option_title
    if title_hook is None:
        return None
    return title_hook(title.get(), unit_label) or None
