"""Parent-process watchdog.

Editors do not always close the proxy's stdin when they crash or are
killed, so the proxy also polls for the process that launched it and
shuts the session down once it is gone.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

import psutil

from roslynwrap.cancellation import Cancellation

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class ParentLookup(ABC):
    """Finds the id of the process that launched this one."""

    @abstractmethod
    def parent_pid(self) -> int | None:
        """Return the parent pid, or ``None`` if it cannot be determined."""


class ProcStatusLookup(ParentLookup):
    """Reads the ``PPid:`` line of ``/proc/self/status``."""

    def __init__(self, status_path: str | Path = "/proc/self/status") -> None:
        self.status_path = Path(status_path)

    def parent_pid(self) -> int | None:
        try:
            with self.status_path.open() as f:
                for line in f:
                    if line.startswith("PPid:"):
                        return int(line.split(":", 1)[1].strip())
        except (OSError, ValueError) as e:
            logger.debug("Could not read parent pid from %s: %s", self.status_path, e)
        return None


class ProcessInfoLookup(ParentLookup):
    """Asks the OS process table (via psutil) for our parent."""

    def parent_pid(self) -> int | None:
        try:
            return psutil.Process().ppid()
        except psutil.Error as e:
            logger.debug("Could not query parent pid: %s", e)
            return None


class UnknownParentLookup(ParentLookup):
    def parent_pid(self) -> int | None:
        return None


def default_parent_lookup(platform: str | None = None) -> ParentLookup:
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return ProcStatusLookup()
    if platform == "win32":
        return ProcessInfoLookup()
    return UnknownParentLookup()


class ParentMonitor:
    """Cancel the session when the parent process disappears.

    The parent id is captured at construction. If it is unknown the monitor
    is inert: :meth:`run` just waits for the session to end.
    """

    def __init__(
        self,
        cancellation: Cancellation,
        lookup: ParentLookup | None = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        is_alive: Callable[[int], bool] = psutil.pid_exists,
    ) -> None:
        self.cancellation = cancellation
        self.interval = interval
        self._is_alive = is_alive
        self.parent_pid = (lookup or default_parent_lookup()).parent_pid()

    async def run(self) -> bool:
        """Poll until the parent exits or the session is cancelled.

        Returns ``True`` if this monitor triggered the cancellation.
        """
        if self.parent_pid is None:
            logger.debug("Parent process unknown; liveness monitor disabled")
            await self.cancellation.wait()
            return False

        logger.debug("Watching parent process %d", self.parent_pid)
        while not self.cancellation.is_set:
            if not self._is_alive(self.parent_pid):
                self.cancellation.cancel(f"parent process {self.parent_pid} exited")
                return True
            if await self.cancellation.sleep(self.interval):
                break
        return False
