"""Out-of-band copy of the frames sent to the language server."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)


class NullTrafficLog:
    """Discards everything."""

    def write(self, frame: bytes) -> None:
        pass

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass


class FileTrafficLog(NullTrafficLog):
    """Appends raw frames to a file, creating its directory if needed."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: BinaryIO | None = self.path.open("ab")
        logger.info("Logging client traffic to %s", self.path)

    def write(self, frame: bytes) -> None:
        if self._file is not None:
            self._file.write(frame)

    def flush(self) -> None:
        if self._file is not None:
            self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def open_traffic_log(path: str | None) -> NullTrafficLog:
    """Return a file log for *path*, or a no-op log when it is empty."""
    if not path:
        return NullTrafficLog()
    return FileTrafficLog(path)
