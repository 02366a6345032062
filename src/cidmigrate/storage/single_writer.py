from __future__ import annotations

import fcntl
import os
from typing import IO, Optional

from cidmigrate.errors import CheckpointLocked


class SingleWriterLock:
    """
    Enforces a single migrator process per checkpoint file.
    Uses a filesystem lock. Safe for WSL + Linux.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: Optional[IO[str]] = None

    def acquire(self) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        fd = open(self.path, "w")
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            fd.close()
            raise CheckpointLocked("checkpoint_locked", f"single-writer lock already held: {self.path}") from e
        self._fd = fd

    def release(self) -> None:
        if self._fd:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None

    def __enter__(self) -> "SingleWriterLock":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
