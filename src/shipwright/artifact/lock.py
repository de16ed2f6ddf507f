"""
Per-artifact-path build lock.

Packaging one artifact path is a critical section. A second build that
finds the lock held fails immediately instead of waiting or interleaving.
"""

import fcntl
import logging
import os
from pathlib import Path

from shipwright.core.exceptions import ArtifactBusyError

logger = logging.getLogger(__name__)


class ArtifactLock:
    """Exclusive, non-blocking ``flock`` on ``<artifact>.lock``."""

    def __init__(self, artifact_path: Path):
        self._artifact_path = artifact_path
        self._lock_file = artifact_path.with_name(artifact_path.name + ".lock")
        self._fd: int | None = None

    @property
    def lock_file(self) -> Path:
        return self._lock_file

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock or fail fast.

        Raises:
            ArtifactBusyError: If another build holds the lock
        """
        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._lock_file, os.O_CREAT | os.O_WRONLY, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise ArtifactBusyError(artifact_path=str(self._artifact_path)) from e

        # Record the owner for operators inspecting a stuck lock
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        logger.debug(f"Acquired artifact lock {self._lock_file}")

    def release(self) -> None:
        """Release the lock. The lock file stays so its inode is never swapped."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released artifact lock {self._lock_file}")

    def __enter__(self) -> "ArtifactLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
