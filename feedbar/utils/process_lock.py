"""
Run Lease
=========

File-based lease that keeps two ingestion runs from overlapping, whether
they come from two scheduler processes or from a manual CLI run started
while the service is mid-batch.
"""

import os
import fcntl
import logging
import tempfile
from pathlib import Path
from typing import Optional

from .exceptions import LeaseError

logger = logging.getLogger(__name__)


class ProcessLock:
    """Non-blocking exclusive lock on ``<lock_dir>/<lock_name>.lock``."""

    def __init__(self, lock_name: str, lock_dir: Optional[str] = None):
        """
        Initialize process lock.

        Args:
            lock_name: Name for the lock file (without extension)
            lock_dir: Directory for lock files (defaults to the system temp dir)
        """
        if lock_dir is None:
            lock_dir = tempfile.gettempdir()

        self.lock_file = Path(lock_dir) / f"{lock_name}.lock"
        self.lock_fd: Optional[int] = None
        self.acquired = False

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True if the lock was acquired, False if another holder has it
        """
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_RDWR)
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)

            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, f"{os.getpid()}\n".encode())
            os.fsync(self.lock_fd)

            self.acquired = True
            logger.debug(f"Run lease acquired: {self.lock_file}")
            return True

        except OSError:
            if self.lock_fd is not None:
                try:
                    os.close(self.lock_fd)
                except OSError:
                    pass
                self.lock_fd = None

            existing_pid = self.get_holder_pid()
            if existing_pid:
                logger.warning(f"Run lease held by PID {existing_pid}: {self.lock_file}")
            else:
                logger.warning(f"Run lease unavailable: {self.lock_file}")
            return False

    def release(self) -> None:
        """Release the lock. The lease file stays in place for the next holder."""
        if self.lock_fd is not None and self.acquired:
            try:
                os.ftruncate(self.lock_fd, 0)
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                logger.debug(f"Run lease released: {self.lock_file}")
            except OSError as e:
                logger.warning(f"Error releasing run lease: {e}")
            finally:
                os.close(self.lock_fd)
                self.lock_fd = None
                self.acquired = False

    def get_holder_pid(self) -> Optional[int]:
        """PID written by the current holder, if readable."""
        try:
            if self.lock_file.exists():
                content = self.lock_file.read_text().strip()
                return int(content)
        except (ValueError, OSError):
            pass
        return None

    def __enter__(self):
        if not self.acquire():
            raise LeaseError(
                f"Could not acquire run lease: {self.lock_file}",
                lock_file=str(self.lock_file),
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
