"""Job-scoped temporary directory."""

import logging
import os
import shutil
import tempfile
import threading
from typing import Optional

from coverloop.exceptions import CleanupError

logger = logging.getLogger(__name__)


class Workspace:
    """Temporary directory holding one job's downloads and intermediates.

    Created once per job and removed at most once, whatever the outcome.
    """

    def __init__(self, path: str):
        self.path = path
        self._removed = False
        self._lock = threading.Lock()

    @classmethod
    def create(cls, job_id: str, base_dir: Optional[str] = None) -> "Workspace":
        if base_dir:
            os.makedirs(base_dir, exist_ok=True)
        path = tempfile.mkdtemp(prefix=f"coverloop_{job_id}_", dir=base_dir)
        logger.debug(f"[WORKSPACE] Created {path}")
        return cls(path)

    @property
    def removed(self) -> bool:
        return self._removed

    def file(self, name: str) -> str:
        """Path of ``name`` inside the workspace."""
        return os.path.join(self.path, name)

    def remove(self) -> bool:
        """Delete the directory tree.

        Returns:
            True if this call removed it, False if it was already removed

        Raises:
            CleanupError: If the directory exists but could not be deleted
        """
        with self._lock:
            if self._removed:
                return False
            self._removed = True

        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            raise CleanupError(f"Failed to delete workspace {self.path}: {e}") from e
        logger.debug(f"[WORKSPACE] Removed {self.path}")
        return True
