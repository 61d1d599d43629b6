"""
Persisted "stop in progress" flag.

The only state that survives a restart: once the user stops a job the
UI keeps showing "Stopping..." until the server confirms nothing is left.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Dict

from config.logging_config import get_logger

logger = get_logger(__name__)


class StopIntentStore:
    """JSON-file backed stop-intent flags, one per job type."""

    def __init__(self, storage_path: Path):
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._flags: Dict[str, str] = {}
        self._load()

    def _load(self):
        """Load flags from storage"""
        if not self.storage_path.exists():
            return
        try:
            with open(self.storage_path, "r") as f:
                data = json.load(f)
            self._flags = dict(data.get("stopping", {}))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable stop-intent file {self.storage_path}: {e}")
            self._flags = {}

    def _save(self):
        """Save flags to storage"""
        data = {
            "stopping": self._flags,
            "updated_at": datetime.now().isoformat(),
        }
        with open(self.storage_path, "w") as f:
            json.dump(data, f, indent=2)

    def is_set(self, job_type: str) -> bool:
        return job_type in self._flags

    def set(self, job_type: str):
        if job_type in self._flags:
            return
        self._flags[job_type] = datetime.now().isoformat()
        self._save()
        logger.debug(f"Stop intent persisted: {job_type}")

    def clear(self, job_type: str) -> bool:
        """
        Remove the flag.

        Returns:
            True if a flag was present
        """
        if job_type not in self._flags:
            return False
        del self._flags[job_type]
        self._save()
        logger.debug(f"Stop intent cleared: {job_type}")
        return True
