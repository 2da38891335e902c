"""Snapshot persistence keyed by sprint id."""

import json
import logging
import os
import tempfile
import threading

from analytics.models import SprintSnapshot
from analytics.team_scoping import recency_key

logger = logging.getLogger(__name__)


class InMemorySnapshotStore:
    def __init__(self):
        self._snapshots = {}
        self._lock = threading.Lock()

    def get(self, sprint_id):
        with self._lock:
            return self._snapshots.get(str(sprint_id))

    def upsert(self, snapshot: SprintSnapshot) -> SprintSnapshot:
        with self._lock:
            self._snapshots[snapshot.sprint_id] = snapshot
        return snapshot

    def list_snapshots(self) -> list:
        with self._lock:
            snapshots = list(self._snapshots.values())
        return sorted(snapshots, key=recency_key, reverse=True)


class SnapshotStoreError(Exception):
    """The snapshot file exists but cannot be read back safely."""


class JsonFileSnapshotStore:
    """Keeps snapshots in a single JSON file, one record per sprint id.

    Reads treat an unreadable file as empty. Writes refuse to touch it, so a
    damaged file is never replaced by a partial copy of its records.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _ensure_dir(self):
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise SnapshotStoreError(f"Failed to read snapshots from {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise SnapshotStoreError(f"Unexpected snapshot file layout in {self.path}")
        return data

    def _load(self) -> dict:
        try:
            return self._read()
        except SnapshotStoreError as e:
            logger.warning(str(e))
            return {}

    def _save(self, records: dict):
        self._ensure_dir()
        directory = os.path.dirname(self.path) or "."
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".snapshots-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(records, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise

    def get(self, sprint_id):
        with self._lock:
            record = self._load().get(str(sprint_id))
        return SprintSnapshot.from_record(record) if record else None

    def upsert(self, snapshot: SprintSnapshot) -> SprintSnapshot:
        with self._lock:
            records = self._read()
            records[snapshot.sprint_id] = snapshot.to_record()
            self._save(records)
        return snapshot

    def list_snapshots(self) -> list:
        with self._lock:
            records = self._load()
        snapshots = [SprintSnapshot.from_record(r) for r in records.values()]
        return sorted(snapshots, key=recency_key, reverse=True)
