"""Snapshot persistence backends for the shared state store.

Each category is written to its own JSON file under a data directory
(``~/.openwarden/data/threats.json`` ...). Writes go through a temporary
file and an atomic rename so a crash mid-save never leaves a torn file.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from warden.drivers.base import SnapshotPersistence

logger = logging.getLogger("OpenWarden.Persistence")


class JsonDirectoryPersistence(SnapshotPersistence):
    """One ``<category>.json`` file per category in *directory*."""

    def __init__(self, directory: str) -> None:
        self.directory = Path(os.path.expanduser(directory))

    def _path(self, category: str) -> Path:
        return self.directory / f"{category}.json"

    def load_snapshot(self, category: str) -> Dict[str, Any]:
        """Return the saved map, or ``{}`` when nothing was saved yet.

        Raises:
            OSError: If the file exists but cannot be read.
            ValueError: If the file is not a JSON object.
        """
        path = self._path(category)
        if not path.exists():
            return {}
        data = json.loads(path.read_text())
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not contain a JSON object")
        return data

    def save_snapshot(self, category: str, data: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(category)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True))
        os.replace(tmp, path)
        logger.debug("Saved %d %s entr(ies) to %s", len(data), category, path)


class MemoryPersistence(SnapshotPersistence):
    """Keeps snapshots in a dict. Used for ``--no-persist`` runs and tests."""

    def __init__(self) -> None:
        self.snapshots: Dict[str, Dict[str, Any]] = {}

    def load_snapshot(self, category: str) -> Dict[str, Any]:
        return copy.deepcopy(self.snapshots.get(category, {}))

    def save_snapshot(self, category: str, data: Dict[str, Any]) -> None:
        self.snapshots[category] = copy.deepcopy(data)
