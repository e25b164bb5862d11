"""
Persistence Module

Saves and restores the whole colony as a single JSON blob under a fixed key.
``LocalStorage`` is a small string key/value store backed by a directory, one
file per key.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

from colony import ColonyModel

logger = logging.getLogger(__name__)

STORAGE_KEY = "alice-kernel-state"


class LocalStorage:
    """String key/value storage, one ``<key>.json`` file per key."""

    def __init__(self, root: str = "./storage"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.root / f"{safe}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StatePersistence:
    """
    Moves colony state between a :class:`ColonyModel` and storage.

    Neither method raises: outcomes are written to the colony log and
    reported as a boolean.
    """

    def __init__(self, storage: LocalStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key

    def save(self, model: ColonyModel) -> bool:
        try:
            blob = json.dumps(model.export_blob(), ensure_ascii=False)
            self.storage.set_item(self.key, blob)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save colony state: {e}")
            model.log(f"[ERROR] Failed to save state: {e}")
            return False
        logger.info(f"Colony state saved under '{self.key}' ({len(blob)} bytes)")
        model.log("[SAVE] Kernel state saved to local storage.")
        return True

    def load(self, model: ColonyModel) -> bool:
        try:
            raw = self.storage.get_item(self.key)
        except UnicodeDecodeError as e:
            return self._discard(model, e)
        except OSError as e:
            logger.error(f"Failed to read colony state: {e}")
            model.log(f"[ERROR] Failed to read saved state: {e}")
            return False
        if raw is None:
            logger.warning(f"No saved colony state under '{self.key}'")
            model.log("[WARN] No saved state found.")
            return False

        try:
            model.import_blob(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return self._discard(model, e)

        logger.info(f"Colony state loaded from '{self.key}'")
        model.log("[LOAD] Kernel state restored from local storage. Kernel is stopped.")
        return True

    def _discard(self, model: ColonyModel, error: Exception) -> bool:
        logger.error(f"Discarding corrupt colony state: {error}")
        try:
            self.storage.remove_item(self.key)
        except OSError as remove_error:
            logger.error(f"Failed to remove corrupt state: {remove_error}")
        model.log("[ERROR] Saved state was corrupt and has been discarded.")
        return False
