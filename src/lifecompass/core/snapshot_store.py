# src/lifecompass/core/snapshot_store.py
"""
Durable local snapshot of the engine state.

The blob is named `lifecompass-storage` and shaped
{"version": 1, "state": {...}}. Loading never fails: anything unreadable
is treated as "no prior state".
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .models import CompassState, EnhancedJSONEncoder

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "lifecompass-storage"
SNAPSHOT_VERSION = 1
DEFAULT_SNAPSHOT_PATH = Path.home() / ".lifecompass" / f"{SNAPSHOT_NAME}.json"


def state_to_payload(state: CompassState) -> Dict[str, Any]:
    return {'version': SNAPSHOT_VERSION, 'state': state.to_dict()}


def state_from_payload(payload: Any) -> CompassState:
    """Rebuild state from a decoded snapshot, tolerating bad shapes."""
    if not isinstance(payload, dict):
        logger.warning("Snapshot is not a JSON object, starting fresh")
        return CompassState()

    version = payload.get('version', SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        logger.warning(f"Snapshot version {version} differs from {SNAPSHOT_VERSION}, loading what is readable")

    state = payload.get('state', payload)
    if not isinstance(state, dict):
        logger.warning("Snapshot state is not a JSON object, starting fresh")
        return CompassState()
    try:
        return CompassState.from_dict(state)
    except Exception as e:
        logger.error(f"Unreadable snapshot state, starting fresh: {e}")
        return CompassState()


class JsonFileSnapshotStore:
    """Snapshot persisted as a JSON file, replaced atomically on every save."""

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path).expanduser() if path else DEFAULT_SNAPSHOT_PATH

    def load_snapshot(self) -> CompassState:
        if not self.path.exists():
            logger.debug(f"No snapshot at {self.path}")
            return CompassState()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read snapshot {self.path}: {e}")
            return CompassState()

        state = state_from_payload(payload)
        logger.debug(f"Loaded snapshot with {len(state.reflections)} reflections")
        return state

    def save_snapshot(self, state: CompassState) -> bool:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(state_to_payload(state), f, cls=EnhancedJSONEncoder, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save snapshot {self.path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

        logger.debug(f"Snapshot saved to {self.path}")
        return True


class InMemorySnapshotStore:
    """Keeps the serialized payload in memory. Used by tests and throwaway sessions."""

    def __init__(self, payload: Optional[Any] = None):
        self.payload = payload
        self.save_count = 0

    def load_snapshot(self) -> CompassState:
        if self.payload is None:
            return CompassState()
        return state_from_payload(json.loads(json.dumps(self.payload, cls=EnhancedJSONEncoder)))

    def save_snapshot(self, state: CompassState) -> bool:
        self.payload = json.loads(json.dumps(state_to_payload(state), cls=EnhancedJSONEncoder))
        self.save_count += 1
        return True
