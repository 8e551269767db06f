"""
Keyring Storage - persistence for vault and profile records.

The keyring only hands these stores encrypted vaults and non-secret
metadata; the stores themselves are opaque key/value backends.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from ..utils import set_secure_permissions

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r'[a-z0-9_.-]+')


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_PATTERN.fullmatch(key):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class MemoryStorage:
    """In-process storage (tests, ephemeral sessions)."""

    def __init__(self):
        self._data: dict[str, dict] = {}

    def store(self, key: str, value: dict) -> None:
        """Store a record under key (replaces any existing record)."""
        # Round-trip through JSON so callers can't share mutable state
        self._data[_check_key(key)] = json.loads(json.dumps(value))

    def retrieve(self, key: str) -> Optional[dict]:
        """Get a record by key, or None."""
        value = self._data.get(_check_key(key))
        return json.loads(json.dumps(value)) if value is not None else None

    def delete(self, key: str) -> None:
        """Delete a record (no-op if missing)."""
        self._data.pop(_check_key(key), None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileStorage:
    """One JSON file per key in a directory, owner-only permissions."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        # Ensure data directory exists
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{_check_key(key)}.json"

    def store(self, key: str, value: dict) -> None:
        """Store a record, replacing the file atomically."""
        path = self._path(key)
        temp_path = path.with_suffix('.tmp')
        with open(temp_path, 'w') as f:
            json.dump(value, f, indent=2)
        temp_path.replace(path)
        set_secure_permissions(path)

    def retrieve(self, key: str) -> Optional[dict]:
        """Load a record, or None if missing or unreadable."""
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load {key}: {e}")
            return None

    def delete(self, key: str) -> None:
        """Delete a record (no-op if missing)."""
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def keys(self) -> list[str]:
        return sorted(p.stem for p in self.data_dir.glob("*.json"))
