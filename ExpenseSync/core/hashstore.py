"""Content hashes used to skip uploads of unchanged files.

The hash map maps remote filenames to the hash of the content last
successfully pushed or pulled, and is persisted in the state database.
"""
import hashlib
import json
from typing import Any, Dict, Optional

from .database import StateDatabase, get_database

SETTINGS_HASH_EXCLUDED_KEYS = ('updated_at',)


def compute_hash(content: str) -> str:
    """Return the SHA-256 hex digest of the UTF-8 encoded content.

    Only the content is hashed, so equal content always gives equal hashes.
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def compute_settings_hash(settings: Dict[str, Any]) -> str:
    """Hash app settings, ignoring the modification timestamp.

    Saving unchanged settings updates their timestamp but must not cause an upload.
    """
    stable = {k: v for k, v in settings.items() if k not in SETTINGS_HASH_EXCLUDED_KEYS}
    return compute_hash(json.dumps(stable, sort_keys=True, ensure_ascii=False))


class HashStore:
    """Load and save the filename to hash map."""

    def __init__(self, db: Optional[StateDatabase] = None) -> None:
        self._db = db

    @property
    def db(self) -> StateDatabase:
        return self._db if self._db is not None else get_database()

    def load(self) -> Dict[str, str]:
        return self.db.load_hashes()

    def save(self, hashes: Dict[str, str]) -> None:
        """Replace the stored map with ``hashes``."""
        self.db.save_hashes(dict(hashes))

    def clear(self) -> None:
        self.db.save_hashes({})
