"""
Local SQLite database holding the sync state.

The database stores everything the sync engine has to remember between runs:
the content hash of every file last pushed to the remote, the instant of the
last successful sync, whether the local ledger has unsynced changes, and the
repository and branch that state belongs to. The metadata table is verified on
start-up and recreated when it is missing or incomplete.
"""

import datetime
import enum
import logging
import pathlib
import sqlite3
import time
from typing import Dict, Optional, Union

from PySide6 import QtCore

from ..settings import lib
from ..status import status

# Define the expected schema for the metadata table
META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'last_sync': 'TEXT',
    'dirty': 'INTEGER',
    'repository': 'TEXT',
    'branch': 'TEXT',
}

HASHES_SCHEMA: Dict[str, str] = {
    'filename': 'TEXT PRIMARY KEY',
    'hash': 'TEXT NOT NULL',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Hashes = 'hashes'


class StateDatabase(QtCore.QObject):
    """Sync state storage. Handles schema creation, validation, and data access."""

    def __init__(self, path: Optional[Union[str, pathlib.Path]] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._path: Optional[pathlib.Path] = pathlib.Path(path) if path else None
        self._initialize_schema_if_needed()

    @property
    def path(self) -> pathlib.Path:
        """Database file, defaults to the configured db path."""
        return self._path if self._path else lib.settings.db_path

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the state database.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    @staticmethod
    def _columns_in_conn(conn: sqlite3.Connection, table_name: str) -> set:
        cursor = conn.execute(f"PRAGMA table_info({table_name})")
        return {row[1] for row in cursor.fetchall()}

    def _initialize_schema_if_needed(self, _retry: bool = True) -> None:
        """
        Ensures the database file and schema are valid.
        If the metatable or hashes table is missing or invalid, both are recreated.

        Raises:
            status.StateInvalidException: If the database cannot be created even after deleting it.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            db_file_exists = self.path.exists()
            conn = self.connection()

            schema_is_valid = (
                    self._table_exists_in_conn(conn, Table.Meta.value)
                    and set(META_SCHEMA.keys()).issubset(self._columns_in_conn(conn, Table.Meta.value))
                    and self._table_exists_in_conn(conn, Table.Hashes.value)
                    and set(HASHES_SCHEMA.keys()).issubset(self._columns_in_conn(conn, Table.Hashes.value))
            )
            if schema_is_valid:
                row = conn.execute(f"SELECT meta_id FROM {Table.Meta.value} WHERE meta_id=1").fetchone()
                schema_is_valid = row is not None

            if schema_is_valid:
                logging.debug('Existing sync state schema is valid.')
                return

            if db_file_exists:
                logging.warning('Sync state schema is invalid or incomplete. Schema will be recreated.')
            else:
                logging.info(f'Creating sync state database at {self.path}.')

            conn.execute(f"DROP TABLE IF EXISTS {Table.Meta.value}")
            conn.execute(f"DROP TABLE IF EXISTS {Table.Hashes.value}")

            meta_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in META_SCHEMA.items())
            conn.execute(f"CREATE TABLE {Table.Meta.value} ({meta_cols_sql})")
            hashes_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in HASHES_SCHEMA.items())
            conn.execute(f"CREATE TABLE {Table.Hashes.value} ({hashes_cols_sql})")

            conn.execute(
                f"INSERT INTO {Table.Meta.value} (meta_id, last_sync, dirty, repository, branch) "
                "VALUES (1, NULL, 0, '', '')"
            )
            conn.commit()

        except sqlite3.Error as e:
            logging.error(f'SQLite error during schema initialization: {e}. Attempting recovery.', exc_info=True)
            if conn:
                conn.close()
                conn = None
            if not _retry:
                raise status.StateInvalidException(f'Unrecoverable state database error: {e}') from e
            self.delete()
            self._initialize_schema_if_needed(_retry=False)
            logging.info('Sync state database recreated after an error.')
        finally:
            if conn:
                conn.close()

    def delete(self) -> None:
        """Delete the database file, retrying on failure.

        Raises:
            status.StateInvalidException: If the file cannot be removed.
        """
        db_file = self.path
        if not db_file.exists():
            logging.debug('No state database found to delete.')
            return

        max_attempts = 3
        wait_seconds = 0.5
        for attempt in range(1, max_attempts + 1):
            try:
                db_file.unlink()
                logging.info(f'State database removed: {db_file}')
                return
            except OSError as ex:
                logging.error(f'Error removing state DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt == max_attempts:
                    raise status.StateInvalidException(
                        f'Failed to remove state DB {db_file} after {max_attempts} attempts: {ex}'
                    ) from ex
                time.sleep(wait_seconds)
                wait_seconds *= 1.5

    def reset(self) -> None:
        """Forget all sync state: hashes, last sync, dirty flag and source."""
        self.delete()
        self._initialize_schema_if_needed()

    def _get_meta(self, column: str):
        conn = self.connection()
        try:
            row = conn.execute(f"SELECT {column} FROM {Table.Meta.value} WHERE meta_id=1").fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def _set_meta(self, **values) -> None:
        assignments = ', '.join(f'{k}=?' for k in values)
        conn = self.connection()
        try:
            conn.execute(f"UPDATE {Table.Meta.value} SET {assignments} WHERE meta_id=1", tuple(values.values()))
            conn.commit()
        finally:
            conn.close()

    def get_last_sync(self) -> Optional[datetime.datetime]:
        """Retrieve the instant of the last successful sync.

        Returns:
            Optional[datetime.datetime]: Aware datetime, or None if never synced or the value is invalid.
        """
        raw = self._get_meta('last_sync')
        if not raw:
            return None
        try:
            dt = datetime.datetime.fromisoformat(raw)
        except ValueError:
            logging.warning(f'Invalid last sync date format in DB: {raw}.')
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        return dt

    def set_last_sync(self, value: Optional[datetime.datetime]) -> None:
        """Record the instant of the last successful sync.

        Args:
            value: Aware datetime, naive values are taken as UTC. None clears the value.
        """
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        self._set_meta(last_sync=value.isoformat() if value else None)
        logging.debug(f'Last sync set to {value}.')

    def is_dirty(self) -> bool:
        """Return True if the local ledger changed since the last successful sync."""
        return bool(self._get_meta('dirty'))

    def set_dirty(self, value: bool) -> None:
        """Set the local-changes flag and notify listeners when it changes."""
        previous = self.is_dirty()
        self._set_meta(dirty=int(bool(value)))
        if previous != bool(value):
            from .signals import signals
            signals.dirtyChanged.emit(bool(value))

    def get_source(self) -> tuple:
        """Return the (repository, branch) the stored state belongs to."""
        conn = self.connection()
        try:
            row = conn.execute(f"SELECT repository, branch FROM {Table.Meta.value} WHERE meta_id=1").fetchone()
            return (row[0] or '', row[1] or '') if row else ('', '')
        finally:
            conn.close()

    def verify_source(self, repo: str, branch: str) -> bool:
        """Make sure the stored state describes the given remote.

        Hashes and the last sync instant are only meaningful for the repository
        and branch they were recorded against. When the remote changes they are
        cleared. The dirty flag is kept, local changes are still unsynced.

        Args:
            repo: Repository in 'owner/name' format.
            branch: Branch name.

        Returns:
            bool: True if the stored state was reset.
        """
        db_repo, db_branch = self.get_source()
        if (db_repo, db_branch) == (repo, branch):
            return False

        if not db_repo:
            logging.debug(f'Recording sync source: {repo}@{branch}')
            self._set_meta(repository=repo, branch=branch)
            return False

        logging.warning(
            f'Sync source mismatch. DB: ({db_repo}@{db_branch}), Config: ({repo}@{branch}). '
            f'Clearing stored hashes and last sync.'
        )
        self.save_hashes({})
        self._set_meta(repository=repo, branch=branch, last_sync=None)
        return True

    def load_hashes(self) -> Dict[str, str]:
        """Return the stored filename to content hash map."""
        conn = self.connection()
        try:
            cursor = conn.execute(f"SELECT filename, hash FROM {Table.Hashes.value}")
            return {filename: h for filename, h in cursor.fetchall()}
        finally:
            conn.close()

    def save_hashes(self, hashes: Dict[str, str]) -> None:
        """Replace the stored hash map.

        Args:
            hashes: Filename to content hash map. Replaces the previous map completely.
        """
        conn = self.connection()
        try:
            with conn:
                conn.execute(f"DELETE FROM {Table.Hashes.value}")
                conn.executemany(
                    f"INSERT INTO {Table.Hashes.value} (filename, hash) VALUES (?, ?)",
                    sorted(hashes.items())
                )
            logging.debug(f'Saved {len(hashes)} file hashes.')
        finally:
            conn.close()


database: Optional[StateDatabase] = None


def get_database() -> StateDatabase:
    """Return the shared state database, creating it on first use."""
    global database
    if database is None:
        database = StateDatabase()
    return database
