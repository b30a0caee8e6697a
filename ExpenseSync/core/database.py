"""
Local SQLite cache of user record snapshots.

The cache holds one full snapshot per user id, serialized as sorted-key JSON.
It is the fallback of last resort: every successful save lands here before it
is reported, so storage failures are raised as
:class:`~ExpenseSync.status.status.CacheUnavailableException`. A snapshot that
cannot be decoded is treated as absent.
"""

import enum
import json
import logging
import os
import pathlib
import sqlite3
from typing import Dict, List, Optional

from .model import UserRecord, now_str
from ..settings import lib
from ..status import status

SCHEMA_VERSION = '1'

META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'schema_version': 'TEXT',
    'created': 'TEXT',
}

SNAPSHOT_SCHEMA: Dict[str, str] = {
    'user_id': 'TEXT PRIMARY KEY',
    'payload': 'TEXT NOT NULL',
    'updated': 'TEXT',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Snapshots = 'snapshots'


def encode_record(record: UserRecord) -> str:
    """Serialize a record to the stable text form stored in the cache."""
    return json.dumps(record.to_dict(), sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def decode_record(payload: str) -> UserRecord:
    """Deserialize a cached payload.

    Raises:
        status.CacheInvalidException: If the payload is not a valid record.
    """
    try:
        return UserRecord.from_dict(json.loads(payload))
    except (ValueError, TypeError) as ex:
        raise status.CacheInvalidException(str(ex)) from ex


class LocalCache:
    """Durable key-value store of user record snapshots. Performs no merging."""

    def __init__(self, db_path: Optional[os.PathLike] = None) -> None:
        self.db_path: pathlib.Path = pathlib.Path(db_path) if db_path else lib.get_settings().db_path
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the cache database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    def _schema_is_valid(self, conn: sqlite3.Connection) -> bool:
        for table, schema in ((Table.Meta, META_SCHEMA), (Table.Snapshots, SNAPSHOT_SCHEMA)):
            if not self._table_exists_in_conn(conn, table.value):
                logging.warning(f'Cache table "{table.value}" is missing. Schema will be recreated.')
                return False
            columns = {row[1] for row in conn.execute(f'PRAGMA table_info({table.value})').fetchall()}
            if not set(schema).issubset(columns):
                logging.warning(
                    f'Cache table "{table.value}" is missing columns {set(schema) - columns}. '
                    f'Schema will be recreated.'
                )
                return False
        row = conn.execute(f'SELECT schema_version FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
        if not row or row[0] != SCHEMA_VERSION:
            logging.warning(f'Cache schema version {row[0] if row else None} != {SCHEMA_VERSION}.')
            return False
        return True

    def _initialize_schema_if_needed(self) -> None:
        """
        Ensures the database file and schema are valid, recreating them if not.

        Raises:
            status.CacheUnavailableException: If the schema cannot be created even after
                deleting the database file.
        """
        try:
            self._create_schema()
        except sqlite3.Error as e:
            logging.error(f'SQLite error during schema initialization: {e}. Attempting recovery.', exc_info=True)
            try:
                self.delete()
                self._create_schema()
                logging.info('Cache schema recreated after an error and delete.')
            except (sqlite3.Error, OSError) as final_e:
                raise status.CacheUnavailableException(
                    f'Unrecoverable cache schema error: {final_e}'
                ) from final_e

    def _create_schema(self) -> None:
        conn = self.connection()
        try:
            if self._schema_is_valid(conn):
                logging.debug('Existing cache schema is valid.')
                return

            logging.info(f'Creating cache schema in {self.db_path}.')
            conn.execute(f'DROP TABLE IF EXISTS {Table.Meta.value}')
            conn.execute(f'DROP TABLE IF EXISTS {Table.Snapshots.value}')
            for table, schema in ((Table.Meta, META_SCHEMA), (Table.Snapshots, SNAPSHOT_SCHEMA)):
                cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in schema.items())
                conn.execute(f'CREATE TABLE {table.value} ({cols_sql})')
            conn.execute(
                f'INSERT INTO {Table.Meta.value} (meta_id, schema_version, created) VALUES (1, ?, ?)',
                (SCHEMA_VERSION, now_str())
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, user_id: str) -> Optional[UserRecord]:
        """Return the snapshot for a user, or None if absent or corrupt.

        Raises:
            status.CacheUnavailableException: If the database cannot be read.
        """
        try:
            conn = self.connection()
            try:
                row = conn.execute(
                    f'SELECT payload FROM {Table.Snapshots.value} WHERE user_id=?', (user_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as ex:
            raise status.CacheUnavailableException(f'Failed to read snapshot for "{user_id}": {ex}') from ex

        if row is None:
            return None
        try:
            return decode_record(row[0])
        except status.CacheInvalidException:
            logging.warning(f'Ignoring corrupt snapshot for "{user_id}".')
            return None

    def set(self, user_id: str, record: UserRecord) -> None:
        """Store the full snapshot for a user, replacing any previous one.

        Raises:
            status.CacheUnavailableException: If the snapshot cannot be written.
        """
        payload = encode_record(record)
        try:
            conn = self.connection()
            try:
                conn.execute(
                    f'INSERT OR REPLACE INTO {Table.Snapshots.value} (user_id, payload, updated) VALUES (?, ?, ?)',
                    (user_id, payload, now_str())
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as ex:
            raise status.CacheUnavailableException(f'Failed to write snapshot for "{user_id}": {ex}') from ex
        logging.debug(f'Cached snapshot for "{user_id}" ({len(record.expenses)} expense(s)).')

    def remove(self, user_id: str) -> None:
        """Remove a user's snapshot. Removing an absent snapshot is a no-op."""
        try:
            conn = self.connection()
            try:
                conn.execute(f'DELETE FROM {Table.Snapshots.value} WHERE user_id=?', (user_id,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as ex:
            raise status.CacheUnavailableException(f'Failed to remove snapshot for "{user_id}": {ex}') from ex
        logging.debug(f'Removed cached snapshot for "{user_id}".')

    def keys(self) -> List[str]:
        """Return the user ids that have a snapshot, including locally-scoped ids."""
        try:
            conn = self.connection()
            try:
                rows = conn.execute(f'SELECT user_id FROM {Table.Snapshots.value} ORDER BY user_id').fetchall()
            finally:
                conn.close()
        except sqlite3.Error as ex:
            raise status.CacheUnavailableException(f'Failed to list snapshots: {ex}') from ex
        return [row[0] for row in rows]

    def delete(self) -> None:
        """Delete the cache database file."""
        logging.debug(f'Deleting cache database {self.db_path}.')
        if self.db_path.exists():
            self.db_path.unlink()
