"""
Database module for cl-channeldb

Handles SQLite persistence for:
- Local channel records (opaque channel state blobs, soft-deleted on close)
- HTLC commitment index (payment hashes and expiries per commitment number,
  kept to build penalty transactions against revoked commitments)

Lifecycle:
- ChannelsDatabase(...) only records settings; nothing touches disk.
- initialize() opens the connection, enables foreign keys and runs the
  schema migrations in a single transaction. Every other operation is
  refused until it has succeeded.
- close() releases the connection exactly once.

Concurrency:
- One connection per store, autocommit mode, no internal locking. Callers
  serialize access to a store instance themselves.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional, Tuple

from channeldb.codec import DEFAULT_CODEC
from channeldb.config import ChannelDbConfig, VALID_JOURNAL_MODES
from channeldb.metrics import DbMetrics, with_metrics
from channeldb.migrations import ALL_SCHEMAS, get_version, migrate


# Largest value SQLite can store in an INTEGER column
MAX_SQLITE_INTEGER = 2 ** 63 - 1


class DatabaseNotInitializedError(RuntimeError):
    """Raised when the store is used before initialize() succeeded or after close()."""


def require_bytes32(value: Any, name: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
        raise ValueError(f"{name} must be 32 bytes")
    return bytes(value)


def require_non_negative(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer")
    if value > MAX_SQLITE_INTEGER:
        raise ValueError(f"{name} must be at most {MAX_SQLITE_INTEGER}")
    return value


class ChannelsDatabase:
    """
    SQLite store for local channel state and the HTLC commitment index.

    Tables:
    - local_channels (channel_id PK, data, is_closed)
    - htlc_infos (channel_id FK, commitment_number, payment_hash, cltv_expiry)
    - pending_relay is owned by PendingRelayDatabase but lives on the same
      connection; channel removal clears it.
    """

    def __init__(self, config: ChannelDbConfig, plugin, codec=None):
        """
        Initialize the database manager.

        Args:
            config: ChannelDbConfig with path, busy timeout and journal mode
            plugin: Reference to the pyln Plugin (or proxy) for logging
            codec: Object with encode(state) -> bytes and decode(bytes) -> state;
                defaults to the JSON channel state codec
        """
        if config.journal_mode.upper() not in VALID_JOURNAL_MODES:
            raise ValueError(f"journal_mode must be one of {sorted(VALID_JOURNAL_MODES)}")
        self.config = config
        self.db_path = config.resolved_db_path()
        self.plugin = plugin
        self.codec = codec if codec is not None else DEFAULT_CODEC
        self.metrics = DbMetrics() if config.metrics_enabled else None
        self._conn: Optional[sqlite3.Connection] = None
        self._initialized = False
        self._closed = False

    def _get_connection(self) -> sqlite3.Connection:
        """Open the connection on first use."""
        if self._closed:
            raise DatabaseNotInitializedError("ChannelsDatabase is closed")
        if self._conn is None:
            if self.db_path != ":memory:":
                directory = os.path.dirname(self.db_path)
                if directory:
                    os.makedirs(directory, exist_ok=True)

            # Autocommit mode: each statement commits on its own, explicit
            # transactions go through transaction().
            self._conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,
                timeout=self.config.busy_timeout_seconds
            )
            self._conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._conn.execute(f"PRAGMA journal_mode={self.config.journal_mode.upper()};")

            self.plugin.log(
                f"ChannelsDatabase: opened connection to {self.db_path}",
                level='debug'
            )
        return self._conn

    def _ready_connection(self) -> sqlite3.Connection:
        """Connection for data operations; refuses use before initialize()."""
        if self._closed:
            raise DatabaseNotInitializedError("ChannelsDatabase is closed")
        if not self._initialized:
            raise DatabaseNotInitializedError(
                "ChannelsDatabase.initialize() must succeed before use"
            )
        return self._conn

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    def close(self):
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._initialized = False
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()
            self.plugin.log("ChannelsDatabase: connection closed", level='debug')

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for atomic database transactions.

        Example:
            with self.transaction() as conn:
                conn.execute("DELETE FROM htlc_infos ...")
                conn.execute("UPDATE local_channels ...")
            # Both applied, or both rolled back on error

        Yields:
            sqlite3.Connection: The connection in transaction mode
        """
        conn = self._get_connection()
        try:
            # BEGIN IMMEDIATE takes the write lock up front
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                pass  # Don't mask the original exception
            raise

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self) -> Dict[str, int]:
        """
        Create or migrate the schema. Must succeed before any other call.

        Returns:
            Dict of logical db name -> schema version now on disk

        Raises:
            UnknownSchemaVersionError: on-disk version cannot be migrated;
                nothing is changed and the store stays unusable
            sqlite3.Error: any engine failure, after rollback
        """
        conn = self._get_connection()
        if self._initialized:
            return self.get_schema_versions()

        # Foreign keys cannot be toggled inside a multi-statement
        # transaction, so this has to happen before transaction().
        conn.execute("PRAGMA foreign_keys = ON")

        versions = {}
        with self.transaction() as txn:
            for schema in ALL_SCHEMAS:
                versions[schema.db_name] = migrate(txn, schema, log=self.plugin.log)

        self._initialized = True
        self.plugin.log(f"ChannelsDatabase: Schema initialized {versions}")
        return versions

    def get_schema_versions(self) -> Dict[str, int]:
        conn = self._ready_connection()
        return {
            schema.db_name: get_version(conn, schema.db_name)
            for schema in ALL_SCHEMAS
        }

    # =========================================================================
    # CHANNEL OPERATIONS
    # =========================================================================

    @with_metrics("channels/add-or-update-channel")
    def add_or_update_channel(self, state) -> None:
        """
        Store a channel's state, inserting or replacing its data.

        A new row starts with is_closed=0; updating an existing row never
        touches is_closed, so a closed channel stays closed.

        Args:
            state: Channel state exposing a 32-byte channel_id attribute
        """
        conn = self._ready_connection()
        channel_id = require_bytes32(getattr(state, 'channel_id', None), "channel_id")
        data = self.codec.encode(state)
        conn.execute("""
            INSERT INTO local_channels (channel_id, data, is_closed)
            VALUES (?, ?, 0)
            ON CONFLICT(channel_id) DO UPDATE SET data = excluded.data
        """, (channel_id, data))

    @with_metrics("channels/remove-channel")
    def remove_channel(self, channel_id: bytes) -> None:
        """
        Close a channel: drop its pending relays and HTLC infos, flag the row.

        All three steps run in one transaction. Each is idempotent, so
        removing an already-removed (or unknown) channel is harmless.
        """
        self._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        with self.transaction() as conn:
            conn.execute("DELETE FROM pending_relay WHERE channel_id = ?", (channel_id,))
            conn.execute("DELETE FROM htlc_infos WHERE channel_id = ?", (channel_id,))
            conn.execute(
                "UPDATE local_channels SET is_closed = 1 WHERE channel_id = ?",
                (channel_id,)
            )
        self.plugin.log(
            f"ChannelsDatabase: channel {channel_id.hex()[:16]}... marked closed",
            level='debug'
        )

    @with_metrics("channels/list-local-channels")
    def list_local_channels(self) -> List[Any]:
        """
        Decode and return every channel that is not closed.

        A blob that fails to decode aborts the whole listing: the codec's
        error propagates, no rows are skipped.
        """
        conn = self._ready_connection()
        rows = conn.execute(
            "SELECT data FROM local_channels WHERE is_closed = 0"
        ).fetchall()
        return [self.codec.decode(row['data']) for row in rows]

    def get_channel(self, channel_id: bytes) -> Optional[Dict[str, Any]]:
        """Get the raw record for a channel, closed or not."""
        conn = self._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        row = conn.execute(
            "SELECT channel_id, data, is_closed FROM local_channels WHERE channel_id = ?",
            (channel_id,)
        ).fetchone()
        if not row:
            return None
        return {
            'channel_id': bytes(row['channel_id']),
            'data': bytes(row['data']),
            'is_closed': bool(row['is_closed']),
        }

    def count_channels(self) -> Dict[str, int]:
        """Get count of channels by state."""
        conn = self._ready_connection()
        rows = conn.execute(
            "SELECT is_closed, COUNT(*) as count FROM local_channels GROUP BY is_closed"
        ).fetchall()
        counts = {'active': 0, 'closed': 0}
        for row in rows:
            counts['closed' if row['is_closed'] else 'active'] = row['count']
        return counts

    # =========================================================================
    # HTLC COMMITMENT INDEX
    # =========================================================================

    @with_metrics("channels/add-htlc-info")
    def add_htlc_info(self, channel_id: bytes, commitment_number: int,
                      payment_hash: bytes, cltv_expiry: int) -> None:
        """
        Record an HTLC that was in flight at a given commitment number.

        Append-only: the same arguments twice yield two rows. The channel
        must already exist in local_channels (foreign key).
        """
        conn = self._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        payment_hash = require_bytes32(payment_hash, "payment_hash")
        commitment_number = require_non_negative(commitment_number, "commitment_number")
        cltv_expiry = require_non_negative(cltv_expiry, "cltv_expiry")
        conn.execute("""
            INSERT INTO htlc_infos (channel_id, commitment_number, payment_hash, cltv_expiry)
            VALUES (?, ?, ?, ?)
        """, (channel_id, commitment_number, payment_hash, cltv_expiry))

    @with_metrics("channels/list-htlc-infos")
    def list_htlc_infos(self, channel_id: bytes,
                        commitment_number: int) -> List[Tuple[bytes, int]]:
        """
        Get (payment_hash, cltv_expiry) pairs recorded for one commitment.

        Returns an empty list when nothing is known for that commitment.
        """
        conn = self._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        commitment_number = require_non_negative(commitment_number, "commitment_number")
        rows = conn.execute("""
            SELECT payment_hash, cltv_expiry FROM htlc_infos
            WHERE channel_id = ? AND commitment_number = ?
        """, (channel_id, commitment_number)).fetchall()
        return [(bytes(row['payment_hash']), row['cltv_expiry']) for row in rows]
