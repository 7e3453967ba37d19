"""
Schema migration engine for cl-channeldb

Each logical database (e.g. "channels") has one row in the `versions`
ledger table. On initialization the engine reads that version and either
creates the schema from scratch, applies the forward migration steps in
strict order up to the current version, does nothing, or refuses to
continue.

Rules:
- Steps are keyed by the version they upgrade FROM (1 -> 2 is keyed 1).
- Steps are only ever additive and applied oldest first, never skipped.
- migrate() must be called inside an open transaction; the caller commits
  or rolls back. Foreign-key enforcement must be set before that
  transaction begins (SQLite ignores the pragma inside a transaction).
"""

import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional


VERSIONS_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS versions (
        db_name TEXT NOT NULL PRIMARY KEY,
        version INTEGER NOT NULL
    )
"""


class UnknownSchemaVersionError(RuntimeError):
    """Raised when the on-disk schema version cannot be migrated to the current one."""

    def __init__(self, db_name: str, version: int, current_version: int):
        self.db_name = db_name
        self.version = version
        self.current_version = current_version
        super().__init__(
            f"Unknown version of DB {db_name} found, "
            f"version={version} current={current_version}"
        )


@dataclass
class Schema:
    """
    Description of one versioned logical database.

    Attributes:
        db_name: Name used as the key in the versions ledger
        current_version: Version the code expects
        create: Creates every table/index at current_version from nothing
        steps: from_version -> function upgrading the schema by one version
    """
    db_name: str
    current_version: int
    create: Callable[[sqlite3.Connection], None]
    steps: Dict[int, Callable[[sqlite3.Connection], None]] = field(default_factory=dict)


def ensure_versions_table(conn: sqlite3.Connection) -> None:
    conn.execute(VERSIONS_TABLE_SQL)


def get_version(conn: sqlite3.Connection, db_name: str) -> Optional[int]:
    """Read the persisted version for db_name, or None if never initialized."""
    row = conn.execute(
        "SELECT version FROM versions WHERE db_name = ?",
        (db_name,)
    ).fetchone()
    return row[0] if row else None


def set_version(conn: sqlite3.Connection, db_name: str, version: int) -> None:
    conn.execute("""
        INSERT INTO versions (db_name, version) VALUES (?, ?)
        ON CONFLICT(db_name) DO UPDATE SET version = excluded.version
    """, (db_name, version))


def migrate(conn: sqlite3.Connection, schema: Schema,
            log: Optional[Callable[..., None]] = None) -> int:
    """
    Bring schema.db_name up to schema.current_version.

    Args:
        conn: Connection with a transaction already open
        schema: Schema description
        log: Optional callable(msg, level=...) for operator-visible messages

    Returns:
        The version now persisted (always schema.current_version)

    Raises:
        UnknownSchemaVersionError: version is above current, not positive,
            or has no registered step chain up to current
    """
    ensure_versions_table(conn)
    version = get_version(conn, schema.db_name)
    current = schema.current_version

    if version is None:
        schema.create(conn)
        set_version(conn, schema.db_name, current)
        if log:
            log(f"channeldb: created db {schema.db_name} at version={current}", level='info')
        return current

    if version == current:
        return current

    if version < 1 or version > current or any(
            v not in schema.steps for v in range(version, current)):
        raise UnknownSchemaVersionError(schema.db_name, version, current)

    if log:
        log(f"channeldb: migrating db {schema.db_name}, found version={version} current={current}",
            level='warn')
    for from_version in range(version, current):
        schema.steps[from_version](conn)
        if log:
            log(f"channeldb: applied migration {schema.db_name} {from_version}->{from_version + 1}",
                level='info')
    set_version(conn, schema.db_name, current)
    return current


# =============================================================================
# CHANNELS SCHEMA
# =============================================================================

CHANNELS_DB_NAME = "channels"
CHANNELS_CURRENT_VERSION = 2


def _create_channels(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS local_channels (
            channel_id BLOB NOT NULL PRIMARY KEY,
            data BLOB NOT NULL,
            is_closed BOOLEAN NOT NULL DEFAULT 0
        )
    """)
    # No uniqueness on (channel_id, commitment_number, payment_hash):
    # re-inserting the same HTLC accumulates rows.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS htlc_infos (
            channel_id BLOB NOT NULL,
            commitment_number INTEGER NOT NULL,
            payment_hash BLOB NOT NULL,
            cltv_expiry INTEGER NOT NULL,
            FOREIGN KEY(channel_id) REFERENCES local_channels(channel_id)
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS htlc_infos_idx
        ON htlc_infos(channel_id, commitment_number)
    """)


def _channels_v1_to_v2(conn: sqlite3.Connection) -> None:
    conn.execute(
        "ALTER TABLE local_channels ADD COLUMN is_closed BOOLEAN NOT NULL DEFAULT 0"
    )


CHANNELS_SCHEMA = Schema(
    db_name=CHANNELS_DB_NAME,
    current_version=CHANNELS_CURRENT_VERSION,
    create=_create_channels,
    steps={1: _channels_v1_to_v2},
)


# =============================================================================
# PENDING RELAY SCHEMA
# =============================================================================

PENDING_RELAY_DB_NAME = "pending_relay"
PENDING_RELAY_CURRENT_VERSION = 1


def _create_pending_relay(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS pending_relay (
            channel_id BLOB NOT NULL,
            htlc_id INTEGER NOT NULL,
            data BLOB NOT NULL,
            PRIMARY KEY (channel_id, htlc_id)
        )
    """)


PENDING_RELAY_SCHEMA = Schema(
    db_name=PENDING_RELAY_DB_NAME,
    current_version=PENDING_RELAY_CURRENT_VERSION,
    create=_create_pending_relay,
)

# Order matters: all are migrated in one transaction, in this order.
ALL_SCHEMAS = (PENDING_RELAY_SCHEMA, CHANNELS_SCHEMA)
