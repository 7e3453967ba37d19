"""
Pending relay store for cl-channeldb

Relay commands (fulfill/fail) that still have to be sent on an incoming
channel are kept in the `pending_relay` table until the channel
acknowledges them. The table shares the ChannelsDatabase connection and
schema lifecycle; ChannelsDatabase.remove_channel() clears a channel's
rows when the channel is closed.
"""

from typing import List, Set, Tuple

from channeldb.database import ChannelsDatabase, require_bytes32, require_non_negative


class PendingRelayDatabase:
    """Pending relay commands keyed by (channel_id, htlc_id)."""

    def __init__(self, channels_db: ChannelsDatabase):
        """
        Args:
            channels_db: Initialized (or to-be-initialized) ChannelsDatabase
                whose connection this store borrows
        """
        self._db = channels_db

    def add_pending_relay(self, channel_id: bytes, htlc_id: int, data: bytes) -> bool:
        """
        Persist a relay command. A second command for the same HTLC is ignored.

        Returns:
            True if a row was inserted
        """
        conn = self._db._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        htlc_id = require_non_negative(htlc_id, "htlc_id")
        if not isinstance(data, (bytes, bytearray)):
            raise ValueError("data must be bytes")
        result = conn.execute("""
            INSERT OR IGNORE INTO pending_relay (channel_id, htlc_id, data)
            VALUES (?, ?, ?)
        """, (channel_id, htlc_id, bytes(data)))
        return result.rowcount > 0

    def remove_pending_relay(self, channel_id: bytes, htlc_id: int) -> bool:
        """Drop an acknowledged relay command."""
        conn = self._db._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        htlc_id = require_non_negative(htlc_id, "htlc_id")
        result = conn.execute(
            "DELETE FROM pending_relay WHERE channel_id = ? AND htlc_id = ?",
            (channel_id, htlc_id)
        )
        return result.rowcount > 0

    def list_pending_relay(self, channel_id: bytes) -> List[Tuple[int, bytes]]:
        """Get (htlc_id, data) for every pending command on a channel."""
        conn = self._db._ready_connection()
        channel_id = require_bytes32(channel_id, "channel_id")
        rows = conn.execute(
            "SELECT htlc_id, data FROM pending_relay WHERE channel_id = ? ORDER BY htlc_id",
            (channel_id,)
        ).fetchall()
        return [(row['htlc_id'], bytes(row['data'])) for row in rows]

    def list_all_pending_relay(self) -> Set[Tuple[bytes, int]]:
        conn = self._db._ready_connection()
        rows = conn.execute("SELECT channel_id, htlc_id FROM pending_relay").fetchall()
        return {(bytes(row['channel_id']), row['htlc_id']) for row in rows}
