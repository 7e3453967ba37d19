"""
RPC Command Handlers for cl-channeldb

This module contains the implementation logic for channeldb-* RPC commands.
The actual @plugin.method() decorators remain in cl-channeldb.py, which
creates thin wrappers that call these handler functions.

Design Pattern:
    - Each handler receives a ChannelDbContext with all dependencies
    - Handlers are pure functions that can be easily tested
    - Invalid user input yields an {"error": ...} dict; database errors
      propagate to pyln, which reports them to the RPC caller
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass
class ChannelDbContext:
    """
    Context object holding all dependencies for RPC command handlers.
    """
    database: Any  # ChannelsDatabase
    config: Any    # ChannelDbConfig
    pending_relay_db: Any = None  # PendingRelayDatabase
    log: Callable[..., None] = None  # Logger function: (msg, level) -> None


def _parse_channel_id(channel_id: Any) -> Tuple[Optional[bytes], Optional[Dict[str, Any]]]:
    """Parse a hex channel id. Returns (bytes, None) or (None, error dict)."""
    if not isinstance(channel_id, str) or len(channel_id) != 64:
        return None, {"error": "invalid_channel_id",
                      "message": "channel_id must be 64 hex characters"}
    try:
        return bytes.fromhex(channel_id), None
    except ValueError:
        return None, {"error": "invalid_channel_id",
                      "message": "channel_id must be 64 hex characters"}


def _check_ready(ctx: ChannelDbContext) -> Optional[Dict[str, Any]]:
    if not ctx.database or not ctx.database.initialized:
        return {"error": "Not initialized"}
    return None


def status(ctx: ChannelDbContext) -> Dict[str, Any]:
    """
    Get channel store status.

    Returns:
        Dict with schema versions, channel counts, pending relay count
        and per-operation metrics.
    """
    err = _check_ready(ctx)
    if err:
        return err

    result = {
        "db_path": ctx.database.db_path,
        "schema_versions": ctx.database.get_schema_versions(),
        "channels": ctx.database.count_channels(),
    }
    if ctx.pending_relay_db:
        result["pending_relay"] = len(ctx.pending_relay_db.list_all_pending_relay())
    if ctx.database.metrics is not None:
        result["metrics"] = ctx.database.metrics.snapshot()
    return result


def list_channels(ctx: ChannelDbContext) -> Dict[str, Any]:
    """List the ids of all active (not closed) channels."""
    err = _check_ready(ctx)
    if err:
        return err

    states = ctx.database.list_local_channels()
    channel_ids = sorted(state.channel_id.hex() for state in states)
    return {"count": len(channel_ids), "channels": channel_ids}


def get_channel(ctx: ChannelDbContext, channel_id: str) -> Dict[str, Any]:
    """
    Get the stored record for one channel, including closed ones.

    Args:
        ctx: ChannelDbContext
        channel_id: 64-char hex channel id

    Returns:
        Dict with channel_id, data_len and is_closed.
    """
    err = _check_ready(ctx)
    if err:
        return err
    cid, err = _parse_channel_id(channel_id)
    if err:
        return err

    record = ctx.database.get_channel(cid)
    if record is None:
        return {"error": "unknown_channel", "channel_id": channel_id}
    return {
        "channel_id": channel_id,
        "data_len": len(record["data"]),
        "is_closed": record["is_closed"],
    }


def list_htlc_infos(ctx: ChannelDbContext, channel_id: str,
                    commitment_number: Any) -> Dict[str, Any]:
    """
    List HTLCs recorded for one commitment of a channel.

    Args:
        ctx: ChannelDbContext
        channel_id: 64-char hex channel id
        commitment_number: Non-negative commitment index

    Returns:
        Dict with the list of {payment_hash, cltv_expiry}.
    """
    err = _check_ready(ctx)
    if err:
        return err
    cid, err = _parse_channel_id(channel_id)
    if err:
        return err
    try:
        number = int(commitment_number)
    except (TypeError, ValueError):
        return {"error": "invalid_commitment_number"}
    if number < 0:
        return {"error": "invalid_commitment_number"}

    infos = ctx.database.list_htlc_infos(cid, number)
    return {
        "channel_id": channel_id,
        "commitment_number": number,
        "htlcs": [
            {"payment_hash": payment_hash.hex(), "cltv_expiry": cltv_expiry}
            for payment_hash, cltv_expiry in infos
        ],
    }
