"""
Tests for channeldb-* RPC command handlers.

Run with: pytest tests/test_rpc_commands.py -v
"""

import pytest
import sys
import os
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from channeldb import rpc_commands
from channeldb.codec import ChannelState
from channeldb.config import ChannelDbConfig
from channeldb.database import ChannelsDatabase
from channeldb.pending_relay import PendingRelayDatabase
from channeldb.rpc_commands import ChannelDbContext


CHANNEL_A = bytes.fromhex("aa" * 32)
CHANNEL_B = bytes.fromhex("bb" * 32)
HASH_1 = bytes.fromhex("11" * 32)


@pytest.fixture
def mock_plugin():
    plugin = MagicMock()
    plugin.log = MagicMock()
    return plugin


@pytest.fixture
def ctx(mock_plugin, tmp_path):
    config = ChannelDbConfig(db_path=str(tmp_path / "rpc.db"))
    database = ChannelsDatabase(config, mock_plugin)
    database.initialize()
    context = ChannelDbContext(
        database=database,
        config=config,
        pending_relay_db=PendingRelayDatabase(database),
        log=mock_plugin.log,
    )
    yield context
    database.close()


class TestStatus:

    def test_status(self, ctx):
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_A, {}))
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_B, {}))
        ctx.database.remove_channel(CHANNEL_B)
        ctx.pending_relay_db.add_pending_relay(CHANNEL_A, 1, b"x")

        result = rpc_commands.status(ctx)

        assert result["schema_versions"] == {"pending_relay": 1, "channels": 2}
        assert result["channels"] == {"active": 1, "closed": 1}
        assert result["pending_relay"] == 1
        assert result["metrics"]["channels/remove-channel"]["calls"] == 1

    def test_not_initialized(self, mock_plugin, tmp_path):
        database = ChannelsDatabase(ChannelDbConfig(db_path=str(tmp_path / "n.db")), mock_plugin)
        context = ChannelDbContext(database=database, config=database.config)
        assert rpc_commands.status(context) == {"error": "Not initialized"}
        assert rpc_commands.list_channels(context) == {"error": "Not initialized"}


class TestListChannels:

    def test_lists_active_ids(self, ctx):
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_B, {}))
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_A, {}))
        result = rpc_commands.list_channels(ctx)
        assert result == {"count": 2, "channels": [CHANNEL_A.hex(), CHANNEL_B.hex()]}


class TestGetChannel:

    def test_closed_channel_visible(self, ctx):
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_A, {"k": "v"}))
        ctx.database.remove_channel(CHANNEL_A)
        result = rpc_commands.get_channel(ctx, CHANNEL_A.hex())
        assert result["is_closed"] is True
        assert result["data_len"] > 0

    def test_unknown_channel(self, ctx):
        result = rpc_commands.get_channel(ctx, CHANNEL_A.hex())
        assert result["error"] == "unknown_channel"

    @pytest.mark.parametrize("bad_id", ["abc", "zz" * 32, None, 123])
    def test_invalid_id(self, ctx, bad_id):
        assert rpc_commands.get_channel(ctx, bad_id)["error"] == "invalid_channel_id"


class TestListHtlcInfos:

    def test_lists_htlcs(self, ctx):
        ctx.database.add_or_update_channel(ChannelState(CHANNEL_A, {}))
        ctx.database.add_htlc_info(CHANNEL_A, 4, HASH_1, 654321)

        result = rpc_commands.list_htlc_infos(ctx, CHANNEL_A.hex(), "4")

        assert result["commitment_number"] == 4
        assert result["htlcs"] == [{"payment_hash": HASH_1.hex(), "cltv_expiry": 654321}]

    def test_empty(self, ctx):
        result = rpc_commands.list_htlc_infos(ctx, CHANNEL_A.hex(), 0)
        assert result["htlcs"] == []

    @pytest.mark.parametrize("bad_number", [-1, "x", None])
    def test_invalid_commitment_number(self, ctx, bad_number):
        result = rpc_commands.list_htlc_infos(ctx, CHANNEL_A.hex(), bad_number)
        assert result == {"error": "invalid_commitment_number"}
