"""
Tests for the pending relay store.

Run with: pytest tests/test_pending_relay.py -v
"""

import pytest
import sys
import os
from unittest.mock import MagicMock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from channeldb.config import ChannelDbConfig
from channeldb.database import ChannelsDatabase, DatabaseNotInitializedError
from channeldb.pending_relay import PendingRelayDatabase


CHANNEL_A = bytes.fromhex("aa" * 32)
CHANNEL_B = bytes.fromhex("bb" * 32)


@pytest.fixture
def channels_db(tmp_path):
    mock_plugin = MagicMock()
    mock_plugin.log = MagicMock()
    db = ChannelsDatabase(ChannelDbConfig(db_path=str(tmp_path / "relay.db")), mock_plugin)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def relay_db(channels_db):
    return PendingRelayDatabase(channels_db)


class TestPendingRelay:

    def test_add_and_list(self, relay_db):
        assert relay_db.add_pending_relay(CHANNEL_A, 2, b"fail")
        assert relay_db.add_pending_relay(CHANNEL_A, 1, b"fulfill")
        assert relay_db.list_pending_relay(CHANNEL_A) == [(1, b"fulfill"), (2, b"fail")]

    def test_duplicate_ignored(self, relay_db):
        assert relay_db.add_pending_relay(CHANNEL_A, 1, b"first")
        assert not relay_db.add_pending_relay(CHANNEL_A, 1, b"second")
        assert relay_db.list_pending_relay(CHANNEL_A) == [(1, b"first")]

    def test_remove(self, relay_db):
        relay_db.add_pending_relay(CHANNEL_A, 1, b"x")
        assert relay_db.remove_pending_relay(CHANNEL_A, 1)
        assert not relay_db.remove_pending_relay(CHANNEL_A, 1)
        assert relay_db.list_pending_relay(CHANNEL_A) == []

    def test_list_all(self, relay_db):
        relay_db.add_pending_relay(CHANNEL_A, 1, b"x")
        relay_db.add_pending_relay(CHANNEL_B, 4, b"y")
        assert relay_db.list_all_pending_relay() == {(CHANNEL_A, 1), (CHANNEL_B, 4)}

    @pytest.mark.parametrize("data", [7, "fulfill", None, [1, 2]])
    def test_data_must_be_bytes(self, relay_db, data):
        with pytest.raises(ValueError):
            relay_db.add_pending_relay(CHANNEL_A, 1, data)
        assert relay_db.list_pending_relay(CHANNEL_A) == []

    def test_bytearray_data_accepted(self, relay_db):
        assert relay_db.add_pending_relay(CHANNEL_A, 1, bytearray(b"x"))
        assert relay_db.list_pending_relay(CHANNEL_A) == [(1, b"x")]

    @pytest.mark.parametrize("htlc_id", [-1, "1", 1.0, True, 2 ** 63])
    def test_remove_rejects_bad_htlc_id(self, relay_db, htlc_id):
        relay_db.add_pending_relay(CHANNEL_A, 1, b"x")
        with pytest.raises(ValueError):
            relay_db.remove_pending_relay(CHANNEL_A, htlc_id)
        assert relay_db.list_pending_relay(CHANNEL_A) == [(1, b"x")]

    def test_requires_initialized_store(self, tmp_path):
        mock_plugin = MagicMock()
        db = ChannelsDatabase(ChannelDbConfig(db_path=str(tmp_path / "r.db")), mock_plugin)
        relay_db = PendingRelayDatabase(db)
        with pytest.raises(DatabaseNotInitializedError):
            relay_db.list_all_pending_relay()
