#!/usr/bin/env python3
"""
cl-channeldb: Core Lightning plugin exposing the channel store.

Opens the channel database on init (running schema migrations once) and
registers read-mostly channeldb-* RPC methods. Handler logic lives in
channeldb/rpc_commands.py; this file only wires pyln to it.
"""

import os
import sys

from pyln.client import Plugin

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from channeldb import rpc_commands
from channeldb.config import ChannelDbConfig, DEFAULT_DB_PATH
from channeldb.database import ChannelsDatabase
from channeldb.pending_relay import PendingRelayDatabase

plugin = Plugin()

ctx = None


plugin.add_option('channeldb-path', DEFAULT_DB_PATH,
                  'Path to the channel database (or :memory:)')
plugin.add_option('channeldb-busy-timeout', '30',
                  'Seconds a statement waits on a locked database')
plugin.add_option('channeldb-journal-mode', 'WAL',
                  'SQLite journal mode')
plugin.add_option('channeldb-metrics', 'true',
                  'Record per-operation timing and failure counts')


@plugin.init()
def init(options, configuration, plugin, **kwargs):
    global ctx

    config = ChannelDbConfig.from_plugin_options(options)
    error = config.validate()
    if error:
        plugin.log(f"cl-channeldb: invalid configuration: {error}", level='error')
        raise ValueError(error)

    database = ChannelsDatabase(config, plugin)
    # Unknown schema versions abort startup: the plugin must not run
    # against a database it does not understand.
    versions = database.initialize()
    plugin.log(f"cl-channeldb: database ready at {database.db_path} {versions}")

    ctx = rpc_commands.ChannelDbContext(
        database=database,
        config=config,
        pending_relay_db=PendingRelayDatabase(database),
        log=plugin.log,
    )


@plugin.subscribe("shutdown")
def on_shutdown(plugin, **kwargs):
    if ctx and ctx.database:
        ctx.database.close()
    sys.exit(0)


@plugin.method("channeldb-status")
def channeldb_status(plugin):
    """Show schema versions, channel counts and operation metrics."""
    return rpc_commands.status(ctx)


@plugin.method("channeldb-listchannels")
def channeldb_listchannels(plugin):
    """List ids of active channels."""
    return rpc_commands.list_channels(ctx)


@plugin.method("channeldb-getchannel")
def channeldb_getchannel(plugin, channel_id: str):
    """Show the stored record of a channel, including closed ones."""
    return rpc_commands.get_channel(ctx, channel_id)


@plugin.method("channeldb-listhtlcinfos")
def channeldb_listhtlcinfos(plugin, channel_id: str, commitment_number: int):
    """List HTLCs recorded for a commitment number of a channel."""
    return rpc_commands.list_htlc_infos(ctx, channel_id, commitment_number)


if __name__ == "__main__":
    plugin.run()
