"""cl-channeldb: persistent channel state and HTLC commitment index for CLN."""
