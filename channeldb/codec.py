"""
Channel state codec for cl-channeldb

The channel store treats channel state as an opaque blob. This module is
the boundary that turns a channel's live state into that blob and back.

Blob Format:

    ┌────────────────────┬────────────────────────────────────┐
    │  Magic Bytes (4)   │        JSON envelope (N)           │
    ├────────────────────┼────────────────────────────────────┤
    │     0x43485354     │  {"version", "channel_id",         │
    │     ("CHST")       │   "commitments"}                   │
    └────────────────────┴────────────────────────────────────┘

Unlike custom-message parsing, decoding a stored blob never degrades to
"ignore": any malformed blob raises ChannelCodecError so that corruption
is never silently skipped.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict


# =============================================================================
# CONSTANTS
# =============================================================================

CHANNEL_STATE_MAGIC = b'CHST'

CODEC_VERSION = 1
SUPPORTED_CODEC_VERSIONS = {1}

CHANNEL_ID_LEN = 32

# Upper bound on a single stored blob (16 MiB)
MAX_STATE_BYTES = 16 * 1024 * 1024


class ChannelCodecError(ValueError):
    """Raised when channel state cannot be encoded or a stored blob is corrupt."""


# =============================================================================
# CHANNEL STATE
# =============================================================================

@dataclass
class ChannelState:
    """
    Persistent state of one channel, as handed over by the channel state machine.

    Attributes:
        channel_id: 32-byte channel identifier
        commitments: Pure JSON data: str keys, lists (not tuples), str,
            int, float, bool and None. Anything that would come back
            different after decoding is rejected by the codec.
    """
    channel_id: bytes
    commitments: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# CODEC
# =============================================================================

class ChannelStateCodec:
    """Encodes ChannelState values to stored blobs and back."""

    def encode(self, state: ChannelState) -> bytes:
        """
        Serialize a channel state for storage.

        Format: MAGIC (4 bytes) + JSON envelope
        """
        channel_id = getattr(state, 'channel_id', None)
        if not isinstance(channel_id, (bytes, bytearray)) or len(channel_id) != CHANNEL_ID_LEN:
            raise ChannelCodecError("channel_id must be 32 bytes")

        commitments = getattr(state, 'commitments', None)
        if not isinstance(commitments, dict):
            raise ChannelCodecError("channel state commitments must be an object")

        envelope = {
            "version": CODEC_VERSION,
            "channel_id": bytes(channel_id).hex(),
            "commitments": commitments,
        }
        try:
            json_bytes = json.dumps(envelope, separators=(',', ':'), sort_keys=True).encode('utf-8')
        except (TypeError, ValueError) as e:
            raise ChannelCodecError(f"channel state is not serializable: {e}") from e

        # Non-str keys, tuples and NaN survive json.dumps but decode to
        # something unequal; storing them would break the round-trip.
        if json.loads(json_bytes)["commitments"] != commitments:
            raise ChannelCodecError("channel state commitments are not pure JSON data")

        data = CHANNEL_STATE_MAGIC + json_bytes
        if len(data) > MAX_STATE_BYTES:
            raise ChannelCodecError(f"encoded channel state too large ({len(data)} bytes)")
        return data

    def decode(self, data: bytes) -> ChannelState:
        """
        Deserialize a stored blob.

        Raises:
            ChannelCodecError: bad magic, oversize blob, malformed JSON,
                unsupported version or invalid channel id
        """
        if data is None or len(data) < len(CHANNEL_STATE_MAGIC):
            raise ChannelCodecError("channel state blob is truncated")
        if len(data) > MAX_STATE_BYTES:
            raise ChannelCodecError(f"channel state blob too large ({len(data)} bytes)")
        if bytes(data[:4]) != CHANNEL_STATE_MAGIC:
            raise ChannelCodecError("channel state blob has unknown magic prefix")

        try:
            envelope = json.loads(bytes(data[4:]).decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ChannelCodecError(f"channel state blob is not valid JSON: {e}") from e

        if not isinstance(envelope, dict):
            raise ChannelCodecError("channel state envelope must be an object")

        version = envelope.get('version')
        if version not in SUPPORTED_CODEC_VERSIONS:
            raise ChannelCodecError(f"unsupported channel state version {version!r}")

        try:
            channel_id = bytes.fromhex(envelope['channel_id'])
        except (KeyError, TypeError, ValueError) as e:
            raise ChannelCodecError("channel state blob has an invalid channel_id") from e
        if len(channel_id) != CHANNEL_ID_LEN:
            raise ChannelCodecError("channel state blob has an invalid channel_id")

        commitments = envelope.get('commitments', {})
        if not isinstance(commitments, dict):
            raise ChannelCodecError("channel state commitments must be an object")

        return ChannelState(channel_id=channel_id, commitments=commitments)


DEFAULT_CODEC = ChannelStateCodec()
