"""
I/O Module: serial line sources and the cross-process snapshot channel.
"""

from .line_source import (
    EndOfStream,
    ReplayLineReader,
    SerialLineReader,
    TransportError,
)
from .snapshot_channel import (
    DEFAULT_SEGMENT_NAME,
    ChannelRole,
    ConnectionState,
    Snapshot,
    SnapshotChannel,
    SnapshotChannelError,
    snapshot_dtype,
)

__all__ = [
    'EndOfStream',
    'ReplayLineReader',
    'SerialLineReader',
    'TransportError',
    'DEFAULT_SEGMENT_NAME',
    'ChannelRole',
    'ConnectionState',
    'Snapshot',
    'SnapshotChannel',
    'SnapshotChannelError',
    'snapshot_dtype',
]
