"""Push-channel package for real-time updates.

Components:
- topics: Topic kinds, wire event names and payload translation
- channel_manager: Single Socket.IO connection with topic multiplexing
"""

from arkdash.realtime.channel_manager import (
    ChannelManager,
    ConnectionState,
    backoff_delay,
    get_channel_manager,
    reset_channel_manager,
)
from arkdash.realtime.topics import Topic, TopicKind

__all__ = [
    "ChannelManager",
    "ConnectionState",
    "Topic",
    "TopicKind",
    "backoff_delay",
    "get_channel_manager",
    "reset_channel_manager",
]
