"""Cross-context synchronization over a broadcast channel."""

from peersync.channel import (
    BroadcastChannel,
    LocalBroadcastHub,
    LocalChannel,
    UdpBroadcastChannel,
)
from peersync.client import MembershipClient
from peersync.node import SyncNode

__all__ = [
    "BroadcastChannel",
    "LocalBroadcastHub",
    "LocalChannel",
    "MembershipClient",
    "SyncNode",
    "UdpBroadcastChannel",
]
