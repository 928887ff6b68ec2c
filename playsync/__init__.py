"""Client-side state synchronization for friend relationships and direct messages."""

from playsync.session import SyncSession, build_transports

__all__ = ["SyncSession", "build_transports"]
