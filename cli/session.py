"""Long-lived CLI state: one event loop and one ingestion context."""

import asyncio
from typing import Optional

from common.logging_config import get_logger
from cli.config import Config
from ingestion.context import build_context
from ingestion.fetcher import RemoteFetcher
from peersync.channel import BroadcastChannel
from peersync.client import MembershipClient
from store.backends import StorageBackend

logger = get_logger(__name__)


class CliSession:
    """
    Holds the CLI's context across REPL commands.

    The context is never booted as a peer: the CLI reads and writes the
    shared store and talks to running contexts over the channel, but does
    not answer their messages.
    """

    def __init__(
        self,
        config: Config,
        backend: Optional[StorageBackend] = None,
        channel: Optional[BroadcastChannel] = None,
        fetcher: Optional[RemoteFetcher] = None
    ):
        self.config = config
        self.settings = config.to_settings()
        self.loop = asyncio.new_event_loop()
        self.context = build_context(
            self.settings,
            backend=backend,
            channel=channel,
            fetcher=fetcher
        )
        self._membership: Optional[MembershipClient] = None

    @property
    def cache(self):
        return self.context.cache

    @property
    def store(self):
        return self.context.store

    @property
    def channel(self) -> BroadcastChannel:
        return self.context.node.channel

    def run(self, coro):
        """Run a coroutine to completion on the session loop."""
        return self.loop.run_until_complete(coro)

    def membership_client(self) -> MembershipClient:
        if self._membership is None:
            self._membership = MembershipClient(
                self.channel,
                kind=self.settings.kind,
                timeout=self.config.data.get('check_timeout', 10)
            )
        return self._membership

    def close(self) -> None:
        try:
            self.run(self.channel.stop())
        except Exception as e:
            logger.debug(f"Channel stop failed: {e}")
        self.loop.close()
