"""
Wiring of one execution context: store, codec, fetcher, cache manager,
sync node and refresh scheduler.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ingestion.cache_manager import CacheManager
from ingestion.config import IngestionSettings
from ingestion.fetcher import RemoteFetcher
from ingestion.scheduler import RefreshScheduler
from peersync.channel import BroadcastChannel, UdpBroadcastChannel
from peersync.node import SyncNode
from store.backends import StorageBackend, create_backend
from store.chunk_store import ChunkedStore
from store.codec import EncryptionCodec

logger = logging.getLogger(__name__)


@dataclass
class IngestionContext:
    settings: IngestionSettings
    store: ChunkedStore
    cache: CacheManager
    node: SyncNode
    scheduler: RefreshScheduler
    started: bool = False

    async def start(self) -> None:
        """Boot the context and begin periodic refreshes."""
        if self.started:
            return
        await self.store.codec.warm_up()
        await self.node.start()
        await self.scheduler.start()
        self.started = True

    async def stop(self) -> None:
        if not self.started:
            return
        await self.scheduler.stop()
        await self.node.stop()
        await self.store.backend.close()
        self.started = False


def build_context(
    settings: IngestionSettings,
    backend: Optional[StorageBackend] = None,
    channel: Optional[BroadcastChannel] = None,
    fetcher: Optional[RemoteFetcher] = None
) -> IngestionContext:
    """
    Assemble a context from settings.

    backend, channel and fetcher default to the ones the settings describe;
    pass them to share a backend between in-process contexts or to use a
    LocalChannel.
    """
    if backend is None:
        backend = create_backend(settings.storage_backend, settings.storage_path)
    if channel is None:
        channel = UdpBroadcastChannel(
            group=settings.multicast_group,
            port=settings.multicast_port
        )
    if fetcher is None:
        fetcher = RemoteFetcher(download_chunk_size=settings.download_chunk_size)

    codec = EncryptionCodec(settings.passphrase, settings.salt, settings.pbkdf2_iterations)
    store = ChunkedStore(backend, codec, settings.store_name, settings.batch_size)

    cache = CacheManager(
        store,
        fetcher,
        settings.source_url,
        retention_seconds=settings.retention_seconds,
        use_change_token=settings.use_change_token,
        ranged=settings.ranged_download,
        id_field=settings.id_field,
    )

    node = SyncNode(
        cache,
        channel,
        context_id=settings.context_id or "local",
        kind=settings.kind,
        ping_max_retries=settings.ping_max_retries,
        ping_initial_delay=settings.ping_initial_delay,
    )

    scheduler = RefreshScheduler(cache.ensure_fresh, interval=settings.check_interval)

    logger.debug(
        f"Built context {settings.context_id} [backend={backend.name}, "
        f"store={settings.store_name}, kind={settings.kind}]"
    )
    return IngestionContext(
        settings=settings,
        store=store,
        cache=cache,
        node=node,
        scheduler=scheduler,
    )
