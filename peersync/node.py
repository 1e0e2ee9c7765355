"""
Cross-context synchronization node.

Each context runs one SyncNode next to its CacheManager. On boot the node
looks for a live peer with ping/pong; if one answers it asks for the peer's
dataset instead of decrypting or downloading its own copy.

Pings are answered as soon as the node listens. Dataset requests and
membership checks that arrive before this context finished booting are
parked and answered once the dataset is loaded.
"""

import asyncio
import logging
from typing import Optional, Set

from common import protocol
from common.constants import DEFAULT_DATASET_KIND, PING_INITIAL_DELAY_SECONDS, PING_MAX_RETRIES
from common.exceptions import RetryExhaustedError
from common.protocol import PeerMessage
from common.retry import retry_with_backoff, wait_for_event
from ingestion.cache_manager import CacheManager
from peersync.channel import BroadcastChannel

logger = logging.getLogger(__name__)

DATASET_GRACE_SECONDS = 2.0


class SyncNode:
    """
    Answers peer messages for one context and bootstraps it from peers.

    When two booting contexts find each other, each parks the other's
    dataset request. The one with the lower context id stops waiting and
    loads the dataset itself; the other adopts it from the answer.
    """

    def __init__(
        self,
        cache: CacheManager,
        channel: BroadcastChannel,
        context_id: str,
        kind: str = DEFAULT_DATASET_KIND,
        ping_max_retries: int = PING_MAX_RETRIES,
        ping_initial_delay: float = PING_INITIAL_DELAY_SECONDS,
        dataset_grace: float = DATASET_GRACE_SECONDS
    ):
        self.cache = cache
        self.channel = channel
        self.context_id = context_id
        self.kind = kind
        self.ping_max_retries = ping_max_retries
        self.ping_initial_delay = ping_initial_delay
        self.dataset_grace = dataset_grace

        self.serving = False
        self.peer_found = False
        self.adopted_from_peer = False
        self.pongs_received = 0
        self._awaiting_dataset = False
        self._parked_requesters: Set[str] = set()
        self._pong_event = asyncio.Event()
        self._peer_wait_done = asyncio.Event()
        self._ready = asyncio.Event()

    async def start(self) -> None:
        """
        Join the channel and boot the context.

        Steps:
        1. Ping for a live peer with exponential backoff
        2. If one answers, announce and request its dataset, unless that
           peer is itself booting and waiting on this context
        3. Run the cache manager's freshness check (a no-op on the network
           when the peer's copy and the shared store are current)
        4. Answer the requests and checks parked meanwhile
        """
        self._pong_event.clear()
        self._peer_wait_done.clear()
        self._ready.clear()

        self.channel.add_listener(self._on_message)
        await self.channel.start()

        self.peer_found = await self.wait_for_peer()

        if not self.peer_found:
            logger.info("No peer answered, booting standalone")
        elif any(self._boots_before(requester) for requester in self._parked_requesters):
            logger.info("Peer is booting too and waits on this context, loading the dataset here")
        else:
            self._awaiting_dataset = True
            await self.channel.send(protocol.announce(self.context_id))
            await self.channel.send(protocol.request_dataset(self.kind, self.context_id))
            await wait_for_event(self._peer_wait_done, self.dataset_grace)
            self._awaiting_dataset = False

        try:
            await self.cache.ensure_fresh()
        except Exception as e:
            logger.error(f"Initial freshness check failed: {e}", exc_info=True)

        self.serving = True
        self._ready.set()
        logger.info(
            f"Context {self.context_id} serving {self.cache.record_count} records "
            f"[source={self.cache.source}, peer={self.peer_found}]"
        )

    async def stop(self) -> None:
        self.serving = False
        self.channel.remove_listener(self._on_message)
        await self.channel.stop()
        logger.info(f"Context {self.context_id} left the channel")

    async def wait_for_peer(self) -> bool:
        """
        Ping until a pong arrives or every attempt is used up.

        Returns:
            True if a peer answered
        """
        async def attempt(number: int, delay: float) -> Optional[bool]:
            self._pong_event.clear()
            await self.channel.send(protocol.ping())
            if await wait_for_event(self._pong_event, delay):
                return True
            return None

        try:
            return await retry_with_backoff(
                attempt,
                max_attempts=self.ping_max_retries,
                base_delay=self.ping_initial_delay,
                description="peer ping"
            )
        except RetryExhaustedError as e:
            logger.debug(str(e))
            return False

    def _boots_before(self, requester: Optional[str]) -> bool:
        return requester is not None and self.context_id < requester

    async def _on_message(self, message: PeerMessage) -> None:
        action = message.action

        if action == protocol.PING:
            await self.channel.send(protocol.pong())
        elif action == protocol.PONG:
            self.pongs_received += 1
            self._pong_event.set()
        elif action == protocol.ANNOUNCE:
            # the announcer follows up with request_<kind>, which carries the dataset back
            logger.info(f"Peer {message.context_id} joined")
        elif action == protocol.request_action(self.kind):
            await self._answer_dataset_request(message)
        elif action == protocol.check_action(self.kind):
            await self._answer_check(message)
        elif protocol.is_dataset_response(message, self.kind):
            self._handle_dataset_response(message)

    async def _answer_dataset_request(self, message: PeerMessage) -> None:
        requester = message.context_id
        if not self._ready.is_set():
            if self._awaiting_dataset and self._boots_before(requester):
                logger.info(f"Peer {requester} is booting too, no longer waiting for a dataset")
                self._peer_wait_done.set()
            if requester is not None:
                self._parked_requesters.add(requester)
            try:
                await self._ready.wait()
            finally:
                self._parked_requesters.discard(requester)

        records = self.cache.dataset
        if not records:
            logger.debug(f"Ignoring dataset request from {requester}: nothing loaded")
            return
        sent = await self.channel.send(
            protocol.dataset_response(self.kind, records, self.context_id)
        )
        if sent:
            logger.info(f"Sent {len(records)} records to {requester}")

    async def _answer_check(self, message: PeerMessage) -> None:
        await self._ready.wait()
        candidates = protocol.check_candidates(message, self.kind)
        allowed = await self.cache.query(candidates)
        await self.channel.send(protocol.check_response(self.kind, allowed))

    def _handle_dataset_response(self, message: PeerMessage) -> None:
        records = message.result
        if not self._awaiting_dataset or not records:
            return
        self._awaiting_dataset = False
        self.cache.adopt(records)
        self.adopted_from_peer = True
        self._peer_wait_done.set()
        logger.info(f"Adopted dataset from peer {message.context_id}")
