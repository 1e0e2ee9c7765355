"""Membership queries answered by other contexts over the broadcast channel."""

import asyncio
import logging
from typing import Any, List

from common import protocol
from common.constants import CHECK_TIMEOUT_SECONDS, DEFAULT_DATASET_KIND
from common.protocol import PeerMessage
from peersync.channel import BroadcastChannel

logger = logging.getLogger(__name__)


class MembershipClient:
    """
    Consumer side of check_<kind>/response_<kind>.

    Messages carry no correlation id, so every pending check resolves with
    the first check reply that arrives.
    """

    def __init__(
        self,
        channel: BroadcastChannel,
        kind: str = DEFAULT_DATASET_KIND,
        timeout: float = CHECK_TIMEOUT_SECONDS
    ):
        self.channel = channel
        self.kind = kind
        self.timeout = timeout
        self._waiters: List[asyncio.Future] = []
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self.channel.add_listener(self._on_message)
        await self.channel.start()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        self.channel.remove_listener(self._on_message)
        self._started = False

    async def check(self, candidates: List[Any]) -> List[Any]:
        """
        Ask the other contexts which candidates are in the dataset.

        Returns:
            The first reply's subset, or [] if nobody answers within the
            timeout. Never raises.
        """
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)

        try:
            if not self._started:
                await self.start()
            sent = await self.channel.send(protocol.check_request(self.kind, candidates))
            if not sent:
                return []
            return await asyncio.wait_for(waiter, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No answer to check_{self.kind} within {self.timeout}s")
            return []
        except Exception as e:
            logger.error(f"Membership check failed: {e}", exc_info=True)
            return []
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def _on_message(self, message: PeerMessage) -> None:
        if not protocol.is_check_response(message, self.kind):
            return
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(message.result)
