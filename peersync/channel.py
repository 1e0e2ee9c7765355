"""
Broadcast channels connecting execution contexts.

A message sent on a channel reaches every other context listening on the
same channel name, never the sender. Delivery is fire-and-forget: no
acknowledgements and no ordering guarantee between senders.

Two transports:
- LocalChannel: contexts inside one process, through a LocalBroadcastHub
- UdpBroadcastChannel: contexts in separate processes, via UDP multicast
  on the loopback interface
"""

import asyncio
import json
import logging
import socket
import struct
import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Set

from common.constants import CHANNEL_NAME, MAX_DATAGRAM_BYTES, MULTICAST_GROUP, MULTICAST_PORT
from common.protocol import PeerMessage

logger = logging.getLogger(__name__)

MessageListener = Callable[[PeerMessage], Awaitable[None]]


class BroadcastChannel(ABC):
    """Common listener bookkeeping for all transports."""

    def __init__(self, name: str = CHANNEL_NAME):
        self.name = name
        self._listeners: List[MessageListener] = []
        self._pending: Set[asyncio.Task] = set()

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _dispatch(self, message: PeerMessage) -> None:
        for listener in list(self._listeners):
            task = asyncio.ensure_future(self._run_listener(listener, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run_listener(self, listener: MessageListener, message: PeerMessage) -> None:
        try:
            await listener(message)
        except Exception as e:
            logger.error(f"Listener failed on '{message.action}': {e}", exc_info=True)

    @abstractmethod
    async def start(self) -> None:
        """Begin receiving messages."""

    @abstractmethod
    async def send(self, message: PeerMessage) -> bool:
        """
        Broadcast a message to the other contexts.

        Returns:
            False if the message could not be sent at all
        """

    async def stop(self) -> None:
        """Stop receiving and drop pending listener tasks."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()


class LocalBroadcastHub:
    """
    In-process rendezvous point for LocalChannel instances.

    Messages are serialized on send and parsed again per receiver, so no two
    contexts ever share a payload object.
    """

    def __init__(self):
        self._channels: Dict[str, List['LocalChannel']] = {}

    def join(self, channel: 'LocalChannel') -> None:
        members = self._channels.setdefault(channel.name, [])
        if channel not in members:
            members.append(channel)

    def leave(self, channel: 'LocalChannel') -> None:
        members = self._channels.get(channel.name, [])
        if channel in members:
            members.remove(channel)

    def members(self, name: str) -> List['LocalChannel']:
        return list(self._channels.get(name, []))

    def publish(self, sender: 'LocalChannel', payload: bytes) -> int:
        loop = asyncio.get_running_loop()
        receivers = [c for c in self.members(sender.name) if c is not sender]
        for receiver in receivers:
            loop.call_soon(receiver._receive, payload)
        return len(receivers)


class LocalChannel(BroadcastChannel):
    """Channel endpoint for a context living in the same process as its peers."""

    def __init__(self, hub: LocalBroadcastHub, name: str = CHANNEL_NAME):
        super().__init__(name)
        self.hub = hub
        self.joined = False

    async def start(self) -> None:
        self.hub.join(self)
        self.joined = True

    async def stop(self) -> None:
        self.hub.leave(self)
        self.joined = False
        await super().stop()

    async def send(self, message: PeerMessage) -> bool:
        if not self.joined:
            logger.warning(f"Dropping '{message.action}': channel {self.name} not started")
            return False
        self.hub.publish(self, message.to_json())
        return True

    def _receive(self, payload: bytes) -> None:
        if not self.joined:
            return
        try:
            message = PeerMessage.from_json(payload)
        except ValueError as e:
            logger.warning(f"Ignoring malformed message on {self.name}: {e}")
            return
        self._dispatch(message)


def encode_envelope(sender_id: str, channel: str, message: PeerMessage) -> bytes:
    """Wrap a message with the sender id and channel name for the wire."""
    return json.dumps({
        '_sender': sender_id,
        'channel': channel,
        'message': message.to_dict(),
    }).encode('utf-8')


def decode_envelope(data: bytes):
    """
    Parse a datagram.

    Returns:
        Tuple (sender_id, channel, PeerMessage)

    Raises:
        ValueError: If the datagram is not a valid envelope
    """
    envelope = json.loads(data.decode('utf-8'))
    if not isinstance(envelope, dict):
        raise ValueError("Envelope must be an object")
    return (
        envelope.get('_sender'),
        envelope.get('channel'),
        PeerMessage.from_dict(envelope.get('message')),
    )


class _MulticastProtocol(asyncio.DatagramProtocol):
    def __init__(self, channel: 'UdpBroadcastChannel'):
        self.channel = channel

    def datagram_received(self, data: bytes, addr) -> None:
        self.channel._receive(data)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Multicast socket error: {exc}")


class UdpBroadcastChannel(BroadcastChannel):
    """
    Channel endpoint for contexts in separate processes on one host.

    Every endpoint joins the same multicast group on the loopback interface;
    datagrams it sent itself come back through multicast loop and are
    dropped by sender id.
    """

    def __init__(
        self,
        name: str = CHANNEL_NAME,
        group: str = MULTICAST_GROUP,
        port: int = MULTICAST_PORT,
        interface: str = "127.0.0.1"
    ):
        super().__init__(name)
        self.group = group
        self.port = port
        self.interface = interface
        self.sender_id = uuid.uuid4().hex
        self.transport: Optional[asyncio.DatagramTransport] = None

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        sock.bind(("", self.port))

        membership = struct.pack(
            "4s4s", socket.inet_aton(self.group), socket.inet_aton(self.interface)
        )
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(self.interface))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
        sock.setblocking(False)
        return sock

    async def start(self) -> None:
        if self.transport is not None:
            return
        loop = asyncio.get_running_loop()
        self.transport, _ = await loop.create_datagram_endpoint(
            lambda: _MulticastProtocol(self),
            sock=self._create_socket()
        )
        logger.info(
            f"Joined broadcast channel {self.name} on {self.group}:{self.port} "
            f"[sender={self.sender_id}]"
        )

    async def stop(self) -> None:
        if self.transport is not None:
            self.transport.close()
            self.transport = None
        await super().stop()

    async def send(self, message: PeerMessage) -> bool:
        if self.transport is None:
            logger.warning(f"Dropping '{message.action}': channel {self.name} not started")
            return False

        data = encode_envelope(self.sender_id, self.name, message)
        if len(data) > MAX_DATAGRAM_BYTES:
            logger.warning(
                f"Dropping '{message.action}': {len(data)} bytes exceeds "
                f"datagram limit of {MAX_DATAGRAM_BYTES}"
            )
            return False

        self.transport.sendto(data, (self.group, self.port))
        return True

    def _receive(self, data: bytes) -> None:
        try:
            sender_id, channel, message = decode_envelope(data)
        except (UnicodeDecodeError, ValueError) as e:
            logger.debug(f"Ignoring malformed datagram: {e}")
            return
        if sender_id == self.sender_id or channel != self.name:
            return
        self._dispatch(message)
