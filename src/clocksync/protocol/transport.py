"""
Transports carrying ClockSyncMessage between nodes.

Every transport offers the same capability: open/close, send to one address,
broadcast to the group and a blocking receive that yields (message, address)
pairs, where address is whatever send() needs to reach the sender again.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

import aiohttp
from aiohttp import web

from clocksync.config import DEFAULT_MULTICAST_GROUP, DEFAULT_MULTICAST_PORT
from clocksync.errors import MessageDecodeError, TransportFailure
from clocksync.protocol.message import ClockSyncMessage, decode_message, encode_message

logger = logging.getLogger(__name__)

Address = Hashable
Endpoint = Tuple[str, int]

MESSAGE_PATH = "/clocksync/message"


class Transport(ABC):
    """Send / broadcast / receive capability used by NodeAgent"""

    @property
    @abstractmethod
    def local_address(self) -> Address:
        ...

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources. Must be safe when open() never ran or failed."""

    @abstractmethod
    async def send(self, message: ClockSyncMessage, address: Address) -> None:
        ...

    @abstractmethod
    async def broadcast(self, message: ClockSyncMessage) -> None:
        ...

    @abstractmethod
    async def receive(self) -> Tuple[ClockSyncMessage, Address]:
        ...


# ---------------------------
# UDP multicast
# ---------------------------
class _DatagramQueueProtocol(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue, label: str):
        self._queue = queue
        self._label = label

    def datagram_received(self, data, addr):
        self._queue.put_nowait((data, addr))

    def error_received(self, exc):
        logger.warning(f"{self._label} socket error: {exc}")


class MulticastTransport(Transport):
    """
    UDP transport: a unicast socket bound to the listen endpoint sends every
    datagram (so replies come back to it) and a second socket bound to the group
    port receives the multicast traffic. Both feed a single receive queue.
    """

    def __init__(self, listen_endpoint: Endpoint,
                 group_endpoint: Endpoint = (DEFAULT_MULTICAST_GROUP, DEFAULT_MULTICAST_PORT),
                 ttl: int = 1):
        self.listen_endpoint = (listen_endpoint[0], int(listen_endpoint[1]))
        self.group_endpoint = (group_endpoint[0], int(group_endpoint[1]))
        self.ttl = ttl
        self._queue: Optional[asyncio.Queue] = None
        self._unicast: Optional[asyncio.DatagramTransport] = None
        self._group: Optional[asyncio.DatagramTransport] = None

    @property
    def local_address(self) -> Endpoint:
        return self.listen_endpoint

    def _membership(self) -> bytes:
        return socket.inet_aton(self.group_endpoint[0]) + socket.inet_aton("0.0.0.0")

    def _unicast_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.ttl)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
            sock.bind(self.listen_endpoint)
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    def _group_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            # several nodes on one host share the group port
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(("", self.group_endpoint[1]))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, self._membership())
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        try:
            self._unicast, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramQueueProtocol(queue, "unicast"), sock=self._unicast_socket())
            self._group, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramQueueProtocol(queue, "multicast"), sock=self._group_socket())
        except OSError as e:
            await self.close()
            raise TransportFailure(
                f"Could not open multicast transport {self.listen_endpoint} -> {self.group_endpoint}: {e}"
            ) from e
        logger.debug(f"Joined multicast group {self.group_endpoint} from {self.listen_endpoint}")

    async def close(self) -> None:
        if self._group is not None:
            sock = self._group.get_extra_info("socket")
            try:
                if sock is not None:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._membership())
            except OSError as e:
                logger.warning(f"Error leaving multicast group {self.group_endpoint}: {e}")
            self._group.close()
            self._group = None
        if self._unicast is not None:
            self._unicast.close()
            self._unicast = None

    def _sendto(self, message: ClockSyncMessage, address: Endpoint) -> None:
        if self._unicast is None:
            raise TransportFailure("Multicast transport is not open")
        try:
            self._unicast.sendto(encode_message(message), (address[0], int(address[1])))
        except (OSError, TypeError, IndexError) as e:
            raise TransportFailure(f"Failed to send {message.type.value} to {address}: {e}") from e

    async def send(self, message: ClockSyncMessage, address: Address) -> None:
        self._sendto(message, address)

    async def broadcast(self, message: ClockSyncMessage) -> None:
        self._sendto(message, self.group_endpoint)

    async def receive(self) -> Tuple[ClockSyncMessage, Endpoint]:
        if self._queue is None:
            raise TransportFailure("Multicast transport is not open")
        while True:
            data, addr = await self._queue.get()
            try:
                return decode_message(data), addr
            except MessageDecodeError as e:
                logger.warning(f"Dropping datagram from {addr}: {e}")


# ---------------------------
# HTTP (aiohttp)
# ---------------------------
class HttpTransport(Transport):
    """
    Point-to-point HTTP transport. The group is a static list of peer base URLs;
    a small aiohttp server on the listen endpoint accepts POST /clocksync/message.
    """

    def __init__(self, listen_endpoint: Endpoint, peers: Iterable[str], *,
                 advertise_url: Optional[str] = None, request_timeout: float = 2.0):
        self.host, self.port = listen_endpoint[0], int(listen_endpoint[1])
        self.base_url = (advertise_url or f"http://{self.host}:{self.port}").rstrip("/")
        self.peers: List[str] = [p.rstrip("/") for p in peers if p and p.strip()]
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._queue: Optional[asyncio.Queue] = None
        self._runner: Optional[web.AppRunner] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def local_address(self) -> str:
        return self.base_url

    async def open(self) -> None:
        self._queue = asyncio.Queue()
        app = web.Application()
        app.router.add_post(MESSAGE_PATH, self._message_handler)
        self._runner = web.AppRunner(app)
        try:
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()
        except OSError as e:
            await self.close()
            raise TransportFailure(f"Could not listen on {self.host}:{self.port}: {e}") from e
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        logger.debug(f"HTTP transport listening on {self.base_url}, {len(self.peers)} peers")

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def _message_handler(self, request):
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"status": "bad_request", "reason": "invalid json"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"status": "bad_request", "reason": "expected object"}, status=400)

        reply_to = body.get("reply_to")
        if not isinstance(reply_to, str) or not reply_to:
            return web.json_response({"status": "bad_request", "reason": "reply_to missing"}, status=400)
        try:
            message = ClockSyncMessage.from_dict(body.get("message"))
        except MessageDecodeError as e:
            return web.json_response({"status": "bad_request", "reason": str(e)}, status=400)

        if self._queue is not None:
            self._queue.put_nowait((message, reply_to.rstrip("/")))
        return web.json_response({"status": "ok"})

    async def send(self, message: ClockSyncMessage, address: Address) -> None:
        if self._session is None:
            raise TransportFailure("HTTP transport is not open")
        payload = {"message": message.to_dict(), "reply_to": self.base_url}
        try:
            async with self._session.post(f"{address}{MESSAGE_PATH}", json=payload) as resp:
                if resp.status != 200:
                    raise TransportFailure(f"{address} rejected {message.type.value}: HTTP {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"Failed to send {message.type.value} to {address}: {e}") from e

    async def broadcast(self, message: ClockSyncMessage) -> None:
        if not self.peers:
            return
        results = await asyncio.gather(
            *(self.send(message, peer) for peer in self.peers), return_exceptions=True
        )
        failed = [f"{peer} ({result})" for peer, result in zip(self.peers, results)
                  if isinstance(result, Exception)]
        if failed:
            raise TransportFailure(
                f"Broadcast of {message.type.value} failed for {len(failed)}/{len(self.peers)} peers: "
                + ", ".join(failed)
            )

    async def receive(self) -> Tuple[ClockSyncMessage, str]:
        if self._queue is None:
            raise TransportFailure("HTTP transport is not open")
        return await self._queue.get()


# ---------------------------
# In-process loopback
# ---------------------------
class LoopbackNetwork:
    """In-memory group shared by LoopbackTransports of one process"""

    def __init__(self):
        self._mailboxes: Dict[Address, asyncio.Queue] = {}

    @property
    def addresses(self) -> List[Address]:
        return list(self._mailboxes)

    def attach(self, address: Address) -> asyncio.Queue:
        if address in self._mailboxes:
            raise TransportFailure(f"Address {address!r} already in use")
        queue: asyncio.Queue = asyncio.Queue()
        self._mailboxes[address] = queue
        return queue

    def detach(self, address: Address) -> None:
        self._mailboxes.pop(address, None)

    def deliver(self, payload: bytes, source: Address, target: Address) -> None:
        queue = self._mailboxes.get(target)
        if queue is None:
            raise TransportFailure(f"No node listening on {target!r}")
        queue.put_nowait((payload, source))

    def deliver_all(self, payload: bytes, source: Address) -> None:
        for queue in list(self._mailboxes.values()):
            queue.put_nowait((payload, source))


class LoopbackTransport(Transport):
    """Transport over a LoopbackNetwork. Broadcasts reach the sender too, as multicast does."""

    def __init__(self, network: LoopbackNetwork, address: Address):
        self.network = network
        self.address = address
        self._queue: Optional[asyncio.Queue] = None

    @property
    def local_address(self) -> Address:
        return self.address

    async def open(self) -> None:
        self._queue = self.network.attach(self.address)

    async def close(self) -> None:
        if self._queue is not None:
            self.network.detach(self.address)
            self._queue = None

    def _require_open(self) -> None:
        if self._queue is None:
            raise TransportFailure(f"Loopback transport {self.address!r} is not open")

    async def send(self, message: ClockSyncMessage, address: Address) -> None:
        self._require_open()
        self.network.deliver(encode_message(message), self.address, address)

    async def broadcast(self, message: ClockSyncMessage) -> None:
        self._require_open()
        self.network.deliver_all(encode_message(message), self.address)

    async def receive(self) -> Tuple[ClockSyncMessage, Address]:
        self._require_open()
        queue = self._queue
        while True:
            payload, source = await queue.get()
            try:
                return decode_message(payload), source
            except MessageDecodeError as e:
                logger.warning(f"Dropping payload from {source!r}: {e}")


__all__ = [
    'Address',
    'Endpoint',
    'MESSAGE_PATH',
    'Transport',
    'MulticastTransport',
    'HttpTransport',
    'LoopbackNetwork',
    'LoopbackTransport',
]
