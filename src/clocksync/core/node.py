import time
import uuid
import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, Hashable, List, Optional

from clocksync.algorithms.handles import LocalNodeHandle
from clocksync.config import NodeConfig, random_drift_rate
from clocksync.core.clock import ClockState
from clocksync.core.identity import NodeIdentity, PeerEntry, Role
from clocksync.errors import TransportFailure
from clocksync.protocol.message import ClockSyncMessage, MessageType
from clocksync.protocol.transport import Endpoint, MulticastTransport, Transport

logger = logging.getLogger(__name__)


class NodeAgent:
    """
    A node of the simulated cluster: one drifting clock, an identity with a
    mutable role, a peer table and the message state machine.

    Masters answer SYNC_REQUEST with their time and periodically announce it;
    regular nodes correct their clock from SYNC_RESPONSE and MASTER_ANNOUNCE.
    Every node periodically broadcasts a discovery request.
    """

    def __init__(self, name: str, listen_endpoint: Endpoint, group_endpoint: Optional[Endpoint] = None,
                 role: Role = Role.REGULAR, *, transport: Optional[Transport] = None,
                 config: Optional[NodeConfig] = None, drift_rate: Optional[float] = None,
                 initial_time_ms: Optional[int] = None, node_id: Optional[str] = None,
                 monotonic: Callable[[], float] = time.monotonic):
        self.config = (config or NodeConfig()).validate()
        self.node_id = node_id or str(uuid.uuid4())
        self.name = name
        self.listen_endpoint = listen_endpoint
        self.group_endpoint = group_endpoint

        self.clock = ClockState(
            initial_time_ms,
            random_drift_rate() if drift_rate is None else drift_rate,
            tick_ms=self.config.tick_ms,
            monotonic=monotonic,
        )

        if transport is None:
            if group_endpoint is None:
                transport = MulticastTransport(listen_endpoint)
            else:
                transport = MulticastTransport(listen_endpoint, group_endpoint)
        self.transport = transport

        self._role = Role.parse(role)
        self._state_lock = threading.Lock()  # guards role and peer table
        self._peers: Dict[str, PeerEntry] = {}
        self._tasks: List[asyncio.Task] = []
        self._running = False

        # Statistics
        self.stats = {
            "messages_received": 0,
            "self_messages_dropped": 0,
            "sync_adjustments": 0,
            "responses_sent": 0,
            "send_failures": 0,
        }

        logger.info(f"Node {name} (ID: {self.node_id}) created as {self._role.value} "
                    f"with clock drift rate {self.clock.drift_rate:.4f}")

    # --- Identity and role ---
    @property
    def role(self) -> Role:
        with self._state_lock:
            return self._role

    def set_role(self, role) -> None:
        role = Role.parse(role)
        with self._state_lock:
            previous, self._role = self._role, role
        if previous is not role:
            logger.info(f"Node {self.name} role changed: {previous.value} -> {role.value}")

    @property
    def is_master(self) -> bool:
        return self.role is Role.MASTER

    @property
    def identity(self) -> NodeIdentity:
        return NodeIdentity(self.node_id, self.name, self.role)

    @property
    def running(self) -> bool:
        return self._running

    def current_time(self) -> int:
        return self.clock.current_time()

    def handle(self) -> LocalNodeHandle:
        return LocalNodeHandle(self)

    # --- Peer table ---
    def peers(self) -> Dict[str, PeerEntry]:
        with self._state_lock:
            return dict(self._peers)

    def _record_peer(self, peer_id: str, address: Hashable) -> None:
        entry = PeerEntry(peer_id, address, time.time())
        with self._state_lock:
            is_new = peer_id not in self._peers
            self._peers[peer_id] = entry
        if is_new:
            logger.debug(f"Node {self.name} discovered peer {peer_id} at {address}")

    # --- Lifecycle ---
    async def start(self) -> None:
        if self._running:
            logger.warning(f"Node {self.name} is already running")
            return
        self._running = True
        try:
            await self.transport.open()
        except Exception:
            await self.stop()
            raise

        cfg = self.config
        self._tasks = [
            asyncio.create_task(self._receive_loop()),
            asyncio.create_task(self._periodic("announce", cfg.announce_delay, cfg.announce_interval,
                                               self.announce_master_time)),
            asyncio.create_task(self._periodic("request", cfg.request_delay, cfg.request_interval,
                                               self.request_time_sync)),
            asyncio.create_task(self._periodic("discovery", cfg.discovery_delay, cfg.discovery_interval,
                                               self.perform_discovery)),
        ]
        logger.info(f"Node {self.name} started on {self.transport.local_address}")

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.config.shutdown_grace)
            if pending:
                logger.warning(f"Node {self.name}: {len(pending)} tasks did not stop within "
                               f"{self.config.shutdown_grace}s")
        try:
            await self.transport.close()
        except (OSError, TransportFailure) as e:
            logger.error(f"Error closing transport of node {self.name}: {e}")
        was_running, self._running = self._running, False
        if was_running:
            logger.info(f"Node {self.name} stopped")

    # --- Background tasks ---
    async def _receive_loop(self) -> None:
        while True:
            try:
                message, address = await self.transport.receive()
            except TransportFailure as e:
                logger.error(f"Node {self.name}: error receiving message: {e}")
                await asyncio.sleep(self.config.receive_backoff)
                continue
            try:
                await self.handle_message(message, address)
            except Exception as e:
                logger.error(f"Node {self.name}: failed to handle {message}: {e!r}")

    async def _periodic(self, label: str, delay: float, interval: float,
                        action: Callable[[], Awaitable[object]]) -> None:
        await asyncio.sleep(delay)
        while True:
            try:
                await action()
            except Exception as e:
                logger.error(f"Node {self.name}: {label} task error: {e!r}")
            await asyncio.sleep(interval)

    # --- Message state machine ---
    async def handle_message(self, message: ClockSyncMessage, address: Hashable) -> None:
        if message.sender_id == self.node_id:
            self.stats["self_messages_dropped"] += 1
            return

        self._record_peer(message.sender_id, address)
        self.stats["messages_received"] += 1
        role = self.role

        if message.type is MessageType.SYNC_REQUEST:
            if role is Role.MASTER:
                await self.send_sync_response(address)

        elif message.type is MessageType.SYNC_RESPONSE:
            if role is Role.REGULAR:
                adjustment = self._apply(message.sender_time)
                logger.info(f"Node {self.name} synchronized clock with node {message.sender_id}, "
                            f"adjustment: {adjustment} ms")

        elif message.type is MessageType.MASTER_ANNOUNCE:
            if role is Role.REGULAR:
                adjustment = self._apply(message.sender_time)
                logger.info(f"Node {self.name} received master time announcement from "
                            f"{message.sender_id}, adjustment: {adjustment} ms")

    def _apply(self, observed_time_ms: int) -> int:
        adjustment = self.clock.synchronize(observed_time_ms)
        if adjustment != 0:
            self.stats["sync_adjustments"] += 1
        return adjustment

    def _message(self, msg_type: MessageType) -> ClockSyncMessage:
        return ClockSyncMessage(self.node_id, self.current_time(), msg_type)

    async def send_sync_response(self, address: Hashable) -> bool:
        sent = await self.send_direct(self._message(MessageType.SYNC_RESPONSE), address)
        if sent:
            self.stats["responses_sent"] += 1
        return sent

    async def announce_master_time(self) -> bool:
        if not self.is_master:
            return False
        message = self._message(MessageType.MASTER_ANNOUNCE)
        sent = await self.broadcast(message)
        logger.debug(f"Node {self.name} announced master time: {message.sender_time}")
        return sent

    async def request_time_sync(self) -> bool:
        if self.is_master:
            return False
        sent = await self.broadcast(self._message(MessageType.SYNC_REQUEST))
        logger.debug(f"Node {self.name} sent time synchronization request")
        return sent

    async def perform_discovery(self) -> bool:
        # discovery reuses the request shape and runs regardless of role
        sent = await self.broadcast(self._message(MessageType.SYNC_REQUEST))
        logger.debug(f"Node {self.name} performed discovery, known nodes: {len(self.peers())}")
        return sent

    # --- Transport wrappers ---
    async def send_direct(self, message: ClockSyncMessage, address: Hashable) -> bool:
        try:
            await self.transport.send(message, address)
            return True
        except TransportFailure as e:
            self.stats["send_failures"] += 1
            logger.error(f"Node {self.name}: failed to send {message.type.value} to {address}: {e}")
            return False

    async def broadcast(self, message: ClockSyncMessage) -> bool:
        try:
            await self.transport.broadcast(message)
            return True
        except TransportFailure as e:
            self.stats["send_failures"] += 1
            logger.error(f"Node {self.name}: failed to broadcast {message.type.value}: {e}")
            return False

    # --- Monitoring ---
    def get_status(self) -> Dict:
        identity = self.identity
        return {
            "node_id": identity.node_id,
            "name": identity.name,
            "role": identity.role.value,
            "running": self._running,
            "address": str(self.transport.local_address),
            "clock": self.clock.get_status(),
            "peer_count": len(self.peers()),
            "stats": dict(self.stats),
        }

    def __repr__(self) -> str:
        return f"NodeAgent(name={self.name!r}, role={self.role.value}, id={self.node_id})"

