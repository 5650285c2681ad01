"""
In-process cluster of NodeAgents.

Runs several nodes in one event loop, lets an operator synchronize any of
them with the active algorithm and reports how far the clocks have drifted.
"""

import time
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from clocksync.algorithms.base import NodeSet, Reference, SingleReference, SyncResult
from clocksync.algorithms.registry import AlgorithmRegistry, default_registry
from clocksync.config import DEFAULT_MULTICAST_GROUP, DEFAULT_MULTICAST_PORT, DEFAULT_NODE_PORT, NodeConfig
from clocksync.core.identity import Role
from clocksync.core.node import NodeAgent
from clocksync.errors import ConfigurationError, InvalidReferenceError
from clocksync.protocol.transport import Endpoint, LoopbackNetwork, LoopbackTransport, Transport

logger = logging.getLogger(__name__)

# Offsets from the reference clock worth flagging (ms)
NOTICEABLE_DRIFT_MS = 100
SIGNIFICANT_DRIFT_MS = 500

# Drift rates outside this band are reported as fast / slow
FAST_DRIFT_RATE = 1.01
SLOW_DRIFT_RATE = 0.99

MAX_MONITOR_SECONDS = 300

# Nodes created by create_demo_cluster(): (name, role, drift rate)
DEMO_NODES = [
    ("MasterNode", Role.MASTER, None),
    ("Node1-Fast", Role.REGULAR, 1.02),
    ("Node2-Normal", Role.REGULAR, 1.0),
    ("Node3-Slow", Role.REGULAR, 0.98),
]


def drift_status(drift_rate: float) -> str:
    if drift_rate > FAST_DRIFT_RATE:
        return "fast"
    if drift_rate < SLOW_DRIFT_RATE:
        return "slow"
    return "normal"


def offset_status(offset_ms: int) -> str:
    if abs(offset_ms) > SIGNIFICANT_DRIFT_MS:
        return "significant"
    if abs(offset_ms) > NOTICEABLE_DRIFT_MS:
        return "noticeable"
    return "ok"


class LocalCluster:
    """
    Nodes sharing one transport group inside the current process.

    By default the nodes talk over a LoopbackNetwork; pass transport_factory to
    put them on real sockets instead.
    """

    def __init__(self, registry: Optional[AlgorithmRegistry] = None, *,
                 config: Optional[NodeConfig] = None,
                 network: Optional[LoopbackNetwork] = None,
                 transport_factory: Optional[Callable[[Endpoint], Transport]] = None,
                 host: str = "127.0.0.1", base_port: int = DEFAULT_NODE_PORT,
                 group_endpoint: Endpoint = (DEFAULT_MULTICAST_GROUP, DEFAULT_MULTICAST_PORT)):
        self.registry = registry or default_registry()
        self.config = config or NodeConfig()
        self.network = network or LoopbackNetwork()
        self.host = host
        self.base_port = base_port
        self.group_endpoint = group_endpoint
        self._transport_factory = transport_factory or self._loopback_transport
        self._nodes: List[NodeAgent] = []

    def _loopback_transport(self, endpoint: Endpoint) -> Transport:
        return LoopbackTransport(self.network, endpoint)

    async def __aenter__(self) -> "LocalCluster":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # --- Membership ---
    @property
    def nodes(self) -> List[NodeAgent]:
        return list(self._nodes)

    def find(self, name: str) -> Optional[NodeAgent]:
        return next((n for n in self._nodes if n.name == name), None)

    def master(self) -> Optional[NodeAgent]:
        return next((n for n in self._nodes if n.is_master), None)

    async def add_node(self, name: str, role: Role = Role.REGULAR, drift_rate: Optional[float] = None, *,
                       initial_time_ms: Optional[int] = None,
                       monotonic: Callable[[], float] = time.monotonic,
                       start: bool = True) -> NodeAgent:
        if self.find(name) is not None:
            raise ConfigurationError(f"A node named {name!r} already exists")

        endpoint = (self.host, self.base_port + len(self._nodes))
        node = NodeAgent(
            name,
            endpoint,
            self.group_endpoint,
            role,
            transport=self._transport_factory(endpoint),
            config=self.config,
            drift_rate=drift_rate,
            initial_time_ms=initial_time_ms,
            monotonic=monotonic,
        )
        if start:
            await node.start()
        self._nodes.append(node)
        logger.info(f"Added node {name} ({node.role.value}) on {endpoint}, drift rate {node.clock.drift_rate:.4f}")
        return node

    async def stop(self) -> None:
        if self._nodes:
            await asyncio.gather(*(node.stop() for node in self._nodes))

    # --- Synchronization ---
    def reference_for(self, node: NodeAgent, reference_kind: type) -> Reference:
        """Build the reference an algorithm of reference_kind needs to sync node."""
        if node.is_master:
            raise InvalidReferenceError("The master node does not need to be synchronized")
        master = self.master()
        if master is None:
            raise InvalidReferenceError("No master node found for synchronization")

        if reference_kind is NodeSet:
            return NodeSet(n.handle() for n in self._nodes)
        if reference_kind is SingleReference:
            return SingleReference(master.handle())
        raise InvalidReferenceError(f"Unsupported reference kind {reference_kind!r}")

    async def sync_node(self, node: NodeAgent) -> SyncResult:
        """Synchronize node with whichever algorithm is active right now."""
        strategy = self.registry.get_active()
        if strategy is None:
            raise ConfigurationError("No synchronization algorithm registered")
        reference = self.reference_for(node, strategy.reference_kind)
        logger.info(f"Synchronizing {node.name} using {strategy.name}")
        return await strategy.synchronize(node, reference)

    # --- Reporting ---
    def _reference_node(self) -> Optional[NodeAgent]:
        return self.master() or (self._nodes[0] if self._nodes else None)

    def clock_table(self) -> List[Dict]:
        """Time of every node and its offset from the master (or first) node."""
        reference = self._reference_node()
        if reference is None:
            return []
        reference_time = reference.current_time()
        rows = []
        for node in self._nodes:
            snapshot = node.clock.snapshot()
            offset = snapshot.time_ms - reference_time
            rows.append({
                "name": node.name,
                "node_id": node.node_id,
                "role": node.role.value,
                "time_ms": snapshot.time_ms,
                "iso_time": snapshot.as_datetime().isoformat(),
                "offset_ms": offset,
                "offset_status": offset_status(offset),
                "drift_rate": snapshot.drift_rate,
            })
        return rows

    def drift_report(self) -> List[Dict]:
        return [
            {
                "name": node.name,
                "role": node.role.value,
                "drift_rate": node.clock.drift_rate,
                "status": drift_status(node.clock.drift_rate),
            }
            for node in self._nodes
        ]

    async def monitor(self, seconds: int, interval: float = 1.0) -> List[Dict[str, int]]:
        """Sample every node's offset from the reference node once per interval."""
        if not 0 < seconds <= MAX_MONITOR_SECONDS:
            raise ConfigurationError(f"Monitoring period must be between 1 and {MAX_MONITOR_SECONDS} seconds")
        if interval <= 0:
            raise ConfigurationError("Monitoring interval must be positive")
        reference = self._reference_node()
        if reference is None:
            return []

        samples = []
        steps = int(seconds / interval)
        for i in range(steps + 1):
            reference_time = reference.current_time()
            sample = {"reference_time_ms": reference_time}
            for node in self._nodes:
                sample[node.name] = node.current_time() - reference_time
            samples.append(sample)
            if i < steps:
                await asyncio.sleep(interval)
        return samples


async def create_demo_cluster(registry: Optional[AlgorithmRegistry] = None, **cluster_options) -> LocalCluster:
    """A started cluster with one master and a fast, a normal and a slow node."""
    cluster = LocalCluster(registry, **cluster_options)
    for name, role, drift_rate in DEMO_NODES:
        await cluster.add_node(name, role, drift_rate)
    return cluster
