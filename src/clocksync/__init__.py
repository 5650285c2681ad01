"""
Simulated clock synchronization for a small cluster: drifting node clocks,
a master/regular message protocol and pluggable correction algorithms.
"""

from clocksync.errors import (
    ClockSyncError,
    ConfigurationError,
    InvalidReferenceError,
    MessageDecodeError,
    TransportFailure,
)
from clocksync.config import NodeConfig
# algorithms before core.node, which depends on the node handles
from clocksync.algorithms import (
    AlgorithmRegistry,
    CoordinatorAverageStrategy,
    MasterSlaveStrategy,
    NodeSet,
    SingleReference,
    SyncResult,
    default_registry,
)
from clocksync.core.clock import ClockSnapshot, ClockState
from clocksync.core.identity import NodeIdentity, PeerEntry, Role
from clocksync.core.node import NodeAgent
from clocksync.core.cluster import LocalCluster, create_demo_cluster

__version__ = "0.1.0"

__all__ = [
    'ClockSyncError',
    'ConfigurationError',
    'InvalidReferenceError',
    'MessageDecodeError',
    'TransportFailure',
    'NodeConfig',
    'AlgorithmRegistry',
    'CoordinatorAverageStrategy',
    'MasterSlaveStrategy',
    'NodeSet',
    'SingleReference',
    'SyncResult',
    'default_registry',
    'ClockSnapshot',
    'ClockState',
    'NodeIdentity',
    'PeerEntry',
    'Role',
    'NodeAgent',
    'LocalCluster',
    'create_demo_cluster',
]
