from .base import (
    AlgorithmStrategy,
    NodeHandle,
    NodeSet,
    Reference,
    SingleReference,
    SyncResult,
    truncate_div,
    wall_clock_ms,
)
from .cristian import MasterSlaveStrategy
from .berkeley import CoordinatorAverageStrategy
from .handles import LocalNodeHandle, RemoteNodeHandle
from .registry import AlgorithmRegistry, default_registry

__all__ = [
    # Results and references
    'SyncResult',
    'SingleReference',
    'NodeSet',
    'Reference',
    'NodeHandle',
    'LocalNodeHandle',
    'RemoteNodeHandle',

    # Strategies
    'AlgorithmStrategy',
    'MasterSlaveStrategy',
    'CoordinatorAverageStrategy',

    # Registry
    'AlgorithmRegistry',
    'default_registry',

    # Helpers
    'truncate_div',
    'wall_clock_ms',
]
