from .clock import ClockSnapshot, ClockState
from .identity import NodeIdentity, PeerEntry, Role

__all__ = [
    'ClockSnapshot',
    'ClockState',
    'NodeIdentity',
    'PeerEntry',
    'Role',
]
