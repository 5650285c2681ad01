from dataclasses import dataclass
from enum import Enum
from typing import Hashable


class Role(Enum):
    MASTER = "master"  # authoritative time source
    REGULAR = "regular"  # requests and applies corrections

    @classmethod
    def parse(cls, value) -> "Role":
        """Accept a Role, its value or its name in any case ('Master', 'regular', ...)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"Unknown role {value!r}, expected one of {[r.value for r in cls]}")


@dataclass(frozen=True)
class NodeIdentity:
    """Snapshot of who a node is; role reflects the moment it was taken"""
    node_id: str
    name: str
    role: Role

    @property
    def is_master(self) -> bool:
        return self.role is Role.MASTER


@dataclass(frozen=True)
class PeerEntry:
    """Last known transport address of a peer, replaced on every message from it"""
    peer_id: str
    address: Hashable
    last_seen: float
