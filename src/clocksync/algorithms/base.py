import time
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, Optional, Tuple, Union

from clocksync.config import QUERY_TIMEOUT
from clocksync.core.clock import ClockSnapshot
from clocksync.core.identity import Role
from clocksync.errors import InvalidReferenceError

if TYPE_CHECKING:
    from clocksync.core.node import NodeAgent

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    """Local wall-clock timestamp used to measure round trips"""
    return int(time.time() * 1000)


def truncate_div(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero (Python's // floors)."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a single algorithm invocation"""
    success: bool
    adjustment_ms: int = 0
    round_trip_time_ms: int = 0
    estimated_error_ms: float = 0.0
    before_sync: Optional[ClockSnapshot] = None
    after_sync: Optional[ClockSnapshot] = None
    details: str = ""
    algorithm: str = ""

    @classmethod
    def failed(cls, details: str, *, before_sync: Optional[ClockSnapshot] = None,
               algorithm: str = "", round_trip_time_ms: int = 0) -> "SyncResult":
        return cls(
            success=False,
            before_sync=before_sync,
            round_trip_time_ms=round_trip_time_ms,
            details=details,
            algorithm=algorithm,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "algorithm": self.algorithm,
            "adjustment_ms": self.adjustment_ms,
            "round_trip_time_ms": self.round_trip_time_ms,
            "estimated_error_ms": self.estimated_error_ms,
            "before_sync": self.before_sync.to_dict() if self.before_sync else None,
            "after_sync": self.after_sync.to_dict() if self.after_sync else None,
            "details": self.details,
        }


class NodeHandle(ABC):
    """Something an algorithm can ask for its identity and current time"""

    @property
    @abstractmethod
    def node_id(self) -> str:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def role(self) -> Role:
        ...

    @abstractmethod
    async def fetch_time(self) -> int:
        """Current clock of the referenced node in milliseconds"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name}, {self.node_id})"


@dataclass(frozen=True)
class SingleReference:
    """One master node, used by master-slave algorithms"""
    node: NodeHandle


@dataclass(frozen=True)
class NodeSet:
    """Non-empty ordered set of nodes, used by averaging algorithms"""
    nodes: Tuple[NodeHandle, ...]

    def __init__(self, nodes: Iterable[NodeHandle]):
        nodes = tuple(nodes)
        if not nodes:
            raise InvalidReferenceError("Node set cannot be empty")
        object.__setattr__(self, "nodes", nodes)

    def __iter__(self) -> Iterator[NodeHandle]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)


Reference = Union[SingleReference, NodeSet]


class AlgorithmStrategy(ABC):
    """
    A clock synchronization algorithm.

    synchronize() corrects the clock of the invoking node against a reference.
    Precondition violations (wrong reference shape) raise InvalidReferenceError;
    anything going wrong during measurement is reported as a failed SyncResult.
    """

    # Reference shape this strategy accepts
    reference_kind: type = SingleReference

    def __init__(self, *, timer: Callable[[], int] = wall_clock_ms,
                 query_timeout: Optional[float] = QUERY_TIMEOUT):
        self._timer = timer
        self.query_timeout = query_timeout

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @abstractmethod
    async def synchronize(self, node: "NodeAgent", reference: Reference) -> SyncResult:
        ...

    async def measure(self, handle: NodeHandle) -> Tuple[int, int]:
        """
        Query a node's time bracketed by two local timestamps.
        Returns (reported_time_ms, round_trip_time_ms).
        """
        t1 = self._timer()
        if self.query_timeout is None:
            reported = await handle.fetch_time()
        else:
            reported = await asyncio.wait_for(handle.fetch_time(), self.query_timeout)
        t2 = self._timer()
        return int(reported), t2 - t1

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
