import logging
import threading
from typing import Dict, List, Optional

from clocksync.algorithms.base import AlgorithmStrategy, Reference, SyncResult
from clocksync.algorithms.berkeley import CoordinatorAverageStrategy
from clocksync.algorithms.cristian import MasterSlaveStrategy
from clocksync.errors import ConfigurationError

logger = logging.getLogger(__name__)


class AlgorithmRegistry:
    """
    Named synchronization strategies plus the currently active one.

    Created once and handed to whatever needs to resolve the active algorithm.
    Lookups are case-insensitive.
    """

    def __init__(self):
        self._strategies: Dict[str, AlgorithmStrategy] = {}
        self._active: Optional[AlgorithmStrategy] = None
        self._lock = threading.Lock()

    def register(self, strategy: AlgorithmStrategy) -> None:
        """Add a strategy; the first one registered becomes active."""
        key = strategy.name.lower()
        with self._lock:
            self._strategies[key] = strategy
            if self._active is None:
                self._active = strategy
        logger.debug(f"Registered synchronization algorithm {strategy.name}")

    def get(self, name: str) -> Optional[AlgorithmStrategy]:
        with self._lock:
            return self._strategies.get(name.strip().lower())

    def get_active(self) -> Optional[AlgorithmStrategy]:
        with self._lock:
            return self._active

    def set_active(self, name: str) -> bool:
        """Switch the active strategy. Unknown names return False and change nothing."""
        with self._lock:
            strategy = self._strategies.get(name.strip().lower())
            if strategy is None:
                return False
            previous, self._active = self._active, strategy

        if previous is not strategy:
            logger.info(f"Active algorithm changed: {previous.name if previous else None} -> {strategy.name}")
        return True

    def names(self) -> List[str]:
        with self._lock:
            return [s.name for s in self._strategies.values()]

    def describe(self) -> List[Dict]:
        with self._lock:
            active = self._active
            strategies = list(self._strategies.values())
        return [
            {
                "name": s.name,
                "description": s.description,
                "reference": s.reference_kind.__name__,
                "active": s is active,
            }
            for s in strategies
        ]

    async def synchronize(self, node, reference: Reference) -> SyncResult:
        """Run the active strategy, resolved once before the call starts."""
        strategy = self.get_active()
        if strategy is None:
            raise ConfigurationError("No synchronization algorithm registered")
        return await strategy.synchronize(node, reference)

    def __len__(self) -> int:
        with self._lock:
            return len(self._strategies)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


def default_registry(**strategy_options) -> AlgorithmRegistry:
    """Registry with Cristian (active) and Berkeley."""
    registry = AlgorithmRegistry()
    registry.register(MasterSlaveStrategy(**strategy_options))
    registry.register(CoordinatorAverageStrategy(**strategy_options))
    return registry
