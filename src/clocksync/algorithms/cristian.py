import logging

from clocksync.algorithms.base import (
    AlgorithmStrategy,
    Reference,
    SingleReference,
    SyncResult,
    truncate_div,
)
from clocksync.core.identity import Role
from clocksync.errors import InvalidReferenceError

logger = logging.getLogger(__name__)


class MasterSlaveStrategy(AlgorithmStrategy):
    """
    Cristian's algorithm.

    The client asks the master for its time, measures the round trip and
    assumes the answer spent half of it in flight:

        new_time = master_time + rtt / 2,   error <= rtt / 2
    """

    reference_kind = SingleReference

    @property
    def name(self) -> str:
        return "Cristian"

    @property
    def description(self) -> str:
        return ("A simple master-slave synchronization algorithm where clients synchronize "
                "with a time server by requesting the server's time and adjusting for "
                "network latency (RTT/2). Provides good accuracy with minimal overhead.")

    async def synchronize(self, node, reference: Reference) -> SyncResult:
        if not isinstance(reference, SingleReference):
            raise InvalidReferenceError(f"{self.name} requires a single master node reference")
        master = reference.node
        if master.role is not Role.MASTER:
            raise InvalidReferenceError(f"Reference node {master.name} is not a master")

        clock = node.clock
        before = clock.snapshot()
        try:
            master_time, round_trip = await self.measure(master)
        except Exception as e:
            logger.warning(f"{self.name}: could not query master {master.name}: {e!r}")
            return SyncResult.failed(f"Error: {e!r}", before_sync=before, algorithm=self.name)

        one_way_delay = truncate_div(round_trip, 2)
        candidate = master_time + one_way_delay
        applied = clock.synchronize(candidate)
        after = clock.snapshot()
        estimated_error = round_trip / 2.0

        details = (f"Master time: {master_time} ms, RTT: {round_trip} ms, "
                   f"Adjustment: {applied} ms, Est. error: {estimated_error:.2f} ms")
        logger.info(f"{node.name} synchronized with master {master.name}: {details}")

        return SyncResult(
            success=True,
            adjustment_ms=applied,
            round_trip_time_ms=round_trip,
            estimated_error_ms=estimated_error,
            before_sync=before,
            after_sync=after,
            details=details,
            algorithm=self.name,
        )
