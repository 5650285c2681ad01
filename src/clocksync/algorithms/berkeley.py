import logging
from typing import Dict, List

from clocksync.algorithms.base import (
    AlgorithmStrategy,
    NodeSet,
    Reference,
    SyncResult,
    truncate_div,
)
from clocksync.errors import InvalidReferenceError

logger = logging.getLogger(__name__)


class CoordinatorAverageStrategy(AlgorithmStrategy):
    """
    Berkeley algorithm.

    A coordinator polls every member, compensates each reading by half its
    round trip and averages them. Only the invoking node applies the average;
    no adjustments are pushed to the other members.
    """

    reference_kind = NodeSet

    @property
    def name(self) -> str:
        return "Berkeley"

    @property
    def description(self) -> str:
        return ("A fault-tolerant clock synchronization algorithm where a coordinator "
                "collects time samples from all nodes, calculates their average, and "
                "adjusts towards it. Ideal for systems without access to an external "
                "time reference.")

    async def synchronize(self, node, reference: Reference) -> SyncResult:
        if not isinstance(reference, NodeSet):
            raise InvalidReferenceError(f"{self.name} requires a node set reference")
        members = list(reference.nodes)
        if not members:
            raise InvalidReferenceError("Node set cannot be empty")

        coordinator = next((m for m in members if m.node_id == node.node_id), members[0])

        clock = node.clock
        before = clock.snapshot()

        # Step 1: poll every member
        adjusted_times: List[int] = []
        round_trips: Dict[str, int] = {}
        for member in members:
            try:
                reported, round_trip = await self.measure(member)
            except Exception as e:
                logger.warning(f"{self.name}: member {member.name} unreachable: {e!r}")
                return SyncResult.failed(
                    f"Error: could not poll {member.name}: {e!r}",
                    before_sync=before,
                    algorithm=self.name,
                )
            round_trips[member.node_id] = round_trip
            # Step 2: compensate for network delay
            adjusted_times.append(reported + truncate_div(round_trip, 2))

        # Step 3: average
        average = truncate_div(sum(adjusted_times), len(adjusted_times))

        # Step 4: only the invoking node moves
        applied = clock.synchronize(average)
        after = clock.snapshot()

        own_round_trip = round_trips.get(node.node_id, 0)
        details = (f"Average time: {average} ms, Adjustment: {applied} ms, "
                   f"Nodes: {len(members)}, Coordinator: {coordinator.name}")
        logger.info(f"{node.name} averaged with {len(members)} nodes: {details}")

        return SyncResult(
            success=True,
            adjustment_ms=applied,
            round_trip_time_ms=own_round_trip,
            estimated_error_ms=own_round_trip / 2.0,
            before_sync=before,
            after_sync=after,
            details=details,
            algorithm=self.name,
        )
