import asyncio

import pytest  # type: ignore

from clocksync.algorithms import (
    CoordinatorAverageStrategy,
    MasterSlaveStrategy,
    NodeHandle,
    NodeSet,
    SingleReference,
    truncate_div,
)
from clocksync.core.clock import ClockState
from clocksync.core.identity import Role
from clocksync.errors import InvalidReferenceError, TransportFailure


class _FakeNode:
    """Just enough of a NodeAgent for the strategies: identity and a frozen clock."""

    def __init__(self, node_id: str, time_ms: int, drift: float = 1.0):
        self.node_id = node_id
        self.name = f"node-{node_id}"
        self.clock = ClockState(time_ms, drift, monotonic=lambda: 0.0)


class _FakeHandle(NodeHandle):
    def __init__(self, node_id: str, time_ms: int = 0, role: Role = Role.REGULAR,
                 error: Exception = None, delay: float = 0.0):
        self._node_id = node_id
        self._time_ms = time_ms
        self._role = role
        self._error = error
        self._delay = delay
        self.calls = 0

    @property
    def node_id(self) -> str:
        return self._node_id

    @property
    def name(self) -> str:
        return f"handle-{self._node_id}"

    @property
    def role(self) -> Role:
        return self._role

    async def fetch_time(self) -> int:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._time_ms


def _timer(*readings):
    return iter(readings).__next__


@pytest.mark.parametrize(
    "a,b,expected",
    [(3, 2, 1), (-3, 2, -1), (-4, 2, -2), (41, 2, 20), (-41, 2, -20), (0, 5, 0), (7, -2, -3)],
)
def test_truncate_div_rounds_toward_zero(a: int, b: int, expected: int) -> None:
    assert truncate_div(a, b) == expected


def test_master_slave_applies_bounded_correction() -> None:
    node = _FakeNode("n1", 4000)
    master = _FakeHandle("m", 5000, Role.MASTER)
    strategy = MasterSlaveStrategy(timer=_timer(0, 40))

    result = asyncio.run(strategy.synchronize(node, SingleReference(master)))

    assert result.success
    assert result.algorithm == "Cristian"
    assert result.round_trip_time_ms == 40
    assert result.adjustment_ms == 1000
    assert result.estimated_error_ms == 20.0
    assert result.before_sync.time_ms == 4000
    assert result.after_sync.time_ms == 5000
    assert node.clock.current_time() == 5000


def test_master_slave_compensates_half_round_trip() -> None:
    node = _FakeNode("n1", 4990)
    master = _FakeHandle("m", 5000, Role.MASTER)
    strategy = MasterSlaveStrategy(timer=_timer(100, 141))

    result = asyncio.run(strategy.synchronize(node, SingleReference(master)))

    # 5000 + 41 // 2 - 4990
    assert result.adjustment_ms == 30
    assert result.estimated_error_ms == 20.5
    assert "RTT: 41 ms" in result.details


def test_master_slave_rejects_non_master_reference() -> None:
    node = _FakeNode("n1", 4000)
    regular = _FakeHandle("r", 5000, Role.REGULAR)
    strategy = MasterSlaveStrategy()

    with pytest.raises(InvalidReferenceError):
        asyncio.run(strategy.synchronize(node, SingleReference(regular)))
    assert regular.calls == 0
    assert node.clock.current_time() == 4000


def test_master_slave_rejects_node_set() -> None:
    node = _FakeNode("n1", 4000)
    strategy = MasterSlaveStrategy()
    reference = NodeSet([_FakeHandle("m", 5000, Role.MASTER)])

    with pytest.raises(InvalidReferenceError):
        asyncio.run(strategy.synchronize(node, reference))


def test_unreachable_master_gives_failed_result() -> None:
    node = _FakeNode("n1", 4000)
    master = _FakeHandle("m", role=Role.MASTER, error=TransportFailure("connection refused"))
    strategy = MasterSlaveStrategy(timer=_timer(0, 1))

    result = asyncio.run(strategy.synchronize(node, SingleReference(master)))

    assert not result.success
    assert result.details.startswith("Error")
    assert result.adjustment_ms == 0
    assert result.after_sync is None
    assert node.clock.current_time() == 4000


def test_slow_master_times_out() -> None:
    node = _FakeNode("n1", 4000)
    master = _FakeHandle("m", 5000, Role.MASTER, delay=1.0)
    strategy = MasterSlaveStrategy(query_timeout=0.01)

    result = asyncio.run(strategy.synchronize(node, SingleReference(master)))

    assert not result.success
    assert "TimeoutError" in result.details
    assert node.clock.current_time() == 4000


def test_average_moves_only_invoking_node() -> None:
    node = _FakeNode("n1", 100)
    members = [_FakeHandle("n1", 100), _FakeHandle("n2", 102), _FakeHandle("n3", 104)]
    strategy = CoordinatorAverageStrategy(timer=lambda: 0)

    result = asyncio.run(strategy.synchronize(node, NodeSet(members)))

    assert result.success
    assert result.algorithm == "Berkeley"
    assert result.adjustment_ms == 2
    assert node.clock.current_time() == 102
    assert "Average time: 102 ms" in result.details
    assert "Nodes: 3" in result.details
    assert "Coordinator: handle-n1" in result.details
    assert all(m.calls == 1 for m in members)


def test_average_truncates_toward_zero() -> None:
    node = _FakeNode("n1", 100)
    members = [_FakeHandle("n1", 100), _FakeHandle("n2", 101)]
    strategy = CoordinatorAverageStrategy(timer=lambda: 0)

    result = asyncio.run(strategy.synchronize(node, NodeSet(members)))

    assert result.adjustment_ms == 0
    assert node.clock.current_time() == 100


def test_average_uses_first_member_as_coordinator_when_node_is_outside_set() -> None:
    node = _FakeNode("outsider", 1000)
    members = [_FakeHandle("a", 2000), _FakeHandle("b", 4000)]
    strategy = CoordinatorAverageStrategy(timer=lambda: 0)

    result = asyncio.run(strategy.synchronize(node, NodeSet(members)))

    assert result.adjustment_ms == 1000
    assert result.round_trip_time_ms == 0
    assert "Coordinator: handle-a" in result.details


def test_empty_node_set_is_invalid() -> None:
    with pytest.raises(InvalidReferenceError):
        NodeSet([])


def test_average_rejects_single_reference() -> None:
    node = _FakeNode("n1", 100)
    strategy = CoordinatorAverageStrategy()

    with pytest.raises(InvalidReferenceError):
        asyncio.run(strategy.synchronize(node, SingleReference(_FakeHandle("m", 0, Role.MASTER))))


def test_unreachable_member_fails_whole_round() -> None:
    node = _FakeNode("n1", 100)
    members = [
        _FakeHandle("n1", 100),
        _FakeHandle("n2", error=TransportFailure("down")),
        _FakeHandle("n3", 104),
    ]
    strategy = CoordinatorAverageStrategy(timer=lambda: 0)

    result = asyncio.run(strategy.synchronize(node, NodeSet(members)))

    assert not result.success
    assert "handle-n2" in result.details
    assert node.clock.current_time() == 100
