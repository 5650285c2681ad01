import pytest  # type: ignore

from clocksync.core.clock import ClockState
from clocksync.errors import ConfigurationError


class _FakeMonotonic:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _frozen_clock(time_ms: int, drift: float = 1.0) -> ClockState:
    return ClockState(time_ms, drift, monotonic=_FakeMonotonic())


@pytest.mark.parametrize(
    "local,observed,expected",
    [
        (4000, 4500, 500),
        (4000, 5000, 1000),
        (4000, 10000, 1000),
        (4000, 3999, -1),
        (4000, 0, -1000),
        (4000, 4000, 0),
    ],
)
def test_synchronize_is_bounded(local: int, observed: int, expected: int) -> None:
    clock = _frozen_clock(local)

    applied = clock.synchronize(observed)

    assert applied == expected
    assert clock.current_time() == local + expected
    assert clock.last_adjustment_ms == expected


def test_drift_feedback_follows_correction_direction() -> None:
    slow = _frozen_clock(1000)
    slow.synchronize(2000)
    assert slow.drift_rate == pytest.approx(1.001)

    fast = _frozen_clock(1000)
    fast.synchronize(500)
    assert fast.drift_rate == pytest.approx(0.999)


@pytest.mark.parametrize(
    "drift,observed,expected_drift",
    [
        (1.1, 5000, 1.1),
        (1.3, 5000, 1.1),
        (0.9, 0, 0.9),
        (0.6, 0, 0.9),
    ],
)
def test_drift_feedback_is_clamped(drift: float, observed: int, expected_drift: float) -> None:
    clock = _frozen_clock(1000, drift)
    clock.synchronize(observed)
    assert clock.drift_rate == pytest.approx(expected_drift)


def test_synchronize_to_own_time_changes_nothing() -> None:
    clock = _frozen_clock(123456, 1.02)

    assert clock.synchronize(clock.current_time()) == 0
    assert clock.current_time() == 123456
    assert clock.drift_rate == 1.02
    assert clock.adjustment_count == 0


def test_clock_advances_by_whole_ticks_at_drift_rate() -> None:
    monotonic = _FakeMonotonic()
    clock = ClockState(0, 1.02, tick_ms=100, monotonic=monotonic)

    monotonic.now = 0.05
    assert clock.current_time() == 0

    monotonic.now = 1.0
    assert clock.current_time() == 10 * 102

    monotonic.now = 2.5
    assert clock.current_time() == 25 * 102


def test_set_drift_rate_keeps_elapsed_ticks_at_old_rate() -> None:
    monotonic = _FakeMonotonic()
    clock = ClockState(0, 1.0, tick_ms=100, monotonic=monotonic)

    monotonic.now = 1.0
    clock.set_drift_rate(1.5)
    monotonic.now = 2.0

    assert clock.current_time() == 1000 + 10 * 150


@pytest.mark.parametrize("rate", [0.49, 1.51, 0.0, -1.0])
def test_out_of_range_drift_rate_is_rejected(rate: float) -> None:
    clock = _frozen_clock(0)
    with pytest.raises(ConfigurationError):
        clock.set_drift_rate(rate)
    with pytest.raises(ConfigurationError):
        ClockState(0, rate)
    assert clock.drift_rate == 1.0


@pytest.mark.parametrize("rate", [0.5, 1.5])
def test_drift_rate_bounds_are_inclusive(rate: float) -> None:
    clock = _frozen_clock(0)
    clock.set_drift_rate(rate)
    assert clock.drift_rate == rate


def test_non_positive_tick_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ClockState(0, 1.0, tick_ms=0)


def test_status_reports_adjustments() -> None:
    clock = _frozen_clock(4000)
    clock.synchronize(6000)

    status = clock.get_status()

    assert status["time_ms"] == 5000
    assert status["adjustment_count"] == 1
    assert status["last_adjustment_ms"] == 1000
    assert status["max_adjustment_ms"] == 1000
    assert status["iso_time"].startswith("1970-01-01T00:00:05")
