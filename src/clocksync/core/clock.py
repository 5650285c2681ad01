import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from clocksync.config import (
    DRIFT_STEP,
    MAX_ADJUSTMENT_MS,
    MAX_FEEDBACK_DRIFT_RATE,
    MIN_FEEDBACK_DRIFT_RATE,
    TICK_MS,
    validate_drift_rate,
)
from clocksync.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClockSnapshot:
    """Point-in-time view of a simulated clock"""
    time_ms: int
    drift_rate: float

    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.time_ms / 1000.0, tz=timezone.utc)

    def to_dict(self) -> Dict:
        return {
            "time_ms": self.time_ms,
            "iso_time": self.as_datetime().isoformat(),
            "drift_rate": self.drift_rate,
        }


class ClockState:
    """
    Simulated physical clock that drifts and accepts bounded corrections.

    The clock advances by round(tick_ms * drift_rate) for every tick_ms of
    elapsed monotonic time. Ticks are folded in lazily under the lock on every
    read and update, so advancement and synchronize() never interleave.
    """

    MAX_ADJUSTMENT_MS = MAX_ADJUSTMENT_MS

    def __init__(self, initial_time_ms: Optional[int] = None, drift_rate: Optional[float] = None,
                 *, tick_ms: int = TICK_MS, monotonic: Callable[[], float] = time.monotonic):
        if tick_ms <= 0:
            raise ConfigurationError(f"tick_ms must be positive, got {tick_ms}")
        if initial_time_ms is None:
            initial_time_ms = int(time.time() * 1000)

        self._lock = threading.Lock()
        self._monotonic = monotonic
        self._tick_ms = int(tick_ms)
        self._time_ms = int(initial_time_ms)
        self._drift_rate = 1.0 if drift_rate is None else validate_drift_rate(drift_rate)
        self._anchor = monotonic()  # monotonic instant of the last folded tick

        # Statistics
        self.adjustment_count = 0
        self.last_adjustment_ms = 0

    def _advance_locked(self) -> None:
        elapsed_ms = (self._monotonic() - self._anchor) * 1000.0
        ticks = int(elapsed_ms // self._tick_ms)
        if ticks <= 0:
            return
        self._time_ms += ticks * round(self._tick_ms * self._drift_rate)
        self._anchor += ticks * self._tick_ms / 1000.0

    def current_time(self) -> int:
        """Current simulated time in milliseconds."""
        with self._lock:
            self._advance_locked()
            return self._time_ms

    @property
    def drift_rate(self) -> float:
        with self._lock:
            return self._drift_rate

    @property
    def tick_ms(self) -> int:
        return self._tick_ms

    def snapshot(self) -> ClockSnapshot:
        with self._lock:
            self._advance_locked()
            return ClockSnapshot(self._time_ms, self._drift_rate)

    def synchronize(self, observed_time_ms: int) -> int:
        """
        Move the clock towards observed_time_ms.

        The correction is clamped to +/- MAX_ADJUSTMENT_MS and the drift rate is
        nudged towards the observed clock. Returns the adjustment actually applied.
        """
        with self._lock:
            self._advance_locked()
            diff = int(observed_time_ms) - self._time_ms
            adjustment = max(-self.MAX_ADJUSTMENT_MS, min(diff, self.MAX_ADJUSTMENT_MS))

            if adjustment != 0:
                self._time_ms += adjustment
                if diff > 0:
                    # running slow
                    self._drift_rate = min(round(self._drift_rate + DRIFT_STEP, 6), MAX_FEEDBACK_DRIFT_RATE)
                else:
                    self._drift_rate = max(round(self._drift_rate - DRIFT_STEP, 6), MIN_FEEDBACK_DRIFT_RATE)
                self.adjustment_count += 1

            self.last_adjustment_ms = adjustment

        if adjustment != diff:
            logger.debug(f"Clock correction clamped: requested={diff}ms applied={adjustment}ms")
        return adjustment

    def set_drift_rate(self, rate: float) -> None:
        """Overwrite the drift rate. Raises ConfigurationError outside [0.5, 1.5]."""
        rate = validate_drift_rate(rate)
        with self._lock:
            # ticks already elapsed ran at the old rate
            self._advance_locked()
            self._drift_rate = rate

    def get_status(self) -> Dict:
        snapshot = self.snapshot()
        status = snapshot.to_dict()
        status.update({
            "tick_ms": self._tick_ms,
            "max_adjustment_ms": self.MAX_ADJUSTMENT_MS,
            "adjustment_count": self.adjustment_count,
            "last_adjustment_ms": self.last_adjustment_ms,
        })
        return status

    def __repr__(self) -> str:
        snapshot = self.snapshot()
        return f"ClockState(time={snapshot.as_datetime().isoformat()}, drift={snapshot.drift_rate})"
