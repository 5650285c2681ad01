import os
import random
from dataclasses import dataclass, fields
from typing import Optional

from clocksync.errors import ConfigurationError

# Clock model
MAX_ADJUSTMENT_MS = 1000  # Largest correction applied by a single synchronize()
TICK_MS = 100  # Simulated clock advances once per tick of wall time
DRIFT_STEP = 0.001  # Drift feedback applied after each non-zero correction
MIN_DRIFT_RATE = 0.5
MAX_DRIFT_RATE = 1.5
MIN_FEEDBACK_DRIFT_RATE = 0.9
MAX_FEEDBACK_DRIFT_RATE = 1.1
INITIAL_DRIFT_MIN = 0.98  # Randomized drift range for nodes created without one
INITIAL_DRIFT_MAX = 1.02

# Network defaults
DEFAULT_MULTICAST_GROUP = "224.0.0.1"
DEFAULT_MULTICAST_PORT = 9876
DEFAULT_NODE_PORT = 9000
DEFAULT_API_PORT = 8000

# Periodic tasks (seconds)
ANNOUNCE_DELAY = 1.0
ANNOUNCE_INTERVAL = 10.0
REQUEST_DELAY = 5.0
REQUEST_INTERVAL = 30.0
DISCOVERY_DELAY = 0.0
DISCOVERY_INTERVAL = 20.0
SHUTDOWN_GRACE = 5.0
RECEIVE_BACKOFF = 0.5
QUERY_TIMEOUT = 5.0

ENV_PREFIX = "CLOCKSYNC_"


def random_drift_rate() -> float:
    """Pick a drift rate close to 1.0 for a node created without one."""
    return random.uniform(INITIAL_DRIFT_MIN, INITIAL_DRIFT_MAX)


def validate_drift_rate(rate: float) -> float:
    if not MIN_DRIFT_RATE <= rate <= MAX_DRIFT_RATE:
        raise ConfigurationError(
            f"Drift rate must be between {MIN_DRIFT_RATE} and {MAX_DRIFT_RATE}, got {rate}"
        )
    return float(rate)


@dataclass
class NodeConfig:
    """Timing knobs of a NodeAgent. Defaults mirror the reference deployment."""
    announce_delay: float = ANNOUNCE_DELAY
    announce_interval: float = ANNOUNCE_INTERVAL
    request_delay: float = REQUEST_DELAY
    request_interval: float = REQUEST_INTERVAL
    discovery_delay: float = DISCOVERY_DELAY
    discovery_interval: float = DISCOVERY_INTERVAL
    shutdown_grace: float = SHUTDOWN_GRACE
    receive_backoff: float = RECEIVE_BACKOFF
    query_timeout: Optional[float] = QUERY_TIMEOUT
    tick_ms: int = TICK_MS

    def validate(self) -> "NodeConfig":
        for name in ("announce_interval", "request_interval", "discovery_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        for name in ("announce_delay", "request_delay", "discovery_delay",
                     "shutdown_grace", "receive_backoff"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.query_timeout is not None and self.query_timeout <= 0:
            raise ConfigurationError("query_timeout must be positive or None")
        if self.tick_ms <= 0:
            raise ConfigurationError("tick_ms must be positive")
        return self

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "NodeConfig":
        """Build a config from CLOCKSYNC_* environment variables, e.g. CLOCKSYNC_ANNOUNCE_INTERVAL=2."""
        values = {}
        for field in fields(cls):
            raw = os.getenv(prefix + field.name.upper())
            if raw is None or raw == "":
                continue
            try:
                if field.name == "tick_ms":
                    values[field.name] = int(raw)
                elif field.name == "query_timeout" and raw.lower() == "none":
                    values[field.name] = None
                else:
                    values[field.name] = float(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {prefix}{field.name.upper()}: {raw!r}") from e
        return cls(**values).validate()
