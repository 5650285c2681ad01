"""Exception hierarchy for the clock synchronization engine."""


class ClockSyncError(Exception):
    """Base class for every error raised by clocksync."""


class ConfigurationError(ClockSyncError, ValueError):
    """A construction parameter (drift rate, interval, ...) is out of range."""


class InvalidReferenceError(ClockSyncError, ValueError):
    """An algorithm was handed a reference of the wrong shape, role or size."""


class MessageDecodeError(ClockSyncError, ValueError):
    """A received payload is not a valid clock sync message."""


class TransportFailure(ClockSyncError):
    """Sending or receiving over the transport failed."""


__all__ = [
    'ClockSyncError',
    'ConfigurationError',
    'InvalidReferenceError',
    'MessageDecodeError',
    'TransportFailure',
]
