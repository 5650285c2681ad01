from .message import ClockSyncMessage, MessageType, decode_message, encode_message
from .transport import (
    Transport,
    MulticastTransport,
    HttpTransport,
    LoopbackNetwork,
    LoopbackTransport,
)

__all__ = [
    # Wire format
    'ClockSyncMessage',
    'MessageType',
    'encode_message',
    'decode_message',

    # Transports
    'Transport',
    'MulticastTransport',
    'HttpTransport',
    'LoopbackNetwork',
    'LoopbackTransport',
]
