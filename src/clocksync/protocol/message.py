import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from clocksync.errors import MessageDecodeError


class MessageType(Enum):
    SYNC_REQUEST = "SYNC_REQUEST"  # Request for the receiver's time (also used for discovery)
    SYNC_RESPONSE = "SYNC_RESPONSE"  # Master's answer to a request
    MASTER_ANNOUNCE = "MASTER_ANNOUNCE"  # Periodic broadcast of the master's time


@dataclass(frozen=True)
class ClockSyncMessage:
    """Wire record exchanged between nodes"""
    sender_id: str
    sender_time: int  # sender's clock in milliseconds when the message was built
    type: MessageType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "senderId": self.sender_id,
            "senderTime": self.sender_time,
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClockSyncMessage":
        if not isinstance(data, dict):
            raise MessageDecodeError(f"Expected a JSON object, got {type(data).__name__}")
        try:
            sender_id = data["senderId"]
            sender_time = data["senderTime"]
            msg_type = MessageType(data["type"])
        except KeyError as e:
            raise MessageDecodeError(f"Missing field {e.args[0]!r}") from e
        except ValueError as e:
            raise MessageDecodeError(f"Unknown message type {data.get('type')!r}") from e

        if not isinstance(sender_id, str) or not sender_id:
            raise MessageDecodeError("senderId must be a non-empty string")
        # bool is an int subclass but never a valid timestamp
        if isinstance(sender_time, bool) or not isinstance(sender_time, int):
            raise MessageDecodeError(f"senderTime must be an integer, got {sender_time!r}")
        return cls(sender_id=sender_id, sender_time=sender_time, type=msg_type)

    def __str__(self) -> str:
        return f"ClockSyncMessage(sender={self.sender_id}, time={self.sender_time}, type={self.type.value})"


def encode_message(message: ClockSyncMessage) -> bytes:
    return json.dumps(message.to_dict()).encode("utf-8")


def decode_message(payload: Union[bytes, str]) -> ClockSyncMessage:
    """Parse a UTF-8 JSON payload into a ClockSyncMessage"""
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageDecodeError(f"Malformed payload: {e}") from e
    return ClockSyncMessage.from_dict(data)
