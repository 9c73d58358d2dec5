"""JSON-based wire protocol helpers for the MUD bridge."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


Payload = Dict[str, Any]
ENCODING = "utf-8"


class ProtocolError(RuntimeError):
    pass


class MessageKind(Enum):
    GREETING = "greeting"
    CREDENTIAL_ACK = "credential_ack"
    WORLD_ENTRY_RESULT = "world_entry_result"
    REPLY = "reply"
    ERROR = "error"
    UNKNOWN = "unknown"


# Inbound ``type`` values understood by the handshake and correlator.
INBOUND_TYPES: Dict[str, MessageKind] = {
    "handshake": MessageKind.GREETING,
    "hello_response": MessageKind.CREDENTIAL_ACK,
    "connect_response": MessageKind.WORLD_ENTRY_RESULT,
    "command_response": MessageKind.REPLY,
    "observe_response": MessageKind.REPLY,
    "output": MessageKind.REPLY,
    "response": MessageKind.REPLY,
    "error": MessageKind.ERROR,
}

_REPLY_FIELDS = ("success", "response", "output")


@dataclass(frozen=True)
class Message:
    """One decoded inbound record."""

    kind: MessageKind
    payload: Payload = field(default_factory=dict)

    @property
    def type(self) -> Optional[str]:
        value = self.payload.get("type")
        return value if isinstance(value, str) else None

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    @property
    def succeeded(self) -> bool:
        """True unless the message carries an explicit failure marker."""

        if self.kind is MessageKind.ERROR:
            return False
        return self.payload.get("success") is not False

    @property
    def error(self) -> Optional[str]:
        value = self.payload.get("error")
        if value is None:
            return None
        return str(value)

    @property
    def text(self) -> Optional[str]:
        for key in ("response", "output", "content"):
            value = self.payload.get(key)
            if isinstance(value, str):
                return value
        return None


def classify(payload: Payload) -> MessageKind:
    msg_type = payload.get("type")
    if isinstance(msg_type, str):
        return INBOUND_TYPES.get(msg_type, MessageKind.UNKNOWN)
    # Untyped replies come from the flat action/success dialect.
    if any(key in payload for key in _REPLY_FIELDS):
        return MessageKind.REPLY
    return MessageKind.UNKNOWN


def encode(message: Payload) -> bytes:
    """Serialize a message to bytes with a trailing newline."""

    return (json.dumps(message, separators=(",", ":"), ensure_ascii=False) + "\n").encode(ENCODING)


def decode(line: str) -> Message:
    """Parse one text line into a typed message."""

    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Malformed payload: {line[:80]!r}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(payload).__name__}")
    return Message(kind=classify(payload), payload=payload)


def hello(session_label: str, client_name: str, version: str) -> Payload:
    return {
        "type": "hello",
        "session_id": session_label,
        "client_name": client_name,
        "version": version,
    }


def connect_to_world() -> Payload:
    return {"type": "connect_to_mud"}


def execute_command(command: str) -> Payload:
    return {"type": "execute_command", "command": command}


def disconnect_notice() -> Payload:
    return {"type": "disconnect"}
