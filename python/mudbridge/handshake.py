"""Login sequence state machine for the MUD bridge protocol.

The server speaks first. A full login looks like::

    server: {"type": "handshake"}
    client: {"type": "hello", "session_id": ..., "client_name": ..., "version": ...}
    server: {"type": "hello_response", "session_id": "abc123"}
    client: {"type": "connect_to_mud"}
    server: {"type": "connect_response", "status": "connected", "location": ..., "name": ...}

Each step is only valid after the previous acknowledgement, so anything
that arrives out of turn is logged and ignored rather than acted on.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from . import protocol
from .protocol import Message, MessageKind, Payload


LOG = logging.getLogger("mudbridge.handshake")


class HandshakeState(Enum):
    AWAITING_GREETING = "awaiting_greeting"
    AWAITING_CREDENTIAL_ACK = "awaiting_credential_ack"
    AWAITING_WORLD_ENTRY = "awaiting_world_entry"
    READY = "ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (HandshakeState.READY, HandshakeState.FAILED)


def make_session_label() -> str:
    return f"mcp_llm_{int(time.time() * 1000)}"


class HandshakeMachine:
    def __init__(
        self,
        send: Callable[[Payload], None],
        client_name: str,
        version: str,
        label_factory: Callable[[], str] = make_session_label,
    ) -> None:
        self._send = send
        self.client_name = client_name
        self.version = version
        self._label_factory = label_factory
        self.state = HandshakeState.AWAITING_GREETING
        self.client_label: Optional[str] = None
        self.session_id: Optional[str] = None
        self.location: Optional[str] = None
        self.name: Optional[str] = None
        self.error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state.terminal

    def handle(self, message: Message) -> HandshakeState:
        if self.state.terminal:
            LOG.debug("Handshake already %s; ignoring %s", self.state.value, message.kind.value)
            return self.state

        if message.kind is MessageKind.ERROR:
            self._fail(message.error or "Server reported an error during login")
        elif self.state is HandshakeState.AWAITING_GREETING and message.kind is MessageKind.GREETING:
            self._on_greeting()
        elif self.state is HandshakeState.AWAITING_CREDENTIAL_ACK and message.kind is MessageKind.CREDENTIAL_ACK:
            self._on_credential_ack(message)
        elif self.state is HandshakeState.AWAITING_WORLD_ENTRY and message.kind is MessageKind.WORLD_ENTRY_RESULT:
            self._on_world_entry(message)
        else:
            LOG.warning(
                "Ignoring %s message (type=%r) while %s",
                message.kind.value,
                message.type,
                self.state.value,
            )
        return self.state

    def fail(self, reason: str) -> None:
        """Force the machine into FAILED, e.g. when the login times out."""

        if not self.state.terminal:
            self._fail(reason)

    def _on_greeting(self) -> None:
        self.client_label = self._label_factory()
        LOG.debug("Received greeting, offering credentials as %s", self.client_label)
        self._send(protocol.hello(self.client_label, self.client_name, self.version))
        self.state = HandshakeState.AWAITING_CREDENTIAL_ACK

    def _on_credential_ack(self, message: Message) -> None:
        if not message.succeeded or message.error:
            self._fail(message.error or "Credentials rejected")
            return
        session_id = message.get("session_id")
        if not session_id:
            self._fail("Credential acknowledgement carried no session id")
            return
        self.session_id = str(session_id)
        LOG.info("Authenticated with session %s", self.session_id)
        self._send(protocol.connect_to_world())
        self.state = HandshakeState.AWAITING_WORLD_ENTRY

    def _on_world_entry(self, message: Message) -> None:
        status = message.get("status")
        entered = status == "connected" if status is not None else message.get("success") is True
        if not entered:
            self._fail(message.error or f"World entry refused (status={status!r})")
            return
        location = message.get("location")
        name = message.get("name")
        self.location = str(location) if location is not None else None
        self.name = str(name) if name is not None else None
        self.state = HandshakeState.READY
        LOG.info("Entered world at %s as %s", self.location, self.name)

    def _fail(self, reason: str) -> None:
        LOG.warning("Handshake failed while %s: %s", self.state.value, reason)
        self.error = reason
        self.state = HandshakeState.FAILED
