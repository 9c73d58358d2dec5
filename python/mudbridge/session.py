"""Asyncio session manager owning the single connection to the MUD."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from . import protocol
from .config import BridgeConfig
from .correlator import Correlator
from .errors import (
    BridgeError,
    ConnectionClosedError,
    ConnectionFailedError,
    HandshakeError,
    NotConnectedError,
)
from .framing import FrameDecoder, FrameTooLongError
from .handshake import HandshakeMachine, HandshakeState, make_session_label
from .protocol import Message, Payload, ProtocolError


LOG = logging.getLogger("mudbridge.session")

READ_CHUNK = 64 * 1024
OBSERVE_COMMAND = "look"


class Phase(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


_PHASE_ORDER = {phase: index for index, phase in enumerate(Phase)}


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    location: Optional[str] = None
    name: Optional[str] = None
    client_label: Optional[str] = None


@dataclass(frozen=True)
class CommandResult:
    command: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_reply(cls, command: str, reply: Message) -> "CommandResult":
        return cls(
            command=command,
            success=reply.succeeded,
            output=reply.text,
            error=reply.error,
            raw=dict(reply.payload),
        )


class Connection:
    """State for one physical socket; never reused after it closes."""

    def __init__(self, max_line_length: int) -> None:
        self.phase = Phase.DISCONNECTED
        self.decoder = FrameDecoder(max_line_length)
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.handshake: Optional[HandshakeMachine] = None
        self.correlator: Optional[Correlator] = None
        self.ready: Optional["asyncio.Future[SessionInfo]"] = None
        self.reader_task: Optional["asyncio.Task[None]"] = None

    def advance(self, phase: Phase) -> None:
        if phase is Phase.CLOSED or _PHASE_ORDER[phase] > _PHASE_ORDER[self.phase]:
            LOG.debug("Connection phase %s -> %s", self.phase.value, phase.value)
            self.phase = phase
            return
        raise RuntimeError(f"Illegal phase transition {self.phase.value} -> {phase.value}")

    @property
    def info(self) -> Optional[SessionInfo]:
        machine = self.handshake
        if machine is None or machine.session_id is None:
            return None
        return SessionInfo(
            session_id=machine.session_id,
            location=machine.location,
            name=machine.name,
            client_label=machine.client_label,
        )


class MudSession:
    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        label_factory: Callable[[], str] = make_session_label,
    ) -> None:
        self.config = config or BridgeConfig()
        self._label_factory = label_factory
        self._connection: Optional[Connection] = None
        self._connecting: Optional["asyncio.Task[SessionInfo]"] = None

    @property
    def phase(self) -> Phase:
        if self._connection is None:
            return Phase.DISCONNECTED
        return self._connection.phase

    @property
    def connected(self) -> bool:
        return self.phase is Phase.READY

    @property
    def info(self) -> Optional[SessionInfo]:
        if self._connection is None:
            return None
        return self._connection.info

    @property
    def busy(self) -> bool:
        conn = self._connection
        return bool(conn and conn.correlator and conn.correlator.busy)

    async def connect(self) -> SessionInfo:
        conn = self._connection
        if conn is not None and conn.phase is Phase.READY:
            assert conn.info is not None
            return conn.info
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.create_task(self._open())
        return await asyncio.shield(self._connecting)

    async def run_command(self, command: str) -> CommandResult:
        conn = self._connection
        if conn is None or conn.phase is not Phase.READY or conn.correlator is None:
            raise NotConnectedError()
        text = command.strip()
        if not text:
            raise ValueError("Command must not be empty")

        reply = conn.correlator.send(protocol.execute_command(text))
        try:
            await self._drain(conn)
            message = await reply
        except asyncio.CancelledError:
            # Cancelling the future releases the correlator slot.
            reply.cancel()
            raise
        return CommandResult.from_reply(text, message)

    async def observe(self) -> CommandResult:
        return await self.run_command(OBSERVE_COMMAND)

    async def disconnect(self) -> bool:
        conn = self._connection
        if conn is None or conn.phase in (Phase.CLOSING, Phase.CLOSED):
            return False

        if conn.phase is Phase.READY:
            conn.advance(Phase.CLOSING)
            try:
                self._write(conn, protocol.disconnect_notice())
            except (BridgeError, OSError) as exc:
                LOG.debug("Could not send disconnect notice: %s", exc)
            LOG.info("Disconnecting from MUD")
        elif conn.phase is Phase.CONNECTING and self._connecting is not None:
            self._connecting.cancel()

        self._teardown(conn, ConnectionClosedError("Disconnected"))
        await self._wait_closed(conn)
        return True

    async def _open(self) -> SessionInfo:
        host, port = self.config.host, self.config.port
        conn = Connection(self.config.max_line_length)
        self._connection = conn
        conn.advance(Phase.CONNECTING)
        LOG.info("Connecting to MUD at %s:%s", host, port)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.connect_timeout
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.config.connect_timeout
            )
        except asyncio.CancelledError:
            if conn.phase is Phase.CLOSED:
                raise ConnectionClosedError("Disconnected while connecting") from None
            raise
        except (OSError, asyncio.TimeoutError) as exc:
            conn.advance(Phase.CLOSED)
            raise ConnectionFailedError(f"Could not connect to {host}:{port}: {exc or 'timed out'}") from exc

        conn.reader, conn.writer = reader, writer
        if conn.phase is Phase.CLOSED:
            writer.close()
            raise ConnectionClosedError("Disconnected while connecting")

        conn.handshake = HandshakeMachine(
            partial(self._write, conn),
            client_name=self.config.client_name,
            version=self.config.protocol_version,
            label_factory=self._label_factory,
        )
        conn.ready = loop.create_future()
        conn.advance(Phase.HANDSHAKING)
        conn.reader_task = asyncio.create_task(self._read_loop(conn))

        try:
            return await asyncio.wait_for(
                asyncio.shield(conn.ready), timeout=max(deadline - loop.time(), 0)
            )
        except asyncio.TimeoutError:
            reason = f"Login did not complete within {self.config.connect_timeout:g}s"
            conn.handshake.fail(reason)
            conn.ready.cancel()
            self._teardown(conn, HandshakeError(reason))
            await self._wait_closed(conn)
            raise HandshakeError(reason) from None
        except BridgeError:
            await self._wait_closed(conn)
            raise

    async def _read_loop(self, conn: Connection) -> None:
        assert conn.reader is not None
        error: BridgeError = ConnectionClosedError("Connection closed by MUD")
        try:
            while True:
                data = await conn.reader.read(READ_CHUNK)
                if not data:
                    LOG.info("MUD closed the connection")
                    break
                if not self._handle_chunk(conn, data):
                    break
        except FrameTooLongError as exc:
            LOG.error("Closing connection: %s", exc)
            error = ConnectionClosedError(str(exc))
        except OSError as exc:
            LOG.warning("Read error on MUD connection: %s", exc)
            error = ConnectionClosedError(f"Connection lost: {exc}")
        finally:
            self._teardown(conn, error)

    def _handle_chunk(self, conn: Connection, data: bytes) -> bool:
        """Route every complete line in ``data``; False once the connection should close.

        Lines completed ahead of an overlong tail are routed before the
        ``FrameTooLongError`` propagates.
        """

        try:
            lines = conn.decoder.feed(data)
        except FrameTooLongError as exc:
            self._route_lines(conn, exc.lines)
            raise
        return self._route_lines(conn, lines)

    def _route_lines(self, conn: Connection, lines: List[str]) -> bool:
        for line in lines:
            if conn.phase is Phase.CLOSED:
                return False
            if not line.strip():
                continue
            try:
                message = protocol.decode(line)
            except ProtocolError as exc:
                LOG.warning("Discarding unparseable line: %s", exc)
                continue
            if not self._route(conn, message):
                return False
        return True

    def _route(self, conn: Connection, message: Message) -> bool:
        if conn.phase is Phase.HANDSHAKING:
            assert conn.handshake is not None and conn.ready is not None
            state = conn.handshake.handle(message)
            if state is HandshakeState.READY:
                conn.correlator = Correlator(partial(self._write, conn), self.config.command_timeout)
                conn.advance(Phase.READY)
                if not conn.ready.done():
                    conn.ready.set_result(conn.info)
            elif state is HandshakeState.FAILED:
                if not conn.ready.done():
                    conn.ready.set_exception(HandshakeError(conn.handshake.error or "Login failed"))
                return False
        elif conn.phase is Phase.READY:
            assert conn.correlator is not None
            conn.correlator.notify(message)
        else:
            LOG.debug("Dropping %s message received while %s", message.kind.value, conn.phase.value)
        return True

    def _write(self, conn: Connection, message: Payload) -> None:
        writer = conn.writer
        if writer is None or writer.is_closing():
            raise ConnectionClosedError("Connection is not open")
        writer.write(protocol.encode(message))

    async def _drain(self, conn: Connection) -> None:
        if conn.writer is None:
            return
        try:
            await conn.writer.drain()
        except OSError as exc:
            LOG.warning("Write error on MUD connection: %s", exc)
            self._teardown(conn, ConnectionClosedError(f"Connection lost: {exc}"))

    def _teardown(self, conn: Connection, error: BridgeError) -> None:
        if conn.phase is Phase.CLOSED:
            return
        conn.advance(Phase.CLOSED)
        if conn.ready is not None and not conn.ready.done():
            conn.ready.set_exception(error)
        if conn.correlator is not None:
            conn.correlator.fail(error)
        conn.decoder.reset()
        if conn.writer is not None:
            conn.writer.close()
        task = conn.reader_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _wait_closed(self, conn: Connection) -> None:
        if conn.reader_task is not None and conn.reader_task is not asyncio.current_task():
            await asyncio.gather(conn.reader_task, return_exceptions=True)
        if conn.writer is None:
            return
        try:
            await conn.writer.wait_closed()
        except OSError as exc:
            LOG.debug("Error while closing MUD socket: %s", exc)
