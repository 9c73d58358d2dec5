"""Shared fixtures: an in-process MUD speaking the bridge wire protocol."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio

from mudbridge.config import BridgeConfig
from mudbridge.session import MudSession


async def read_message(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    line = await reader.readline()
    if not line:
        return None
    return json.loads(line.decode("utf-8"))


async def write_message(writer: asyncio.StreamWriter, message: Dict[str, Any]) -> None:
    writer.write((json.dumps(message) + "\n").encode("utf-8"))
    await writer.drain()


class FakeMud:
    """Minimal MUD bridge daemon: greeting, hello/connect handshake, command replies."""

    def __init__(
        self,
        session_id: str = "abc123",
        location: str = "start-room",
        name: str = "Tester",
    ) -> None:
        self.session_id = session_id
        self.location = location
        self.name = name
        self.send_greeting = True
        self.reject_hello: Optional[str] = None
        self.refuse_entry: Optional[str] = None
        self.replies: Dict[str, Dict[str, Any]] = {}
        self.silent: Set[str] = set()
        self.received: List[Dict[str, Any]] = []
        self.commands: List[str] = []
        self.connections = 0
        self.port = 0
        self._server: Optional[asyncio.base_events.Server] = None
        self._writers: List[asyncio.StreamWriter] = []
        self.command_seen = asyncio.Event()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        assert self._server is not None
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()

    def received_types(self) -> List[Optional[str]]:
        return [message.get("type") for message in self.received]

    async def push(self, payload: bytes) -> None:
        """Write raw bytes to the most recent client."""

        writer = self._writers[-1]
        writer.write(payload)
        await writer.drain()

    def drop(self) -> None:
        for writer in self._writers:
            writer.close()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            if self.send_greeting:
                await write_message(writer, {"type": "handshake", "message": "Welcome"})
            if await self._handshake(reader, writer):
                await self._session_loop(reader, writer)
        except (ConnectionError, json.JSONDecodeError):
            pass
        finally:
            writer.close()

    async def _handshake(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> bool:
        while True:
            message = await read_message(reader)
            if message is None:
                return False
            self.received.append(message)
            msg_type = message.get("type")

            if msg_type == "hello":
                if self.reject_hello:
                    await write_message(
                        writer,
                        {"type": "hello_response", "success": False, "error": self.reject_hello},
                    )
                    continue
                await write_message(writer, {"type": "hello_response", "session_id": self.session_id})
            elif msg_type == "connect_to_mud":
                if self.refuse_entry:
                    await write_message(
                        writer,
                        {"type": "connect_response", "status": "failed", "error": self.refuse_entry},
                    )
                    continue
                await write_message(
                    writer,
                    {
                        "type": "connect_response",
                        "status": "connected",
                        "location": self.location,
                        "name": self.name,
                    },
                )
                return True
            elif msg_type == "disconnect":
                return False

    async def _session_loop(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while True:
            message = await read_message(reader)
            if message is None:
                return
            self.received.append(message)
            msg_type = message.get("type")

            if msg_type == "execute_command":
                command = message.get("command", "")
                self.commands.append(command)
                self.command_seen.set()
                if command in self.silent:
                    continue
                reply = self.replies.get(
                    command,
                    {"type": "command_response", "success": True, "response": f"You {command}."},
                )
                await write_message(writer, reply)
            elif msg_type == "disconnect":
                return


@pytest_asyncio.fixture
async def mud():
    server = FakeMud()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def config(mud: FakeMud) -> BridgeConfig:
    return BridgeConfig(
        host="127.0.0.1",
        port=mud.port,
        connect_timeout=2.0,
        command_timeout=0.5,
    )


@pytest_asyncio.fixture
async def session(config: BridgeConfig):
    mud_session = MudSession(config, label_factory=lambda: "mcp_llm_test")
    yield mud_session
    await mud_session.disconnect()
