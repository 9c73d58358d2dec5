"""MCP stdio server exposing the MUD bridge tools."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import BridgeConfig
from .errors import ConfigError
from .session import MudSession
from .tools import MudTools, Result


LOG = logging.getLogger("mudbridge.server")

SERVER_NAME = "mud-bridge"


def build_server(tools: MudTools) -> FastMCP:
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(name="mud_connect", title="Connect to MUD")
    async def mud_connect() -> Result:
        """Connect to the MUD world as a virtual user."""
        return await tools.connect()

    @mcp.tool(name="mud_execute_command", title="Execute MUD Command")
    async def mud_execute_command(command: str) -> Result:
        """Execute a command in the MUD.

        Args:
            command: The MUD command to execute.
        """
        return await tools.execute_command(command)

    @mcp.tool(name="mud_observe_room", title="Observe Current Room")
    async def mud_observe_room() -> Result:
        """Get detailed information about the current room."""
        return await tools.observe_room()

    @mcp.tool(name="mud_move", title="Move Direction")
    async def mud_move(direction: str) -> Result:
        """Move in a direction.

        Args:
            direction: Direction to move (north, south, east, west, up, down, etc.)
        """
        return await tools.move(direction)

    @mcp.tool(name="mud_say", title="Say Message")
    async def mud_say(message: str) -> Result:
        """Speak in the current room.

        Args:
            message: Message to say.
        """
        return await tools.say(message)

    @mcp.tool(name="mud_who", title="Who Is Online")
    async def mud_who() -> Result:
        """See who is currently online."""
        return await tools.who()

    @mcp.tool(name="mud_disconnect", title="Disconnect from MUD")
    async def mud_disconnect() -> Result:
        """Disconnect from the MUD."""
        return await tools.disconnect()

    return mcp


async def amain(config: BridgeConfig) -> None:
    session = MudSession(config)
    server = build_server(MudTools(session))
    LOG.info("MUD bridge MCP server started (MUD at %s:%s)", config.host, config.port)
    try:
        await server.run_stdio_async()
    finally:
        await session.disconnect()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MCP bridge to a JSON-speaking MUD")
    parser.add_argument("--host", default=None, help="MUD host (default: $MUD_HOST or localhost)")
    parser.add_argument("--port", type=int, default=None, help="MUD port (default: $MUD_PORT or 8383)")
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = BridgeConfig.from_env().with_overrides(host=args.host, port=args.port)
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    level_name = args.log_level or ("DEBUG" if config.verbose else "WARNING")
    # stdout carries the MCP stream; basicConfig logs to stderr.
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    )

    try:
        asyncio.run(amain(config))
    except KeyboardInterrupt:
        LOG.info("MCP server shutting down")


if __name__ == "__main__":
    main()
