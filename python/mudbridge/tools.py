"""Tool operations exposed to the assistant, returning plain result dicts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .errors import BridgeError, NotConnectedError
from .session import CommandResult, MudSession


LOG = logging.getLogger("mudbridge.tools")

Result = Dict[str, Any]

NOT_CONNECTED = "Not connected to MUD. Use mud_connect first."


def _reply_text(result: CommandResult, default: str) -> str:
    if result.output:
        return result.output
    if not result.success and result.error:
        return result.error
    return default


class MudTools:
    def __init__(self, session: MudSession) -> None:
        self.session = session

    async def connect(self) -> Result:
        if self.session.connected:
            info = self.session.info
            LOG.info("mud_connect: already connected")
            return {
                "success": True,
                "status": "already_connected",
                "sessionId": info.session_id if info else None,
                "location": info.location if info else None,
                "message": "Already connected to MUD",
            }
        try:
            info = await self.session.connect()
        except BridgeError as exc:
            LOG.warning("mud_connect failed: %s", exc)
            return {"success": False, "status": "failed", "message": str(exc)}
        return {
            "success": True,
            "status": "connected",
            "sessionId": info.session_id,
            "location": info.location,
            "name": info.name,
            "message": "Connected to MUD successfully",
        }

    async def execute_command(self, command: str) -> Result:
        LOG.debug("mud_execute_command: %s", command)
        return await self._run(command, default="Command executed")

    async def observe_room(self) -> Result:
        outcome = await self._run("look", default="No description available")
        return {
            "success": outcome["success"],
            "description": outcome["result"],
            "message": outcome["message"],
        }

    async def move(self, direction: str) -> Result:
        return await self._run(direction, default="No response")

    async def say(self, message: str) -> Result:
        if not message.strip():
            return self._failure("Message must not be empty")
        return await self._run(f"say {message.strip()}", default="Message sent")

    async def who(self) -> Result:
        outcome = await self._run("who", default="No response")
        if not outcome["success"]:
            return {
                "success": False,
                "players": [],
                "count": 0,
                "raw_output": outcome["result"],
                "message": outcome["message"],
            }
        lines = [line.strip() for line in outcome["result"].splitlines() if line.strip()]
        return {
            "success": True,
            "players": lines,
            "count": len(lines),
            "raw_output": outcome["result"],
            "message": outcome["message"],
        }

    async def disconnect(self) -> Result:
        if not self.session.connected:
            # Still tear down a half-open attempt if there is one.
            await self.session.disconnect()
            return {"success": False, "status": "not_connected", "message": "Not connected to MUD"}
        await self.session.disconnect()
        return {"success": True, "status": "disconnected", "message": "Disconnected from MUD"}

    async def _run(self, command: str, default: str) -> Result:
        if not command.strip():
            return self._failure("Command must not be empty")
        try:
            result = await self.session.run_command(command)
        except NotConnectedError:
            return self._failure(NOT_CONNECTED)
        except BridgeError as exc:
            LOG.warning("Command %r failed: %s", command, exc)
            return self._failure(str(exc))
        text = _reply_text(result, default)
        return {
            "success": result.success,
            "result": text,
            "message": "ok" if result.success else (result.error or text),
        }

    @staticmethod
    def _failure(message: str, result: Optional[str] = None) -> Result:
        return {"success": False, "result": result or message, "message": message}
