"""Command router.

Turns inbound command text into a call on one agent (or every agent):

    1. Rejects text that does not start with the command marker.
    2. Splits it into verb, optional target agent and args.
    3. Checks the sender's trust level against the verb's requirement.
    4. Handles system verbs (``help``, ``list``, untargeted ``stop``).
    5. Delegates everything else to the agent's ``transition(verb, args)``.
    6. Returns a :class:`CommandResponse`; errors never escape as exceptions.

The router keeps no state between calls apart from a counter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

from warden.commands.auth import AuthDirectory, TrustLevel, VERB_PERMISSIONS
from warden.commands.parsing import USAGE, Command, parse_command
from warden.errors import InvalidCommand, TargetNotFound, WardenError

if TYPE_CHECKING:
    from warden.fleet import Fleet

logger = logging.getLogger("OpenWarden.Commands.Router")

SYSTEM_VERBS = ("help", "list")

# Verbs whose untargeted form reads args as an agent name
_AGENT_NAME_VERBS = ("stop", "status", "threats")


@dataclass
class CommandResponse:
    """Result of routing one command.

    ``payload`` is a string, a list of strings or a status dict on success;
    on failure ``code`` names the error and ``message`` explains it.
    """

    ok: bool
    code: str = "OK"
    message: str = ""
    payload: Any = None

    @classmethod
    def failure(cls, exc: WardenError) -> "CommandResponse":
        return cls(ok=False, code=exc.code, message=exc.message)

    def lines(self) -> List[str]:
        """Render for a text channel."""
        if not self.ok:
            return [f"Error: {self.message}"]
        payload = self.payload
        if payload is None:
            return [self.message] if self.message else []
        if isinstance(payload, str):
            return [payload]
        if isinstance(payload, dict):
            return [f"{k}: {v}" for k, v in payload.items()]
        return [str(p) for p in payload]

    def to_dict(self) -> dict:
        return {"ok": self.ok, "code": self.code, "message": self.message, "payload": self.payload}


class CommandRouter:
    """Route command text to fleet agents.

    Args:
        fleet:  The :class:`~warden.fleet.Fleet` holding live agents.
        auth:   Verb permission table (defaults to the fleet's).
        marker: Command prefix (defaults to ``system.command_marker``).
    """

    def __init__(self, fleet: "Fleet", auth: Optional[AuthDirectory] = None, marker: Optional[str] = None):
        self.fleet = fleet
        self.auth = auth or fleet.auth
        self.marker = marker or fleet.config.get("system", {}).get("command_marker", "#")
        self._commands_routed = 0

    @property
    def commands_routed(self) -> int:
        return self._commands_routed

    async def handle(self, raw_text: str, sender_id: str, trust_level: Any) -> CommandResponse:
        """Parse, authorize and dispatch one command."""
        try:
            level = TrustLevel.parse(trust_level)
            cmd = parse_command(raw_text, sender_id, level, self.marker, self.fleet.agent_ids())
        except InvalidCommand as exc:
            return CommandResponse.failure(exc)
        except ValueError as exc:
            return CommandResponse(ok=False, code="INVALID_COMMAND", message=str(exc))

        try:
            self.auth.authorize(cmd.verb, cmd.sender_trust_level, sender_id)
            payload = await self._dispatch(cmd)
        except WardenError as exc:
            logger.info("Command '%s' from %s rejected: %s", cmd.verb, sender_id, exc.message)
            return CommandResponse.failure(exc)
        except Exception as e:
            logger.exception("Handler error for '%s': %s", cmd.verb, e)
            return CommandResponse(ok=False, code="HANDLER_ERROR", message=str(e))

        self._commands_routed += 1
        return CommandResponse(ok=True, payload=payload)

    async def _dispatch(self, cmd: Command) -> Any:
        if cmd.verb == "help":
            return self._help(cmd)
        if cmd.verb == "list":
            return self.fleet.list_status() or ["No agents online."]
        if cmd.verb not in VERB_PERMISSIONS:
            raise InvalidCommand(f"Unknown command '{cmd.verb}'. Try {self.marker}help")

        if cmd.target_agent_id is not None:
            agent = self.fleet.get(cmd.target_agent_id)
            return await agent.transition(cmd.verb, cmd.args, cmd.sender_id)

        if cmd.verb in _AGENT_NAME_VERBS and cmd.args:
            raise TargetNotFound(f"Agent '{cmd.args[0]}' not found")
        agents = self.fleet.agents()
        if not agents:
            raise TargetNotFound("No agents online")
        if len(agents) == 1:
            return await agents[0].transition(cmd.verb, cmd.args, cmd.sender_id)
        return await self._broadcast(cmd, agents)

    async def _broadcast(self, cmd: Command, agents: list) -> List[str]:
        results = await asyncio.gather(
            *(a.transition(cmd.verb, cmd.args, cmd.sender_id) for a in agents),
            return_exceptions=True,
        )
        lines: List[str] = []
        for agent, result in zip(agents, results):
            if isinstance(result, WardenError):
                lines.append(f"{agent.id}: {result.message}")
            elif isinstance(result, BaseException):
                logger.error("Broadcast '%s' failed on %s: %s", cmd.verb, agent.id, result)
                lines.append(f"{agent.id}: error ({result})")
            elif cmd.verb == "status":
                lines.append(agent.status_line())
            elif isinstance(result, list):
                lines.extend(f"{agent.id}: {line}" for line in result)
            else:
                lines.append(str(result))
        return lines

    def _help(self, cmd: Command) -> List[str]:
        if cmd.args:
            verb = cmd.args[0].lower().lstrip(self.marker)
            if verb not in USAGE:
                raise InvalidCommand(f"No help for '{verb}'")
            return [f"{self.marker}{USAGE[verb]}"]
        verbs = self.auth.verbs_for(cmd.sender_trust_level)
        return [f"Commands: {', '.join(self.marker + v for v in verbs)}"]
