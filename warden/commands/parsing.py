"""Command text parsing.

Wire format: ``<marker><verb> [targetAgentId] [args...]``, one command per
message. Argument helpers for the movement verbs live here too so the
router and the engine agree on what ``guard Steve`` or
``patrol (0,64,0) (10,64,10) radius=4`` mean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from warden.commands.auth import TrustLevel
from warden.errors import InvalidCommand
from warden.geometry import Vec3, is_number, parse_points

_COORDINATE_TOKEN = re.compile(r"^[()\[\],\d.\-]+$")
_RADIUS_TOKEN = re.compile(r"^radius=(\d+(?:\.\d+)?)$", re.IGNORECASE)

USAGE: Dict[str, str] = {
    "help": "help [verb]",
    "list": "list",
    "status": "status [agent]",
    "threats": "threats [agent]",
    "stop": "stop [agent]",
    "goto": "goto [agent] <x y z | place | player>",
    "come": "come [agent]",
    "guard": "guard [agent] <player | x y z> [radius]",
    "patrol": "patrol [agent] <point> <point> [...] [radius=N]",
    "attack": "attack [agent] <entity | mob name>",
    "mark": "mark [agent] <name> [x y z]",
    "whitelist": "whitelist [agent] <add|remove|list> [name]",
    "aggression": "aggression [agent] [low|medium|high]",
}

# Short forms accepted in place of a verb
VERB_ALIASES: Dict[str, str] = {
    "aggro": "aggression",
}


@dataclass
class Command:
    """One parsed inbound request."""

    verb: str
    target_agent_id: Optional[str]
    args: List[str] = field(default_factory=list)
    sender_id: str = ""
    sender_trust_level: TrustLevel = TrustLevel.GUEST
    raw: str = ""


@dataclass
class Destination:
    """Where a ``goto``/``come`` should go: a point, a named place or entity, or the sender."""

    point: Optional[Vec3] = None
    ref: Optional[str] = None

    @property
    def is_sender(self) -> bool:
        return self.point is None and self.ref is None


def is_command(raw: str, marker: str) -> bool:
    return raw.strip().startswith(marker)


def parse_command(
    raw: str,
    sender_id: str,
    trust_level: TrustLevel,
    marker: str = "#",
    agent_ids: Iterable[str] = (),
) -> Command:
    """Split raw text into a :class:`Command`.

    ``args[0]`` becomes the target agent when it names a live agent
    (case-insensitive); otherwise the command has no target.

    Raises:
        InvalidCommand: If *raw* lacks the marker or has no verb.
    """
    text = raw.strip()
    if not text.startswith(marker):
        raise InvalidCommand(f"Commands start with '{marker}'", code="NOT_A_COMMAND")
    tokens = text[len(marker):].split()
    if not tokens:
        raise InvalidCommand("Empty command")
    verb, args = tokens[0].lower(), tokens[1:]
    verb = VERB_ALIASES.get(verb, verb)

    target = None
    if args:
        by_lower = {a.lower(): a for a in agent_ids}
        match = by_lower.get(args[0].lower())
        if match is not None:
            target = match
            args = args[1:]

    return Command(
        verb=verb,
        target_agent_id=target,
        args=args,
        sender_id=sender_id,
        sender_trust_level=trust_level,
        raw=raw,
    )


def _is_coordinate(token: str) -> bool:
    return bool(_COORDINATE_TOKEN.match(token)) and any(c.isdigit() for c in token)


def _points(tokens: List[str], verb: str) -> List[Vec3]:
    try:
        return parse_points(tokens)
    except ValueError as exc:
        raise InvalidCommand(f"{exc}. Usage: {USAGE[verb]}") from exc


def parse_goto_args(args: List[str]) -> Destination:
    """``[]`` → sender, ``x y z`` → point, ``name`` → named place or entity."""
    if not args:
        return Destination()
    if all(_is_coordinate(a) for a in args):
        points = _points(args, "goto")
        if len(points) != 1:
            raise InvalidCommand(f"goto takes one point. Usage: {USAGE['goto']}")
        return Destination(point=points[0])
    if len(args) == 1:
        return Destination(ref=args[0])
    raise InvalidCommand(f"Usage: {USAGE['goto']}")


def parse_guard_args(
    args: List[str], default_radius: float
) -> Tuple[Optional[Vec3], Optional[str], float]:
    """Return ``(position, entity_ref, radius)``; exactly one of the first two is set."""
    if not args:
        raise InvalidCommand(f"Usage: {USAGE['guard']}")
    if _is_coordinate(args[0]):
        coords = [a for a in args if _is_coordinate(a)]
        if len(coords) != len(args):
            raise InvalidCommand(f"Usage: {USAGE['guard']}")
        numbers = _flatten_numbers(coords)
        if len(numbers) == 3:
            return Vec3(*numbers), None, default_radius
        if len(numbers) == 4:
            return Vec3(*numbers[:3]), None, numbers[3]
        raise InvalidCommand(f"guard needs x y z [radius]. Usage: {USAGE['guard']}")
    if len(args) == 1:
        return None, args[0], default_radius
    if len(args) == 2 and is_number(args[1]):
        return None, args[0], float(args[1])
    raise InvalidCommand(f"Usage: {USAGE['guard']}")


def parse_patrol_args(
    args: List[str],
    default_radius: float,
    named: Optional[Callable[[str], Optional[Vec3]]] = None,
) -> Tuple[List[Vec3], float]:
    """Return ``(points, check_radius)``. Requires at least two points.

    Named places are resolved with *named*; coordinates may be written as
    ``x y z`` triples or ``(x,y,z)`` groups.
    """
    radius = default_radius
    points: List[Vec3] = []
    pending: List[str] = []

    def flush() -> None:
        if pending:
            points.extend(_points(pending, "patrol"))
            pending.clear()

    for token in args:
        m = _RADIUS_TOKEN.match(token)
        if m:
            radius = float(m.group(1))
        elif _is_coordinate(token):
            pending.append(token)
        else:
            flush()
            place = named(token) if named is not None else None
            if place is None:
                raise InvalidCommand(f"Unknown place '{token}'. Usage: {USAGE['patrol']}")
            points.append(place)
    flush()

    if len(points) < 2:
        raise InvalidCommand(f"patrol needs at least two points. Usage: {USAGE['patrol']}")
    return points, radius


def _flatten_numbers(tokens: List[str]) -> List[float]:
    numbers: List[float] = []
    for token in tokens:
        for part in filter(None, re.split(r"[,()\[\]\s]+", token)):
            if not is_number(part):
                raise InvalidCommand(f"'{part}' is not a number")
            numbers.append(float(part))
    return numbers
