"""Capability contracts consumed by the behavior engine.

The engine never talks to a game server directly. It is handed:

* a :class:`PathfinderBase` that performs the actual path search and
  movement toward a goal,
* a :class:`BodyBase` per agent for perception (position, health, nearby
  entities) and actuation (equip, attack, eat, small manual movements),
* a :class:`NotificationSink` for outbound status lines, and
* a :class:`SnapshotPersistence` for the shared store's durable copy.

When a concrete backend is unavailable, implementations should degrade to a
mock/logging mode rather than raising import errors.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from warden.geometry import Vec3

__all__ = [
    "BodyBase",
    "Entity",
    "GoalSpec",
    "Item",
    "LoggingSink",
    "MovementProfile",
    "NotificationSink",
    "PathOutcome",
    "PathfinderBase",
    "SnapshotPersistence",
]

logger = logging.getLogger("OpenWarden.Drivers")


class PathOutcome(Enum):
    """Terminal result of one pathfinder request."""

    REACHED = "reached"
    NO_PATH = "no_path"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GoalSpec:
    """Where the pathfinder should take the agent."""

    destination: Vec3
    tolerance: float = 1.0


@dataclass(frozen=True)
class MovementProfile:
    """Movement permissions for one attempt.

    Retries escalate these: later attempts accept a wider arrival radius and
    allow costlier terrain.
    """

    extra_tolerance: float = 0.0
    allow_dig: bool = False
    allow_parkour: bool = False
    max_drop: int = 3
    level: int = 0


@dataclass
class Entity:
    """A perceived entity in the world.

    Attributes:
        id: Stable identifier for the entity's lifetime.
        name: Type name (``"zombie"``, ``"player"``, ...).
        kind: ``"mob"``, ``"player"`` or ``"object"``.
        position: Current position.
        health: Remaining health; ``0`` once defeated.
        username: Player name, for ``kind == "player"``.
    """

    id: str
    name: str
    kind: str
    position: Vec3
    health: float = 20.0
    username: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.health > 0

    @property
    def display_name(self) -> str:
        return self.username or self.name

    def identities(self) -> List[str]:
        """Every identifier a whitelist entry could use for this entity."""
        ids = [self.id, self.name]
        if self.username:
            ids.append(self.username)
        return [i.lower() for i in ids]


@dataclass
class Item:
    """An inventory stack."""

    id: str
    name: str
    count: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)


class PathfinderBase(ABC):
    """External path search + movement capability."""

    @abstractmethod
    async def request_path(
        self, agent_id: str, goal: GoalSpec, profile: MovementProfile
    ) -> PathOutcome:
        """Move *agent_id* toward *goal*; resolve once reached or impossible."""

    @abstractmethod
    def cancel(self, agent_id: str) -> None:
        """Abort any in-flight request for *agent_id*. Safe when none is active."""


class BodyBase(ABC):
    """Per-agent perception and actuation handle."""

    agent_id: str = "agent"

    @property
    @abstractmethod
    def position(self) -> Vec3:
        """Current position."""

    @property
    @abstractmethod
    def health(self) -> float:
        """Current health points."""

    @property
    def max_health(self) -> float:
        return 20.0

    @abstractmethod
    def nearby_entities(self, center: Vec3, radius: float) -> List[Entity]:
        """Entities (excluding this agent) within *radius* of *center*."""

    @abstractmethod
    def locate_entity(self, ref: str) -> Optional[Entity]:
        """Find a visible entity by id or player name, or ``None``."""

    @abstractmethod
    def items(self) -> List[Item]:
        """Inventory contents."""

    @abstractmethod
    def held_item(self) -> Optional[str]:
        """Id of the item in hand, or ``None`` for bare hands."""

    @abstractmethod
    async def equip(self, item_id: str) -> None:
        """Move *item_id* into the hand slot."""

    @abstractmethod
    async def attack(self, entity_id: str) -> None:
        """Strike *entity_id* once."""

    def offhand_item(self) -> Optional[str]:
        """Id of the item in the off-hand slot, or ``None``."""
        return None

    async def equip_offhand(self, item_id: str) -> None:
        """Move *item_id* into the off-hand slot."""
        raise NotImplementedError(f"{type(self).__name__} has no off-hand slot")

    async def consume(self, item_id: str) -> None:
        """Eat one of *item_id*."""
        raise NotImplementedError(f"{type(self).__name__} cannot eat")

    async def jump(self) -> None:
        """Jump in place. Default: no-op."""

    async def nudge(self, direction: str, duration_s: float) -> None:
        """Walk in *direction* (forward/back/left/right) for *duration_s*. Default: no-op."""

    def health_check(self) -> Dict[str, Any]:
        """Return ``{"ok": bool, "mode": str, "error": str | None}``."""
        return {"ok": True, "mode": "mock", "error": None}


class NotificationSink(ABC):
    """Outbound status channel. Delivery is fire-and-forget."""

    @abstractmethod
    def deliver(self, agent_id: str, message: str) -> None:
        """Send *message* on behalf of *agent_id*."""


class LoggingSink(NotificationSink):
    """Sink that only logs. Used when no chat front-end is attached."""

    def __init__(self) -> None:
        self.delivered: List[tuple] = []

    def deliver(self, agent_id: str, message: str) -> None:
        self.delivered.append((agent_id, message))
        logger.info("[%s] %s", agent_id, message)


class SnapshotPersistence(ABC):
    """Durable key-value snapshots, one map per category."""

    @abstractmethod
    def load_snapshot(self, category: str) -> Dict[str, Any]:
        """Return the stored map for *category* (empty when never saved)."""

    @abstractmethod
    def save_snapshot(self, category: str, data: Dict[str, Any]) -> None:
        """Replace the stored map for *category*."""
