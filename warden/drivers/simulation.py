"""In-memory simulation backend for OpenWarden.

Runs the behavior engine without a game server: a :class:`SimWorld` holds
entities and agent bodies, :class:`SimPathfinder` walks bodies toward their
goals at a fixed speed, and :class:`SimBody` gives each agent perception
and combat against the shared world.

Fleet config::

    world:
      speed: 4.0                 # blocks per second
      blocked:                   # goals inside these spheres need escalation
        - {x: 50, y: 64, z: 50, radius: 3, level: 2}
      entities:
        - {id: z1, name: zombie, kind: mob, position: [10, 64, 4], health: 20}
        - {id: p1, name: player, kind: player, username: Steve, position: [0, 64, 0]}
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from warden.geometry import Vec3

from .base import BodyBase, Entity, GoalSpec, Item, MovementProfile, PathfinderBase, PathOutcome

logger = logging.getLogger("OpenWarden.Simulation")

# Damage per strike by held item name; bare hands deal 1
WEAPON_DAMAGE: Dict[str, float] = {
    "netherite_sword": 8.0,
    "diamond_sword": 7.0,
    "iron_sword": 6.0,
    "stone_sword": 5.0,
    "golden_sword": 4.0,
    "wooden_sword": 4.0,
    "netherite_axe": 10.0,
    "diamond_axe": 9.0,
    "iron_axe": 9.0,
    "stone_axe": 9.0,
}

_NUDGE_VECTORS: Dict[str, Vec3] = {
    "forward": Vec3(1.0, 0.0, 0.0),
    "back": Vec3(-1.0, 0.0, 0.0),
    "left": Vec3(0.0, 0.0, -1.0),
    "right": Vec3(0.0, 0.0, 1.0),
}

# Health restored per item eaten; anything else edible heals 2
_FOOD_HEALING: Dict[str, float] = {
    "golden_apple": 8.0,
    "cooked_beef": 6.0,
    "cooked_porkchop": 6.0,
    "bread": 4.0,
    "baked_potato": 4.0,
    "apple": 3.0,
}


@dataclass
class BlockedZone:
    """Goals inside this sphere need a movement profile of at least ``level``."""

    center: Vec3
    radius: float
    level: int = 99

    def contains(self, point: Vec3) -> bool:
        return self.center.distance_to(point) <= self.radius


class SimWorld:
    """Shared world state for all simulated agents."""

    def __init__(self, speed: float = 4.0, step_interval_s: float = 0.05) -> None:
        self.speed = speed
        self.step_interval_s = step_interval_s
        self.entities: Dict[str, Entity] = {}
        self.bodies: Dict[str, "SimBody"] = {}
        self.blocked: List[BlockedZone] = []

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SimWorld":
        world_cfg = config.get("world") or {}
        world = cls(
            speed=float(world_cfg.get("speed", 4.0)),
            step_interval_s=float(world_cfg.get("step_interval_s", 0.05)),
        )
        for zone in world_cfg.get("blocked") or []:
            world.blocked.append(
                BlockedZone(
                    center=Vec3.from_any(zone),
                    radius=float(zone.get("radius", 1.0)),
                    level=int(zone.get("level", 99)),
                )
            )
        for spec in world_cfg.get("entities") or []:
            world.add_entity(
                Entity(
                    id=str(spec["id"]),
                    name=spec.get("name", "zombie"),
                    kind=spec.get("kind", "mob"),
                    position=Vec3.from_any(spec.get("position", [0, 0, 0])),
                    health=float(spec.get("health", 20.0)),
                    username=spec.get("username"),
                )
            )
        return world

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def add_entity(self, entity: Entity) -> Entity:
        self.entities[entity.id] = entity
        return entity

    def remove_entity(self, entity_id: str) -> None:
        self.entities.pop(entity_id, None)

    def move_entity(self, entity_id: str, position: Vec3) -> None:
        entity = self.entities.get(entity_id)
        if entity is not None:
            entity.position = position

    def spawn_body(
        self,
        agent_id: str,
        position: Vec3,
        health: float = 20.0,
        items: Optional[Iterable[Item]] = None,
    ) -> "SimBody":
        body = SimBody(self, agent_id, position, health=health, items=list(items or []))
        self.bodies[agent_id] = body
        return body

    def despawn_body(self, agent_id: str) -> None:
        self.bodies.pop(agent_id, None)

    def visible_entities(self, exclude: Optional[str] = None) -> List[Entity]:
        """World entities plus other agents seen as players."""
        result = list(self.entities.values())
        for agent_id, body in self.bodies.items():
            if agent_id == exclude:
                continue
            result.append(
                Entity(
                    id=f"agent:{agent_id}",
                    name="player",
                    kind="player",
                    position=body.position,
                    health=body.health,
                    username=agent_id,
                )
            )
        return result

    # ------------------------------------------------------------------
    # Combat
    # ------------------------------------------------------------------

    def strike(self, attacker: "SimBody", entity_id: str) -> bool:
        """Apply one hit from *attacker*. Returns True if the entity was defeated."""
        entity = self.entities.get(entity_id)
        if entity is None:
            return False
        damage = WEAPON_DAMAGE.get(attacker.held_name() or "", 1.0)
        entity.health = max(0.0, entity.health - damage)
        if entity.health <= 0:
            self.remove_entity(entity_id)
            logger.debug("%s defeated %s", attacker.agent_id, entity.name)
            return True
        return False

    def hurt(self, agent_id: str, amount: float) -> None:
        body = self.bodies[agent_id]
        body._health = max(0.0, body._health - amount)

    def requires_level(self, point: Vec3) -> int:
        """Minimum movement profile level needed to reach *point*."""
        levels = [z.level for z in self.blocked if z.contains(point)]
        return max(levels) if levels else 0


class SimBody(BodyBase):
    """One agent's body inside a :class:`SimWorld`."""

    def __init__(
        self,
        world: SimWorld,
        agent_id: str,
        position: Vec3,
        health: float = 20.0,
        max_health: float = 20.0,
        items: Optional[List[Item]] = None,
    ) -> None:
        self.world = world
        self.agent_id = agent_id
        self._position = position
        self._health = health
        self._max_health = max_health
        self._items: List[Item] = items or []
        self._held: Optional[str] = None
        self._offhand: Optional[str] = None
        self.frozen = False
        self.eaten: List[str] = []
        self.equip_calls = 0
        self.strikes = 0

    @property
    def position(self) -> Vec3:
        return self._position

    @position.setter
    def position(self, value: Vec3) -> None:
        self._position = value

    @property
    def health(self) -> float:
        return self._health

    @property
    def max_health(self) -> float:
        return self._max_health

    def nearby_entities(self, center: Vec3, radius: float) -> List[Entity]:
        return [
            e
            for e in self.world.visible_entities(exclude=self.agent_id)
            if e.position.distance_to(center) <= radius
        ]

    def locate_entity(self, ref: str) -> Optional[Entity]:
        wanted = ref.lower()
        for entity in self.world.visible_entities(exclude=self.agent_id):
            if entity.id.lower() == wanted or (entity.username or "").lower() == wanted:
                return entity
        return None

    def items(self) -> List[Item]:
        return list(self._items)

    def held_item(self) -> Optional[str]:
        return self._held

    def held_name(self) -> Optional[str]:
        for item in self._items:
            if item.id == self._held:
                return item.name
        return None

    async def equip(self, item_id: str) -> None:
        if not any(i.id == item_id for i in self._items):
            raise ValueError(f"{self.agent_id} does not carry {item_id}")
        self.equip_calls += 1
        self._held = item_id

    async def attack(self, entity_id: str) -> None:
        self.strikes += 1
        self.world.strike(self, entity_id)

    def offhand_item(self) -> Optional[str]:
        return self._offhand

    async def equip_offhand(self, item_id: str) -> None:
        if not any(i.id == item_id for i in self._items):
            raise ValueError(f"{self.agent_id} does not carry {item_id}")
        self._offhand = item_id

    async def consume(self, item_id: str) -> None:
        for item in self._items:
            if item.id == item_id and item.count > 0:
                break
        else:
            raise ValueError(f"{self.agent_id} does not carry {item_id}")
        item.count -= 1
        if item.count == 0:
            self._items.remove(item)
            if self._held == item_id:
                self._held = None
        self.eaten.append(item_id)
        self._health = min(self._max_health, self._health + _FOOD_HEALING.get(item.name, 2.0))

    async def nudge(self, direction: str, duration_s: float) -> None:
        step = _NUDGE_VECTORS.get(direction, _NUDGE_VECTORS["forward"])
        if not self.frozen:
            self._position = self._position + step.scale(min(duration_s, 1.0))
        await asyncio.sleep(0)


class SimPathfinder(PathfinderBase):
    """Walks simulated bodies in straight lines toward their goals."""

    def __init__(self, world: SimWorld) -> None:
        self.world = world
        self._tokens: Dict[str, int] = {}
        self.requests: List[tuple] = []

    async def request_path(
        self, agent_id: str, goal: GoalSpec, profile: MovementProfile
    ) -> PathOutcome:
        self.requests.append((agent_id, goal, profile))
        token = self._tokens.get(agent_id, 0) + 1
        self._tokens[agent_id] = token

        if self.world.requires_level(goal.destination) > profile.level:
            logger.debug("No path for %s to %s at level %d", agent_id, goal.destination,
                         profile.level)
            return PathOutcome.NO_PATH

        tolerance = goal.tolerance + profile.extra_tolerance
        step = self.world.speed * self.world.step_interval_s
        while True:
            if self._tokens.get(agent_id) != token:
                return PathOutcome.CANCELLED
            body = self.world.bodies.get(agent_id)
            if body is None:
                return PathOutcome.CANCELLED
            remaining = body.position.distance_to(goal.destination)
            if remaining <= tolerance:
                return PathOutcome.REACHED
            if not body.frozen:
                direction = (goal.destination - body.position).normalized()
                body.position = body.position + direction.scale(min(step, remaining))
            await asyncio.sleep(self.world.step_interval_s)

    def cancel(self, agent_id: str) -> None:
        self._tokens[agent_id] = self._tokens.get(agent_id, 0) + 1
