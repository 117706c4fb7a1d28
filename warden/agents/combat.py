"""Threat & combat loop — scan, prioritise, engage, disengage.

Rules applied when scanning (in order):

1. **Validity** — defeated entities are ignored.
2. **Classification** — only entities the :class:`ThreatClassifier` calls
   hostile are threats. Players count only at ``high`` aggression.
3. **Whitelist** — entities whose id, type name or username is on the
   agent's whitelist, and the identity currently being guarded, are skipped.
4. **Ordering** — candidates are sorted by distance from the *scan center*,
   not from the agent, so a guard protecting a remote point prioritises
   threats to that point.

Every mob sighting is written to the shared store so other agents can react to
it; threats reported by other agents inside the scan radius are merged in.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from warden.agents.inventory import Inventory
from warden.agents.navigator import NavigationController
from warden.agents.shared_state import SharedStateStore, ThreatRecord
from warden.drivers.base import BodyBase, Entity
from warden.geometry import Vec3

logger = logging.getLogger("OpenWarden.Agents.Combat")

HOSTILE = "hostile"
NEUTRAL = "neutral"

HOSTILE_MOBS: Set[str] = {
    "zombie",
    "zombie_villager",
    "husk",
    "drowned",
    "skeleton",
    "stray",
    "creeper",
    "spider",
    "cave_spider",
    "enderman",
    "witch",
    "slime",
    "magma_cube",
    "blaze",
    "ghast",
    "silverfish",
    "endermite",
    "guardian",
    "elder_guardian",
    "wither_skeleton",
    "shulker",
    "vex",
    "evoker",
    "ravager",
    "hoglin",
    "piglin_brute",
    "phantom",
    "pillager",
    "vindicator",
}

NEUTRAL_MOBS: Set[str] = {
    "cow",
    "pig",
    "sheep",
    "chicken",
    "wolf",
    "iron_golem",
    "villager",
    "zombified_piglin",
}


#: ``low`` never defends while idle, ``medium`` fights hostile mobs,
#: ``high`` also fights players who are neither whitelisted nor guarded.
AGGRESSION_LEVELS = ("low", "medium", "high")
DEFAULT_AGGRESSION = "medium"


class ThreatClassifier:
    """Static, config-extendable hostility rules.

    Names match exactly (case-insensitive), so ``zombie_horse`` is not a
    zombie. Extra names come from ``combat.hostile`` / ``combat.neutral``.
    """

    def __init__(
        self,
        hostile: Optional[Iterable[str]] = None,
        neutral: Optional[Iterable[str]] = None,
    ) -> None:
        self.hostile: Set[str] = set(HOSTILE_MOBS) | {h.lower() for h in (hostile or [])}
        self.neutral: Set[str] = set(NEUTRAL_MOBS) | {n.lower() for n in (neutral or [])}

    @classmethod
    def from_config(cls, combat: Dict[str, Any]) -> "ThreatClassifier":
        return cls(combat.get("hostile") or [], combat.get("neutral") or [])

    def classify(self, entity: Entity) -> Optional[str]:
        """Return ``"hostile"``, ``"neutral"`` or ``None`` (unknown / player)."""
        if entity.kind == "player":
            return None
        name = entity.name.lower()
        if name in self.neutral:
            return NEUTRAL
        if name in self.hostile:
            return HOSTILE
        return None


class EngagementOutcome(Enum):
    DEFEATED = "defeated"
    LOST = "lost"
    TIMEOUT = "timeout"
    LOW_HEALTH = "low_health"
    CANCELLED = "cancelled"


@dataclass
class EngagementResult:
    """How one :meth:`CombatLoop.engage` call ended."""

    outcome: EngagementOutcome
    target_id: str
    strikes: int
    elapsed_s: float
    last_target_position: Optional[Vec3] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "target_id": self.target_id,
            "strikes": self.strikes,
            "elapsed_s": self.elapsed_s,
        }


class CombatLoop:
    """Per-agent scanner and melee engagement driver.

    Args:
        agent_id:   Owning agent.
        body:       Perception/actuation handle.
        navigator:  Used to close distance on a target.
        inventory:  Weapon selection.
        store:      Shared state store (threat reports); may be ``None``.
        classifier: Hostility rules.
        config:     Merged agent config (``combat`` and ``retreat`` sections).
        whitelist:  Live set of protected identifiers (shared with the engine).
    """

    def __init__(
        self,
        agent_id: str,
        body: BodyBase,
        navigator: NavigationController,
        inventory: Inventory,
        store: Optional[SharedStateStore],
        classifier: Optional[ThreatClassifier] = None,
        config: Optional[Dict[str, Any]] = None,
        whitelist: Optional[Set[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        cfg = config or {}
        combat = cfg.get("combat", {})
        self.agent_id = agent_id
        self.body = body
        self.navigator = navigator
        self.inventory = inventory
        self.store = store
        self.classifier = classifier or ThreatClassifier.from_config(combat)
        self.whitelist: Set[str] = whitelist if whitelist is not None else set()
        # Fellow fleet agents; never targeted at any aggression level
        self.allies: Set[str] = set()
        self.guarded_identity: Optional[str] = None
        self.aggression = DEFAULT_AGGRESSION
        self.set_aggression(str(combat.get("aggression", DEFAULT_AGGRESSION)))
        self.scan_radius = float(combat.get("scan_radius", 16.0))
        self.melee_range = float(combat.get("melee_range", 3.0))
        self.strike_interval_s = float(combat.get("strike_interval_s", 0.5))
        self.engagement_timeout_s = float(combat.get("engagement_timeout_s", 30.0))
        self.max_chase_distance = float(combat.get("max_chase_distance", 32.0))
        self.retreat_fraction = float(cfg.get("retreat", {}).get("health_fraction", 0.35))
        self._clock = clock
        self._generation = 0
        self.engaged_target: Optional[str] = None
        self.last_result: Optional[EngagementResult] = None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def set_aggression(self, level: str) -> str:
        """Switch aggression level.

        Raises:
            ValueError: If *level* is not low, medium or high.
        """
        level = level.lower()
        if level not in AGGRESSION_LEVELS:
            raise ValueError(f"Invalid aggression level '{level}'; use low, medium or high")
        if level != self.aggression:
            logger.info("%s aggression set to %s", self.agent_id, level)
        self.aggression = level
        return level

    def is_hostile(self, entity: Entity) -> bool:
        if entity.kind == "player":
            return self.aggression == "high"
        return self.classifier.classify(entity) == HOSTILE

    def _protected(self) -> Set[str]:
        protected = {w.lower() for w in self.whitelist}
        protected.update(a.lower() for a in self.allies)
        if self.guarded_identity:
            protected.add(self.guarded_identity.lower())
        return protected

    def is_protected(self, entity: Entity) -> bool:
        """True when *entity* must never be attacked automatically."""
        protected = self._protected()
        return any(ident in protected for ident in entity.identities())

    def scan(self, center: Vec3, radius: Optional[float] = None) -> List[ThreatRecord]:
        """Hostile, non-protected entities near *center*, nearest to *center* first."""
        radius = self.scan_radius if radius is None else radius
        found: Dict[str, ThreatRecord] = {}
        for entity in self.body.nearby_entities(center, radius):
            if not entity.is_valid or self.is_protected(entity):
                continue
            if not self.is_hostile(entity):
                continue
            record = ThreatRecord(
                entity_ref=entity.id,
                name=entity.name,
                position=entity.position,
                classification=HOSTILE,
                reported_by=self.agent_id,
            )
            # Player hostility is this agent's own policy, so only mobs are shared
            if self.store is not None and entity.kind != "player":
                self.store.record_threat(record)
            record.distance = entity.position.distance_to(center)
            found[entity.id] = record

        if self.store is not None:
            protected = self._protected()
            for shared in self.store.threats_near(center, radius):
                if shared.entity_ref in found:
                    continue
                if shared.entity_ref.lower() in protected or shared.name.lower() in protected:
                    continue
                found[shared.entity_ref] = shared

        return sorted(found.values(), key=lambda r: r.distance)

    def select_target(self, threats: List[ThreatRecord]) -> Optional[ThreatRecord]:
        """First threat in *threats* that this agent can currently see."""
        for record in threats:
            entity = self.body.locate_entity(record.entity_ref)
            if entity is not None and entity.is_valid:
                return record
        return None

    def below_retreat_threshold(self) -> bool:
        max_health = self.body.max_health
        return max_health > 0 and self.body.health < self.retreat_fraction * max_health

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    async def engage(self, target_id: str) -> EngagementResult:
        """Fight *target_id* until it is gone, out of reach, or time runs out.

        Does not consult the whitelist; callers decide who may be attacked.
        """
        self._generation += 1
        gen = self._generation
        self.engaged_target = target_id
        start = self._clock()
        deadline = start + self.engagement_timeout_s
        strikes = 0
        last_pos: Optional[Vec3] = None
        outcome = EngagementOutcome.TIMEOUT

        try:
            weapon = await self.inventory.equip_best_weapon()
            if weapon is None:
                logger.info("%s has no weapon, fighting bare-handed", self.agent_id)
            while True:
                if gen != self._generation:
                    outcome = EngagementOutcome.CANCELLED
                    break
                if self.below_retreat_threshold():
                    outcome = EngagementOutcome.LOW_HEALTH
                    break
                if self._clock() >= deadline:
                    outcome = EngagementOutcome.TIMEOUT
                    break
                target = self.body.locate_entity(target_id)
                if target is None or not target.is_valid:
                    outcome = EngagementOutcome.DEFEATED if strikes else EngagementOutcome.LOST
                    break
                last_pos = target.position
                distance = self.body.position.distance_to(target.position)
                if distance > self.max_chase_distance:
                    outcome = EngagementOutcome.LOST
                    break
                if distance <= self.melee_range:
                    # Re-check the weapon every swing; no-op when already held
                    await self.inventory.equip_best_weapon()
                    await self.body.attack(target.id)
                    strikes += 1
                else:
                    self.navigator.steer_toward(target.position, max(1.0, self.melee_range - 1.0))
                await asyncio.sleep(self.strike_interval_s)
        finally:
            if gen == self._generation:
                self.engaged_target = None
                self.navigator.cancel()

        if outcome is EngagementOutcome.DEFEATED and self.store is not None:
            self.store.remove_threat(target_id)
        result = EngagementResult(
            outcome=outcome,
            target_id=target_id,
            strikes=strikes,
            elapsed_s=round(self._clock() - start, 3),
            last_target_position=last_pos,
        )
        self.last_result = result
        logger.info(
            "%s engagement with %s ended: %s (%d strike(s))",
            self.agent_id, target_id, outcome.value, strikes,
        )
        return result

    def disengage(self) -> None:
        """Stop the current engagement, if any. Always safe to call."""
        self._generation += 1
        if self.engaged_target is not None:
            logger.debug("%s disengaging from %s", self.agent_id, self.engaged_target)
            self.engaged_target = None
            self.navigator.cancel()
