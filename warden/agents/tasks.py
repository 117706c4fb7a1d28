"""Task state model and the pure per-tick planner.

The engine owns exactly one :class:`CurrentTask` per agent (``None`` means
Idle). Each scheduler tick builds a :class:`TickObservation` and asks
:func:`plan_tick` what to do; the planner never touches the environment, so
every transition rule can be tested with plain values.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from warden.agents.shared_state import ThreatRecord
from warden.geometry import Vec3


class TaskState(Enum):
    IDLE = "idle"
    MOVING = "moving"
    GUARDING = "guarding"
    PATROLLING = "patrolling"
    ATTACKING = "attacking"
    RETREATING = "retreating"


# States that an automatic engagement returns to once it ends
RESUMABLE_STATES = (TaskState.GUARDING, TaskState.PATROLLING)


@dataclass
class GuardTarget:
    """A fixed post (``position``) or a followed entity (``entity_ref``)."""

    position: Optional[Vec3] = None
    entity_ref: Optional[str] = None
    radius: float = 16.0
    last_known: Optional[Vec3] = None

    @property
    def follows_entity(self) -> bool:
        return self.entity_ref is not None

    def center(self) -> Optional[Vec3]:
        """Point threats are measured from, or ``None`` when unknown."""
        return self.position if self.position is not None else self.last_known

    def describe(self) -> str:
        if self.entity_ref is not None:
            return self.entity_ref
        return str(self.position)


@dataclass
class PatrolRoute:
    """Ordered, cyclic list of points. Never finishes on its own."""

    points: List[Vec3]
    check_radius: float = 5.0
    dwell_s: float = 2.0
    index: int = 0
    laps: int = 0

    def current(self) -> Vec3:
        return self.points[self.index]

    def advance(self) -> Vec3:
        """Move to the next point, wrapping to index 0 after the last."""
        self.index = (self.index + 1) % len(self.points)
        if self.index == 0:
            self.laps += 1
        return self.current()


@dataclass
class CurrentTask:
    """What an agent is doing right now.

    ``resume`` holds the guard/patrol task interrupted by an automatic
    engagement; it is restored when the engagement (or the retreat that
    followed it) ends. ``automatic`` marks engagements the tick planner
    started rather than an operator.
    """

    state: TaskState
    description: str
    destination: Optional[Vec3] = None
    tolerance: Optional[float] = None
    guard: Optional[GuardTarget] = None
    patrol: Optional[PatrolRoute] = None
    target_id: Optional[str] = None
    resume: Optional["CurrentTask"] = None
    sender_id: Optional[str] = None
    automatic: bool = False
    started_at: float = field(default_factory=time.time)

    def guard_target(self) -> Optional[GuardTarget]:
        if self.guard is not None:
            return self.guard
        return self.resume.guard if self.resume is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "state": self.state.value,
            "description": self.description,
            "started_at": self.started_at,
        }
        if self.destination is not None:
            data["destination"] = self.destination.to_list()
        if self.guard is not None:
            data["guard"] = self.guard.describe()
        if self.patrol is not None:
            data["patrol"] = {
                "points": [p.to_list() for p in self.patrol.points],
                "index": self.patrol.index,
                "laps": self.patrol.laps,
            }
        if self.target_id is not None:
            data["target_id"] = self.target_id
        if self.resume is not None:
            data["resume"] = self.resume.state.value
        if self.automatic:
            data["automatic"] = True
        return data


@dataclass
class Thresholds:
    """Tunables the planner needs, lifted from the merged agent config."""

    retreat_fraction: float = 0.35
    passive_defense: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Thresholds":
        return cls(
            retreat_fraction=float(config.get("retreat", {}).get("health_fraction", 0.35)),
            passive_defense=bool(config.get("combat", {}).get("passive_defense", True)),
        )


@dataclass
class TickObservation:
    """Snapshot of the agent taken at the start of a tick."""

    health: float
    max_health: float
    position: Vec3
    threat: Optional[ThreatRecord] = None

    @property
    def health_fraction(self) -> float:
        return self.health / self.max_health if self.max_health > 0 else 0.0


class TickAction(Enum):
    HOLD = "hold"
    ENGAGE = "engage"
    RETREAT = "retreat"


@dataclass
class TickDecision:
    action: TickAction
    target_id: Optional[str] = None
    reason: str = ""


HOLD = TickDecision(TickAction.HOLD)


def plan_tick(
    task: Optional[CurrentTask], obs: TickObservation, thresholds: Thresholds
) -> TickDecision:
    """Decide the transition (if any) for one tick.

    * Attacking with health below the retreat fraction → retreat, regardless
      of what was commanded.
    * Guarding or patrolling with a visible threat → engage it.
    * Idle with passive defense enabled and a threat close by → engage it.
    * A wounded agent never starts a new engagement.
    """
    state = task.state if task is not None else TaskState.IDLE
    low_health = obs.health_fraction < thresholds.retreat_fraction

    if state is TaskState.ATTACKING:
        if low_health:
            return TickDecision(
                TickAction.RETREAT,
                reason=f"health {obs.health:.0f}/{obs.max_health:.0f} below retreat threshold",
            )
        return HOLD

    if state in (TaskState.MOVING, TaskState.RETREATING):
        return HOLD
    if obs.threat is None or low_health:
        return HOLD
    if state is TaskState.IDLE and not thresholds.passive_defense:
        return HOLD

    return TickDecision(
        TickAction.ENGAGE,
        target_id=obs.threat.entity_ref,
        reason=f"{obs.threat.name} at {obs.threat.distance:.1f}",
    )
