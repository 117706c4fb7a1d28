"""OpenWarden agent behavior engine.

Provides the BaseAgent contract, the shared state store, and the
capabilities every agent composes:

    NavigationController — supervised pathfinding (stuck recovery, retry, deadlines)
    CombatLoop           — threat scan, target selection, melee engagement
    Inventory            — weapon ranking and equip
    BehaviorEngine       — the per-agent task state machine

Quick-start::

    from warden.agents import BehaviorEngine, SharedStateStore

    store = SharedStateStore()
    agent = BehaviorEngine("Guard1", "protector", body, pathfinder, store)
    await agent.start()
    await agent.transition("goto", ["10", "64", "0"], sender_id="Steve")
"""

from .base import AgentStatus, BaseAgent
from .combat import CombatLoop, EngagementOutcome, EngagementResult, ThreatClassifier
from .engine import AGENT_VERBS, BehaviorEngine
from .inventory import WEAPON_RANKING, Inventory
from .navigator import (
    NavigationController,
    NavigationGoal,
    NavOutcome,
    NavResult,
    RetryPolicy,
    StuckDetector,
)
from .shared_state import SharedStateStore, TaskRecord, ThreatRecord
from .tasks import (
    CurrentTask,
    GuardTarget,
    PatrolRoute,
    TaskState,
    TickAction,
    TickDecision,
    TickObservation,
    plan_tick,
)

__all__ = [
    "AGENT_VERBS",
    "AgentStatus",
    "BaseAgent",
    "BehaviorEngine",
    "CombatLoop",
    "CurrentTask",
    "EngagementOutcome",
    "EngagementResult",
    "GuardTarget",
    "Inventory",
    "NavOutcome",
    "NavResult",
    "NavigationController",
    "NavigationGoal",
    "PatrolRoute",
    "RetryPolicy",
    "SharedStateStore",
    "StuckDetector",
    "TaskRecord",
    "TaskState",
    "ThreatClassifier",
    "ThreatRecord",
    "TickAction",
    "TickDecision",
    "TickObservation",
    "WEAPON_RANKING",
    "plan_tick",
]
