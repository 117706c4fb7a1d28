"""Tests for the task model and the pure tick planner."""

import pytest

from warden.agents.shared_state import ThreatRecord
from warden.agents.tasks import (
    HOLD,
    CurrentTask,
    GuardTarget,
    PatrolRoute,
    TaskState,
    Thresholds,
    TickAction,
    TickObservation,
    plan_tick,
)
from warden.geometry import Vec3

ZOMBIE = ThreatRecord("z1", "zombie", Vec3(3, 0, 0), distance=3.0)


def obs(health=20.0, threat=None):
    return TickObservation(health=health, max_health=20.0, position=Vec3(0, 0, 0), threat=threat)


def task(state):
    return CurrentTask(state=state, description=state.value)


# ---------------------------------------------------------------------------
# plan_tick
# ---------------------------------------------------------------------------


class TestPlanTick:
    def test_idle_without_threat_holds(self):
        assert plan_tick(None, obs(), Thresholds()) == HOLD

    def test_idle_with_passive_defense_engages(self):
        decision = plan_tick(None, obs(threat=ZOMBIE), Thresholds(passive_defense=True))
        assert decision.action is TickAction.ENGAGE
        assert decision.target_id == "z1"

    def test_idle_without_passive_defense_holds(self):
        assert plan_tick(None, obs(threat=ZOMBIE), Thresholds(passive_defense=False)) == HOLD

    @pytest.mark.parametrize("state", [TaskState.GUARDING, TaskState.PATROLLING])
    def test_guard_and_patrol_engage_threats(self, state):
        decision = plan_tick(task(state), obs(threat=ZOMBIE), Thresholds(passive_defense=False))
        assert decision.action is TickAction.ENGAGE

    @pytest.mark.parametrize("state", [TaskState.MOVING, TaskState.RETREATING])
    def test_moving_and_retreating_ignore_threats(self, state):
        assert plan_tick(task(state), obs(threat=ZOMBIE), Thresholds()) == HOLD

    def test_attacking_low_health_retreats(self):
        decision = plan_tick(task(TaskState.ATTACKING), obs(health=5.0), Thresholds(retreat_fraction=0.35))
        assert decision.action is TickAction.RETREAT
        assert "below retreat threshold" in decision.reason

    def test_attacking_healthy_holds(self):
        assert plan_tick(task(TaskState.ATTACKING), obs(threat=ZOMBIE), Thresholds()) == HOLD

    def test_wounded_agent_does_not_start_engagement(self):
        assert plan_tick(task(TaskState.GUARDING), obs(health=2.0, threat=ZOMBIE), Thresholds()) == HOLD

    def test_threshold_is_strict(self):
        at_threshold = obs(health=7.0)
        decision = plan_tick(task(TaskState.ATTACKING), at_threshold, Thresholds(retreat_fraction=0.35))
        assert decision == HOLD


class TestThresholds:
    def test_from_config(self):
        t = Thresholds.from_config({"retreat": {"health_fraction": 0.5}, "combat": {"passive_defense": False}})
        assert t.retreat_fraction == 0.5
        assert t.passive_defense is False

    def test_defaults(self):
        assert Thresholds.from_config({}) == Thresholds()

    def test_zero_max_health(self):
        assert TickObservation(5, 0, Vec3(0, 0, 0)).health_fraction == 0.0


# ---------------------------------------------------------------------------
# Task model
# ---------------------------------------------------------------------------


class TestPatrolRoute:
    def test_advance_wraps_and_counts_laps(self):
        route = PatrolRoute([Vec3(0, 0, 0), Vec3(10, 0, 0), Vec3(10, 0, 10)])
        visited = [route.current()]
        for _ in range(3):
            visited.append(route.advance())
        assert visited == [Vec3(0, 0, 0), Vec3(10, 0, 0), Vec3(10, 0, 10), Vec3(0, 0, 0)]
        assert route.index == 0
        assert route.laps == 1


class TestGuardTarget:
    def test_fixed_post(self):
        guard = GuardTarget(position=Vec3(1, 2, 3))
        assert not guard.follows_entity
        assert guard.center() == Vec3(1, 2, 3)

    def test_entity_center_is_last_known(self):
        guard = GuardTarget(entity_ref="Steve")
        assert guard.follows_entity
        assert guard.center() is None
        guard.last_known = Vec3(5, 0, 0)
        assert guard.center() == Vec3(5, 0, 0)
        assert guard.describe() == "Steve"


class TestCurrentTask:
    def test_guard_target_through_resume(self):
        guarding = CurrentTask(TaskState.GUARDING, "guard", guard=GuardTarget(position=Vec3(0, 0, 0)))
        attacking = CurrentTask(TaskState.ATTACKING, "attack", target_id="z1", resume=guarding)
        assert attacking.guard_target() is guarding.guard
        assert task(TaskState.MOVING).guard_target() is None

    def test_to_dict(self):
        route = PatrolRoute([Vec3(0, 0, 0), Vec3(1, 0, 0)])
        patrolling = CurrentTask(TaskState.PATROLLING, "patrol", patrol=route)
        data = CurrentTask(TaskState.ATTACKING, "attack", target_id="z1", resume=patrolling).to_dict()
        assert data["state"] == "attacking"
        assert data["target_id"] == "z1"
        assert data["resume"] == "patrolling"
        assert patrolling.to_dict()["patrol"]["points"] == [[0, 0, 0], [1, 0, 0]]
        assert "automatic" not in data

    def test_automatic_flag_in_dict(self):
        engaging = CurrentTask(TaskState.ATTACKING, "engaging z1", target_id="z1", automatic=True)
        assert engaging.to_dict()["automatic"] is True
