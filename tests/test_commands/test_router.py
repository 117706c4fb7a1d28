"""Tests for CommandRouter — parsing, authorization, dispatch and broadcast."""

import pytest

from fakes import fast_config, player, wait_for
from warden.agents.tasks import TaskState
from warden.commands.router import CommandResponse, CommandRouter
from warden.drivers.simulation import SimPathfinder, SimWorld
from warden.errors import TargetNotFound
from warden.fleet import Fleet
from warden.geometry import Vec3


@pytest.fixture
def world():
    world = SimWorld(speed=200.0, step_interval_s=0.005)
    world.add_entity(player("Steve", 3))
    return world


@pytest.fixture
def fleet(world):
    fleet = Fleet(fast_config())
    pathfinder = SimPathfinder(world)
    fleet.spawn("Guard1", "protector", world.spawn_body("Guard1", Vec3(0, 0, 0)), pathfinder)
    fleet.spawn("Scout1", "scout", world.spawn_body("Scout1", Vec3(5, 0, 0)), pathfinder)
    return fleet


@pytest.fixture
def router(fleet):
    return CommandRouter(fleet)


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    async def test_not_a_command(self, router):
        response = await router.handle("hello", "Steve", "owner")
        assert not response.ok
        assert response.code == "NOT_A_COMMAND"

    async def test_guest_cannot_guard(self, router, fleet):
        response = await router.handle("#guard Guard1 Steve", "Alex", "guest")
        assert response.code == "UNAUTHORIZED"
        assert response.message == "'guard' requires trusted access (you have guest)"
        assert fleet.get("Guard1").state is TaskState.IDLE
        assert router.commands_routed == 0

    async def test_unknown_verb_guest_is_unauthorized(self, router):
        response = await router.handle("#dance", "Alex", "guest")
        assert response.code == "UNAUTHORIZED"

    async def test_unknown_verb_admin_is_invalid(self, router):
        response = await router.handle("#dance", "Steve", "admin")
        assert response.code == "INVALID_COMMAND"
        assert "#help" in response.message

    async def test_unknown_agent(self, router):
        response = await router.handle("#stop Guard9", "Steve", "owner")
        assert response.code == "TARGET_NOT_FOUND"

    async def test_bad_trust_level(self, router):
        response = await router.handle("#status", "Steve", "emperor")
        assert response.code == "INVALID_COMMAND"

    async def test_kind_restriction(self, router):
        response = await router.handle("#guard Scout1 Steve", "Steve", "owner")
        assert response.code == "INVALID_COMMAND"
        assert "scout" in response.message

    async def test_no_agents_online(self):
        router = CommandRouter(Fleet(fast_config()))
        response = await router.handle("#stop", "Steve", "owner")
        assert response.code == "TARGET_NOT_FOUND"


# ---------------------------------------------------------------------------
# System verbs
# ---------------------------------------------------------------------------


class TestSystemVerbs:
    async def test_list(self, router):
        response = await router.handle("#list", "Alex", "guest")
        assert response.ok
        assert [line.split()[0] for line in response.payload] == ["Guard1", "Scout1"]

    async def test_help_lists_allowed_verbs(self, router):
        response = await router.handle("#help", "Alex", "guest")
        assert response.lines() == ["Commands: #help, #list, #status, #threats"]

    async def test_help_for_verb(self, router):
        response = await router.handle("#help guard", "Alex", "guest")
        assert response.payload == ["#guard [agent] <player | x y z> [radius]"]

    async def test_help_for_unknown_verb(self, router):
        response = await router.handle("#help dance", "Alex", "guest")
        assert response.code == "INVALID_COMMAND"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_targeted_command(self, router, fleet):
        response = await router.handle("#goto guard1 10 0 0", "Steve", "trusted")
        assert response.ok
        assert fleet.get("Guard1").state is TaskState.MOVING
        assert fleet.get("Scout1").state is TaskState.IDLE
        assert router.commands_routed == 1
        await wait_for(lambda: fleet.get("Guard1").state is TaskState.IDLE)
        await fleet.stop()

    async def test_status_payload(self, router):
        response = await router.handle("#status Guard1", "Alex", "guest")
        assert response.payload["state"] == "idle"
        assert "state: idle" in response.lines()

    async def test_broadcast_come(self, router, fleet):
        response = await router.handle("#come", "Steve", "trusted")
        assert response.ok
        assert len(response.payload) == 2
        assert all(a.state is TaskState.MOVING for a in fleet.agents())
        await fleet.stop()

    async def test_broadcast_reports_per_agent_refusal(self, router, fleet):
        response = await router.handle("#guard Steve", "Steve", "owner")
        assert response.ok
        assert response.payload[0].startswith("Guard1: guarding Steve")
        assert response.payload[1] == "Scout1: Scout1 is a scout and cannot guard"
        assert fleet.get("Guard1").state is TaskState.GUARDING
        await fleet.stop()

    async def test_broadcast_stop(self, router, fleet):
        await router.handle("#goto 100 0 0", "Steve", "owner")
        response = await router.handle("#stop", "Steve", "owner")
        assert response.payload == ["Guard1: stopped.", "Scout1: stopped."]
        assert all(a.state is TaskState.IDLE for a in fleet.agents())

    async def test_aggro_alias_sets_aggression(self, router, fleet):
        response = await router.handle("#aggro Guard1 high", "Steve", "trusted")
        assert response.payload == "Guard1: aggression set to high."
        assert fleet.get("Guard1").combat.aggression == "high"
        denied = await router.handle("#aggression Guard1 low", "Alex", "guest")
        assert denied.code == "UNAUTHORIZED"

    async def test_broadcast_status_uses_status_lines(self, router):
        response = await router.handle("#status", "Alex", "guest")
        assert response.payload[0].startswith("Guard1 [protector] idle")

    async def test_broadcast_threats_prefixes_agent(self, router):
        response = await router.handle("#threats", "Alex", "guest")
        assert response.payload == [
            "Guard1: No threats nearby.",
            "Scout1: No threats nearby.",
        ]

    async def test_handler_error(self, router, fleet, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("driver fell over")

        monkeypatch.setattr(fleet.get("Guard1"), "transition", explode)
        response = await router.handle("#stop Guard1", "Steve", "owner")
        assert response.code == "HANDLER_ERROR"
        assert "driver fell over" in response.message

    async def test_handler_error_in_broadcast(self, router, fleet, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("driver fell over")

        monkeypatch.setattr(fleet.get("Guard1"), "transition", explode)
        response = await router.handle("#stop", "Steve", "owner")
        assert response.payload[0] == "Guard1: error (driver fell over)"
        assert response.payload[1] == "Scout1: stopped."


class TestCommandResponse:
    def test_failure_lines(self):
        response = CommandResponse.failure(TargetNotFound("Agent 'x' not found"))
        assert response.lines() == ["Error: Agent 'x' not found"]
        assert response.to_dict()["code"] == "TARGET_NOT_FOUND"

    def test_empty_payload(self):
        assert CommandResponse(ok=True).lines() == []
        assert CommandResponse(ok=True, message="done").lines() == ["done"]
