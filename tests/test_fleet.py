"""Tests for Fleet membership, lifecycle and the simulated fleet builder."""

import asyncio
import threading

import pytest

from fakes import FakeBody, ScriptedPathfinder, fast_config, wait_for
from warden.agents.base import AgentStatus
from warden.agents.shared_state import SharedStateStore
from warden.agents.tasks import TaskState
from warden.errors import CatalogError, TargetNotFound
from warden.fleet import Fleet, build_simulated_fleet
from warden.geometry import Vec3
from warden.persistence import JsonDirectoryPersistence, MemoryPersistence


def config_with_agents(**overrides):
    base = {
        "agents": [
            {"id": "Guard1", "kind": "protector", "position": [0, 64, 0],
             "items": ["iron_sword", "bread"], "whitelist": ["Steve"]},
            {"id": "Scout1", "kind": "scout", "position": [10, 64, 0]},
        ],
        "world": {
            "speed": 200.0,
            "step_interval_s": 0.005,
            "entities": [{"id": "z1", "name": "zombie", "position": [40, 64, 40]}],
        },
    }
    base.update(overrides)
    return fast_config(base)


class ThreadRecordingPersistence(MemoryPersistence):
    def __init__(self):
        super().__init__()
        self.save_threads = set()

    def save_snapshot(self, category, data):
        self.save_threads.add(threading.get_ident())
        super().save_snapshot(category, data)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


class TestMembership:
    def test_spawn_and_get(self):
        fleet = Fleet(fast_config())
        agent = fleet.spawn("Guard1", "protector", FakeBody("Guard1"), ScriptedPathfinder())
        assert fleet.get("guard1") is agent
        assert fleet.agent_ids() == ["Guard1"]
        assert len(fleet) == 1
        assert agent.store is fleet.store

    def test_duplicate_id_rejected(self):
        fleet = Fleet(fast_config())
        fleet.spawn("Guard1", "protector", FakeBody(), ScriptedPathfinder())
        with pytest.raises(ValueError):
            fleet.spawn("GUARD1", "scout", FakeBody(), ScriptedPathfinder())

    def test_get_unknown(self):
        with pytest.raises(TargetNotFound):
            Fleet(fast_config()).get("Ghost")

    def test_agents_sorted(self):
        fleet = Fleet(fast_config())
        for name in ("b", "a", "c"):
            fleet.spawn(name, "protector", FakeBody(name), ScriptedPathfinder())
        assert [a.id for a in fleet.agents()] == ["a", "b", "c"]

    async def test_despawn(self):
        fleet = Fleet(fast_config())
        fleet.spawn("Guard1", "protector", FakeBody(), ScriptedPathfinder())
        await fleet.despawn("guard1")
        assert len(fleet) == 0
        with pytest.raises(TargetNotFound):
            await fleet.despawn("Guard1")

    async def test_agents_are_allies(self):
        fleet = Fleet(fast_config())
        a = fleet.spawn("Guard1", "protector", FakeBody("Guard1"), ScriptedPathfinder())
        b = fleet.spawn("Guard2", "protector", FakeBody("Guard2"), ScriptedPathfinder())
        assert a.combat.allies == {"guard1", "guard2"}
        assert b.combat.allies is a.combat.allies
        await fleet.despawn("Guard2")
        assert a.combat.allies == {"guard1"}

    async def test_aggressive_agents_never_target_each_other(self):
        config = config_with_agents(
            agents=[
                {"id": "Guard1", "position": [0, 64, 0]},
                {"id": "Guard2", "position": [3, 64, 0]},
            ],
            world={"speed": 200.0, "step_interval_s": 0.005},
            combat={"aggression": "high"},
        )
        fleet, _ = build_simulated_fleet(config, persistence=MemoryPersistence())
        guard = fleet.get("Guard1")
        await guard.tick()
        assert guard.state is TaskState.IDLE
        await fleet.stop()

    async def test_spawn_running_starts_agent(self):
        fleet = Fleet(fast_config())
        await fleet.start()
        agent = await fleet.spawn_running("Guard1", "protector", FakeBody(), ScriptedPathfinder())
        assert agent.status is AgentStatus.RUNNING
        await fleet.stop()
        assert agent.status is AgentStatus.STOPPED


# ---------------------------------------------------------------------------
# Lifecycle and persistence
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_start_loads_and_stop_saves(self):
        backend = MemoryPersistence()
        backend.save_snapshot("positions", {"home": {"value": [1, 2, 3], "position": [1, 2, 3],
                                                     "updated_at": 0.0}})
        fleet = Fleet(fast_config(), store=SharedStateStore(backend))
        fleet.spawn("Guard1", "protector", FakeBody(), ScriptedPathfinder())
        async with fleet:
            assert fleet.running
            assert fleet.store.get_position("home") == Vec3(1, 2, 3)
            assert fleet.get("Guard1").running
            fleet.store.set_position("gate", Vec3(0, 0, 9))
        assert not fleet.running
        assert "gate" in backend.snapshots["positions"]
        assert fleet.get("Guard1").status is AgentStatus.STOPPED

    async def test_autosave(self):
        backend = MemoryPersistence()
        fleet = Fleet(fast_config(), store=SharedStateStore(backend))
        await fleet.start()
        fleet.store.set_position("gate", Vec3(0, 0, 9))
        await wait_for(lambda: "gate" in backend.snapshots.get("positions", {}))
        await fleet.stop()

    async def test_saves_run_off_the_event_loop_thread(self):
        backend = ThreadRecordingPersistence()
        fleet = Fleet(fast_config(), store=SharedStateStore(backend))
        await fleet.start()
        await wait_for(lambda: backend.save_threads)
        await fleet.stop()
        assert threading.get_ident() not in backend.save_threads

    async def test_start_is_idempotent(self):
        fleet = Fleet(fast_config())
        await fleet.start()
        first = fleet._autosave_task
        await fleet.start()
        assert fleet._autosave_task is first
        await fleet.stop()

    async def test_agents_tick_while_running(self):
        fleet = Fleet(fast_config())
        agent = fleet.spawn("Guard1", "protector", FakeBody(), ScriptedPathfinder())
        await fleet.start()
        await wait_for(lambda: agent.ticks_run >= 3)
        report = fleet.health_report()
        assert report["Guard1"]["status"] == "running"
        assert report["Guard1"]["state"] == "idle"
        assert report["_store"] == {"degraded": True}
        await fleet.stop()


# ---------------------------------------------------------------------------
# Simulated fleet builder
# ---------------------------------------------------------------------------


class TestBuildSimulatedFleet:
    def test_agents_from_config(self):
        fleet, world = build_simulated_fleet(config_with_agents(), persistence=MemoryPersistence())
        assert fleet.agent_ids() == ["Guard1", "Scout1"]
        guard = fleet.get("Guard1")
        assert guard.kind == "protector"
        assert guard.position == Vec3(0, 64, 0)
        assert [i.id for i in guard.body.items()] == ["minecraft:iron_sword", "minecraft:bread"]
        assert guard.whitelist == {"steve"}
        assert "z1" in world.entities
        assert set(world.bodies) == {"Guard1", "Scout1"}

    def test_unknown_item(self):
        config = config_with_agents(agents=[{"id": "G", "items": ["lightsaber"]}])
        with pytest.raises(CatalogError):
            build_simulated_fleet(config, persistence=MemoryPersistence())

    def test_data_dir_selects_json_persistence(self, tmp_path):
        config = config_with_agents()
        config["system"]["data_dir"] = str(tmp_path / "data")
        fleet, _ = build_simulated_fleet(config)
        assert isinstance(fleet.store._persistence, JsonDirectoryPersistence)
        assert fleet.store._persistence.directory == tmp_path / "data"

    def test_no_data_dir_is_memory_only(self):
        fleet, _ = build_simulated_fleet(config_with_agents())
        assert fleet.store.degraded

    def test_status_table(self):
        fleet, _ = build_simulated_fleet(config_with_agents(), persistence=MemoryPersistence())
        table = fleet.status_table()
        assert table.row_count == 2
        assert [c.header for c in table.columns][:3] == ["Agent", "Kind", "State"]

    def test_list_status(self):
        fleet, _ = build_simulated_fleet(config_with_agents(), persistence=MemoryPersistence())
        assert fleet.list_status()[1].startswith("Scout1 [scout] idle")

    async def test_agents_see_each_other(self):
        fleet, _ = build_simulated_fleet(config_with_agents(), persistence=MemoryPersistence())
        guard = fleet.get("Guard1")
        await guard.transition("goto", ["Scout1"])
        assert guard.current_task.destination == Vec3(10, 64, 0)
        await wait_for(lambda: guard.position.distance_to(Vec3(10, 64, 0)) <= 1.0)
        await fleet.stop()
