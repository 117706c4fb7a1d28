"""Tests for BaseAgent lifecycle and the scheduler tick loop."""

import asyncio

from warden.agents.base import AgentStatus, BaseAgent

# ---------------------------------------------------------------------------
# Minimal concrete implementations used across tests
# ---------------------------------------------------------------------------

FAST = {"system": {"tick_interval_s": 0.01}}


class CountingAgent(BaseAgent):
    name = "counting"

    def __init__(self, config=None):
        super().__init__(config)
        self.calls = 0

    async def tick(self):
        self.calls += 1


class SlowTickAgent(CountingAgent):
    """Each tick outlasts several scheduler intervals."""

    name = "slow"

    async def tick(self):
        self.calls += 1
        await asyncio.sleep(0.05)


class FailingAgent(CountingAgent):
    name = "failing"

    async def tick(self):
        self.calls += 1
        raise RuntimeError("sensor glitch")


# ---------------------------------------------------------------------------
# AgentStatus enum
# ---------------------------------------------------------------------------


class TestAgentStatus:
    def test_all_four_statuses_present(self):
        assert {s.value for s in AgentStatus} == {"idle", "running", "stopped", "error"}


# ---------------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------------


class TestBaseAgentInit:
    def test_default_status_is_idle(self):
        assert CountingAgent().status == AgentStatus.IDLE

    def test_default_tick_interval(self):
        assert CountingAgent().tick_interval_s == 0.5

    def test_tick_interval_from_config(self):
        assert CountingAgent(FAST).tick_interval_s == 0.01

    def test_counters_start_at_zero(self):
        agent = CountingAgent()
        assert agent.ticks_run == 0
        assert agent.ticks_skipped == 0


# ---------------------------------------------------------------------------
# Lifecycle — start / stop
# ---------------------------------------------------------------------------


class TestBaseAgentLifecycle:
    def test_start_sets_running(self):
        async def _test():
            agent = CountingAgent(FAST)
            await agent.start()
            assert agent.status == AgentStatus.RUNNING
            assert agent.running
            await agent.stop()

        asyncio.run(_test())

    def test_stop_sets_stopped(self):
        async def _test():
            agent = CountingAgent(FAST)
            await agent.start()
            await agent.stop()
            assert agent.status == AgentStatus.STOPPED
            assert agent._task is None

        asyncio.run(_test())

    def test_start_is_idempotent(self):
        async def _test():
            agent = CountingAgent(FAST)
            await agent.start()
            first = agent._task
            await agent.start()
            assert agent._task is first
            await agent.stop()

        asyncio.run(_test())

    def test_stop_without_start(self):
        async def _test():
            agent = CountingAgent(FAST)
            await agent.stop()
            assert agent.status == AgentStatus.STOPPED

        asyncio.run(_test())


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TestScheduler:
    def test_ticks_repeatedly(self):
        async def _test():
            agent = CountingAgent(FAST)
            await agent.start()
            await asyncio.sleep(0.1)
            await agent.stop()
            assert agent.calls >= 3
            assert agent.ticks_run == agent.calls

        asyncio.run(_test())

    def test_busy_tick_is_skipped_not_queued(self):
        async def _test():
            agent = SlowTickAgent(FAST)
            await agent.start()
            await asyncio.sleep(0.2)
            await agent.stop()
            assert agent.ticks_skipped > 0
            # One 0.05s tick at a time over 0.2s
            assert agent.calls <= 5

        asyncio.run(_test())

    def test_failing_tick_does_not_stop_loop(self):
        async def _test():
            agent = FailingAgent(FAST)
            await agent.start()
            await asyncio.sleep(0.1)
            assert agent.status == AgentStatus.RUNNING
            await agent.stop()
            assert agent.calls >= 2
            assert agent.ticks_run == 0
            assert "sensor glitch" in agent.health()["errors"][0]

        asyncio.run(_test())

    def test_error_list_is_bounded(self):
        agent = CountingAgent()
        for i in range(80):
            agent._record_error(f"e{i}")
        assert len(agent.health()["errors"]) == 50
        assert agent.health()["errors"][-1] == "e79"


# ---------------------------------------------------------------------------
# health()
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_keys(self):
        report = CountingAgent().health()
        assert set(report) == {"status", "uptime_s", "ticks_run", "ticks_skipped", "errors"}

    def test_uptime_zero_before_start(self):
        assert CountingAgent().health()["uptime_s"] == 0.0
