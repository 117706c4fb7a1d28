"""BaseAgent ABC — lifecycle and scheduler tick for every fleet agent.

Defines start/stop, the periodic :meth:`BaseAgent.tick` contract and the
health-reporting shape shared by all OpenWarden agents.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional


class AgentStatus(Enum):
    """Lifecycle states for a BaseAgent."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class BaseAgent(ABC):
    """Abstract base for all OpenWarden agents.

    Subclasses implement :meth:`tick`, which the background loop calls
    every ``system.tick_interval_s`` seconds. A tick that is still running
    when the next one is due makes the scheduler skip that slot; skipped
    slots are counted in :attr:`ticks_skipped`.

    An exception raised by :meth:`tick` is recorded and logged but never
    stops the loop.

    Example::

        class Sentry(BaseAgent):
            async def tick(self):
                self._logger.info("still here")
    """

    #: Agent name, overridden per instance by subclasses.
    name: str = "base"

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        self.config: Dict[str, Any] = config or {}
        self.status: AgentStatus = AgentStatus.IDLE
        self.tick_interval_s: float = float(
            self.config.get("system", {}).get("tick_interval_s", 0.5)
        )
        self.ticks_run = 0
        self.ticks_skipped = 0
        self._start_time: Optional[float] = None
        self._errors: List[str] = []
        self._task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._tick_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._stop_event: asyncio.Event = asyncio.Event()
        self._logger = logging.getLogger(f"OpenWarden.Agents.{self.name}")

    async def start(self) -> None:
        """Begin the agent's scheduler loop.

        Idempotent — calling start on a RUNNING agent is a no-op.
        """
        if self.status == AgentStatus.RUNNING:
            return
        self.status = AgentStatus.RUNNING
        self._start_time = time.monotonic()
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self._logger.info(f"Agent '{self.name}' started")

    async def stop(self) -> None:
        """Gracefully shut down the scheduler loop and any in-flight tick."""
        self._stop_event.set()
        for task in (self._task, self._tick_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._tick_task = None
        self.status = AgentStatus.STOPPED
        self._logger.info(f"Agent '{self.name}' stopped")

    @property
    def running(self) -> bool:
        return self.status == AgentStatus.RUNNING

    async def _run_loop(self) -> None:
        """Fire :meth:`tick` on a fixed cadence, skipping busy slots."""
        try:
            while not self._stop_event.is_set():
                if self._tick_task is not None and not self._tick_task.done():
                    self.ticks_skipped += 1
                    self._logger.debug(f"Tick skipped for '{self.name}' (previous tick busy)")
                else:
                    self._tick_task = asyncio.create_task(self._guarded_tick())
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_interval_s)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            pass

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
            self.ticks_run += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._record_error(f"tick failed: {exc}")

    @abstractmethod
    async def tick(self) -> None:
        """One scheduler step. Must not block for long."""
        ...

    def health(self) -> Dict[str, Any]:
        """Return a snapshot of agent health.

        Returns:
            Dict with keys:
            - ``status``: current status string
            - ``uptime_s``: seconds since start (0.0 if never started)
            - ``ticks_run`` / ``ticks_skipped``: scheduler counters
            - ``errors``: list of error message strings
        """
        uptime = (time.monotonic() - self._start_time) if self._start_time is not None else 0.0
        return {
            "status": self.status.value,
            "uptime_s": round(uptime, 2),
            "ticks_run": self.ticks_run,
            "ticks_skipped": self.ticks_skipped,
            "errors": list(self._errors),
        }

    def _record_error(self, msg: str) -> None:
        """Record an error message without stopping the loop."""
        self._errors.append(msg)
        del self._errors[:-50]
        self._logger.error(msg)
