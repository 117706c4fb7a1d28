"""
OpenWarden Fleet -- the explicit context that owns every live agent.

Holds the shared state store, catalog, auth directory and notification
sink, spawns and despawns agents, and runs the shared-state autosave loop.
The router and the CLI are handed a Fleet instead of reaching for
module-level globals.

Usage:
    fleet, world = build_simulated_fleet(load_config("fleet.yaml"))
    await fleet.start()
    ...
    await fleet.stop()
"""

import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from rich.table import Table

from warden.agents.engine import BehaviorEngine
from warden.agents.shared_state import DEFAULT_THREAT_WINDOW_S, SharedStateStore
from warden.catalog import Catalog
from warden.commands.auth import AuthDirectory
from warden.drivers.base import BodyBase, Item, LoggingSink, NotificationSink, PathfinderBase
from warden.drivers.simulation import SimPathfinder, SimWorld
from warden.errors import TargetNotFound
from warden.geometry import Vec3
from warden.persistence import JsonDirectoryPersistence

logger = logging.getLogger("OpenWarden.Fleet")

_STATE_STYLES = {
    "idle": "[dim]idle[/]",
    "moving": "[cyan]moving[/]",
    "guarding": "[green]guarding[/]",
    "patrolling": "[green]patrolling[/]",
    "attacking": "[red]attacking[/]",
    "retreating": "[yellow]retreating[/]",
}


class Fleet:
    """Lifecycle owner for a set of :class:`BehaviorEngine` agents."""

    def __init__(
        self,
        config: Dict[str, Any],
        store: Optional[SharedStateStore] = None,
        catalog: Optional[Catalog] = None,
        sink: Optional[NotificationSink] = None,
        auth: Optional[AuthDirectory] = None,
    ) -> None:
        self.config = config
        window = float(config.get("combat", {}).get("threat_window_s", DEFAULT_THREAT_WINDOW_S))
        self.store = store if store is not None else SharedStateStore(threat_window_s=window)
        self.catalog = catalog or Catalog()
        self.sink: NotificationSink = sink or LoggingSink()
        self.auth = auth or AuthDirectory.from_config(config)
        self.save_interval_s = float(config.get("system", {}).get("save_interval_s", 60.0))
        self._agents: Dict[str, BehaviorEngine] = {}
        self._spawn_times: Dict[str, float] = {}
        # Ids of every live agent; each combat loop treats them as protected
        self._allies: Set[str] = set()
        self._autosave_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self.running = False

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def spawn(
        self,
        agent_id: str,
        kind: str,
        body: BodyBase,
        pathfinder: PathfinderBase,
        whitelist: Optional[List[str]] = None,
    ) -> BehaviorEngine:
        """Create an agent. It starts ticking once :meth:`start` runs (or now, if running).

        Raises:
            ValueError: If *agent_id* is already taken.
        """
        if agent_id.lower() in (a.lower() for a in self._agents):
            raise ValueError(f"Agent '{agent_id}' already exists")
        agent = BehaviorEngine(
            agent_id,
            kind,
            body,
            pathfinder,
            self.store,
            catalog=self.catalog,
            config=self.config,
            sink=self.sink,
            whitelist=whitelist,
        )
        agent.combat.allies = self._allies
        self._allies.add(agent_id.lower())
        self._agents[agent_id] = agent
        self._spawn_times[agent_id] = time.monotonic()
        logger.info(f"Spawned {kind} '{agent_id}' at {body.position}")
        return agent

    async def spawn_running(self, *args: Any, **kwargs: Any) -> BehaviorEngine:
        agent = self.spawn(*args, **kwargs)
        if self.running:
            await agent.start()
        return agent

    async def despawn(self, agent_id: str) -> None:
        """Stop and forget an agent (disconnect)."""
        agent = self.get(agent_id)
        await agent.stop()
        self._agents.pop(agent.id, None)
        self._spawn_times.pop(agent.id, None)
        self._allies.discard(agent.id.lower())
        logger.info(f"Despawned '{agent.id}'")

    def get(self, agent_id: str) -> BehaviorEngine:
        """Look up a live agent by id (case-insensitive).

        Raises:
            TargetNotFound: If no such agent is live.
        """
        agent = self._agents.get(agent_id)
        if agent is not None:
            return agent
        for key, candidate in self._agents.items():
            if key.lower() == agent_id.lower():
                return candidate
        raise TargetNotFound(f"Agent '{agent_id}' not found")

    def agents(self) -> List[BehaviorEngine]:
        return [self._agents[k] for k in sorted(self._agents)]

    def agent_ids(self) -> List[str]:
        return sorted(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Reload shared state, start every agent and the autosave loop."""
        if self.running:
            return
        self.store.load()
        for agent in self.agents():
            await agent.start()
        self.running = True
        self._autosave_task = asyncio.create_task(self._autosave_loop())
        logger.info(f"Fleet started with {len(self)} agent(s)")

    async def stop(self) -> None:
        """Stop agents concurrently, then flush shared state."""
        if self._autosave_task is not None and not self._autosave_task.done():
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
        self._autosave_task = None
        tasks = [agent.stop() for agent in self._agents.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.to_thread(self.store.save)
        self.running = False
        logger.info("All agents stopped")

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.save_interval_s)
            await asyncio.to_thread(self.store.save)

    async def __aenter__(self) -> "Fleet":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def list_status(self) -> List[str]:
        return [agent.status_line() for agent in self.agents()]

    def health_report(self) -> Dict[str, Any]:
        """Return a health dict for every agent plus store state."""
        report: Dict[str, Any] = {agent.id: agent.health() for agent in self.agents()}
        report["_store"] = {"degraded": self.store.degraded}
        return report

    def status_table(self) -> Table:
        """Rich table of every agent's current status."""
        table = Table(title=f"Fleet: {len(self)} Agent(s)", show_header=True)
        table.add_column("Agent", style="bold")
        table.add_column("Kind")
        table.add_column("State")
        table.add_column("Task")
        table.add_column("Position", style="dim")
        table.add_column("Health")
        for agent in self.agents():
            status = agent.status_report()
            task = status["task"]["description"] if status["task"] else "-"
            table.add_row(
                agent.id,
                agent.kind,
                _STATE_STYLES.get(status["state"], status["state"]),
                task,
                str(Vec3.from_any(status["position"])),
                f"{status['health']:g}/{status['max_health']:g}",
            )
        return table


def build_simulated_fleet(
    config: Dict[str, Any],
    sink: Optional[NotificationSink] = None,
    persistence: Any = None,
) -> Tuple[Fleet, SimWorld]:
    """Build a fleet whose agents live in an in-memory :class:`SimWorld`.

    Agents come from the ``agents`` config list::

        agents:
          - id: Guard1
            kind: protector
            position: [0, 64, 0]
            items: [iron_sword, bread]
            whitelist: [Steve]

    Raises:
        ConfigError: If the catalog cannot be loaded.
        CatalogError: If an agent lists an unknown item.
    """
    world = SimWorld.from_config(config)
    pathfinder = SimPathfinder(world)
    catalog = Catalog.from_config(config)

    if persistence is None:
        data_dir = config.get("system", {}).get("data_dir")
        if data_dir:
            persistence = JsonDirectoryPersistence(os.path.expanduser(data_dir))
    window = float(config.get("combat", {}).get("threat_window_s", DEFAULT_THREAT_WINDOW_S))
    store = SharedStateStore(persistence, threat_window_s=window)

    fleet = Fleet(config, store=store, catalog=catalog, sink=sink)
    for entry in config.get("agents") or []:
        agent_id = str(entry["id"])
        items = [
            Item(id=catalog.resolve_name("item", name), name=name)
            for name in entry.get("items") or []
        ]
        body = world.spawn_body(
            agent_id,
            Vec3.from_any(entry.get("position", [0, 64, 0])),
            health=float(entry.get("health", 20.0)),
            items=items,
        )
        fleet.spawn(agent_id, entry.get("kind", "protector"), body, pathfinder,
                    whitelist=entry.get("whitelist"))
    return fleet, world
