"""BehaviorEngine — one agent's task state machine.

Owns ``current_task`` (``None`` means Idle) and serializes every behavior
request into a single behavior task:

* Commands arrive through :meth:`BehaviorEngine.transition`. Any behavior
  verb cancels and awaits the running behavior (clearing the navigation
  goal and ending any engagement) before the new one starts, so an agent
  never runs two behaviors at once.
* The scheduler calls :meth:`BehaviorEngine.tick`, which observes the agent,
  asks the pure :func:`~warden.agents.tasks.plan_tick` planner what to do,
  and applies the answer (start an engagement, force a retreat).
* Navigation failures and lost ordered attacks end the behavior in Idle
  with a reported error. An automatic engagement that loses its target
  quietly resumes the guard or patrol it interrupted.

Capabilities are composed, not inherited: the engine holds a
:class:`NavigationController`, an :class:`Inventory` and a
:class:`CombatLoop`, all injected around the same body.
"""

import asyncio
import contextlib
import logging
import random
import time
from typing import Any, Dict, Iterable, List, Optional, Set

from warden.agents.base import BaseAgent
from warden.agents.combat import CombatLoop, EngagementOutcome, ThreatClassifier
from warden.agents.inventory import TOTEM, Inventory
from warden.agents.navigator import NavigationController, NavOutcome
from warden.agents.shared_state import SharedStateStore
from warden.agents.tasks import (
    RESUMABLE_STATES,
    CurrentTask,
    GuardTarget,
    PatrolRoute,
    TaskState,
    Thresholds,
    TickAction,
    TickDecision,
    TickObservation,
    plan_tick,
)
from warden.catalog import Catalog
from warden.commands.parsing import USAGE, parse_goto_args, parse_guard_args, parse_patrol_args
from warden.config import DEFAULT_CONFIG, kind_settings
from warden.drivers.base import BodyBase, LoggingSink, NotificationSink, PathfinderBase
from warden.errors import EngagementLost, InvalidCommand, NavigationFailed, TargetNotFound, WardenError
from warden.geometry import Vec3, nearest, parse_points

logger = logging.getLogger("OpenWarden.Agents.Engine")

#: Verbs an agent handles itself (``help`` and ``list`` belong to the router).
AGENT_VERBS = (
    "status",
    "threats",
    "stop",
    "goto",
    "come",
    "guard",
    "patrol",
    "attack",
    "mark",
    "whitelist",
    "aggression",
)

# Verbs every kind accepts, whatever its template lists
_ALWAYS_ALLOWED = {"status", "stop"}

_UNSET = object()


class BehaviorEngine(BaseAgent):
    """Task state machine for one agent.

    Args:
        agent_id:   Unique agent name.
        kind:       Behavioral profile (a key under ``kinds`` in the config).
        body:       Perception/actuation handle.
        pathfinder: External path search capability.
        store:      Shared state store.
        catalog:    Name → id catalog.
        config:     Fleet config (merged with the kind template here).
        sink:       Where status notifications go.
        whitelist:  Identifiers this agent never attacks automatically.
        rng:        Random source for unstick maneuvers.
    """

    def __init__(
        self,
        agent_id: str,
        kind: str,
        body: BodyBase,
        pathfinder: PathfinderBase,
        store: SharedStateStore,
        catalog: Optional[Catalog] = None,
        config: Optional[Dict[str, Any]] = None,
        sink: Optional[NotificationSink] = None,
        whitelist: Optional[Iterable[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.name = agent_id
        settings = kind_settings(config or DEFAULT_CONFIG, kind)
        super().__init__(settings)
        self.id = agent_id
        self.kind = kind
        self.body = body
        self.store = store
        self.catalog = catalog or Catalog()
        self.sink: NotificationSink = sink or LoggingSink()
        self.verbs: Set[str] = set(settings.get("verbs") or AGENT_VERBS) | _ALWAYS_ALLOWED
        self.whitelist: Set[str] = {w.lower() for w in (whitelist or [])}

        self.navigator = NavigationController(agent_id, body, pathfinder, settings["navigation"], rng)
        self.inventory = Inventory(body, self.catalog)
        self.combat = CombatLoop(
            agent_id,
            body,
            self.navigator,
            self.inventory,
            store,
            ThreatClassifier.from_config(settings["combat"]),
            settings,
            self.whitelist,
        )
        self.thresholds = Thresholds.from_config(settings)

        combat = settings["combat"]
        self.scan_interval_s = float(combat.get("scan_interval_s", 2.0))
        self.scan_radius = float(combat.get("scan_radius", 16.0))
        self.passive_radius = float(combat.get("passive_radius", 6.0))
        self.guard_cfg: Dict[str, Any] = settings["guard"]
        self.patrol_cfg: Dict[str, Any] = settings["patrol"]
        self.retreat_cfg: Dict[str, Any] = settings["retreat"]

        self.current_task: Optional[CurrentTask] = None
        self.last_error: Optional[str] = None
        self._behavior: Optional[asyncio.Task] = None  # type: ignore[type-arg]
        self._switch_lock = asyncio.Lock()
        self._last_scan = float("-inf")
        self._pending_scan: Optional[tuple] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> TaskState:
        return self.current_task.state if self.current_task is not None else TaskState.IDLE

    @property
    def position(self) -> Vec3:
        return self.body.position

    @property
    def health_points(self) -> float:
        return self.body.health

    @property
    def active_goal(self):
        return self.navigator.active_goal

    def status_report(self) -> Dict[str, Any]:
        """Structured status for ``status`` / ``list``."""
        goal = self.active_goal
        return {
            "id": self.id,
            "kind": self.kind,
            "state": self.state.value,
            "task": self.current_task.to_dict() if self.current_task else None,
            "position": self.position.rounded().to_list(),
            "health": round(self.body.health, 1),
            "max_health": self.body.max_health,
            "active_goal": goal.to_dict() if goal is not None else None,
            "engaged_target": self.combat.engaged_target,
            "whitelist": sorted(self.whitelist),
            "aggression": self.combat.aggression,
            "last_error": self.last_error,
            "ticks_skipped": self.ticks_skipped,
        }

    def status_line(self) -> str:
        task = self.current_task.description if self.current_task else "idle"
        return (
            f"{self.id} [{self.kind}] {self.state.value}: {task} "
            f"@ {self.position.rounded()} hp {self.body.health:.0f}/{self.body.max_health:.0f}"
        )

    def notify(self, message: str) -> None:
        try:
            self.sink.deliver(self.id, message)
        except Exception as exc:
            self._logger.warning("Notification failed: %s", exc)

    # ------------------------------------------------------------------
    # Transition API
    # ------------------------------------------------------------------

    async def transition(self, verb: str, args: Optional[List[str]] = None, sender_id: Optional[str] = None) -> Any:
        """Apply a command verb to this agent.

        Returns the response payload (a string, list of strings or dict).

        Raises:
            InvalidCommand: Unknown verb, bad arguments, or a verb this
                agent's kind does not support.
            TargetNotFound: A named place, player or entity is not known.
        """
        verb = verb.lower()
        args = list(args or [])
        if verb not in AGENT_VERBS:
            raise InvalidCommand(f"Unknown command '{verb}'")
        if verb not in self.verbs:
            raise InvalidCommand(f"{self.id} is a {self.kind} and cannot {verb}")

        if verb == "status":
            return self.status_report()
        if verb == "threats":
            return self._threat_lines()
        if verb == "stop":
            await self._switch(None)
            self._logger.info("%s stopped by %s", self.id, sender_id)
            return f"{self.id}: stopped."
        if verb in ("goto", "come"):
            return await self._start_goto(verb, args, sender_id)
        if verb == "guard":
            return await self._start_guard(args, sender_id)
        if verb == "patrol":
            return await self._start_patrol(args, sender_id)
        if verb == "attack":
            return await self._start_attack(args, sender_id)
        if verb == "mark":
            return self._mark(args)
        if verb == "aggression":
            return self._set_aggression(args)
        return self._edit_whitelist(args)

    async def _start_goto(self, verb: str, args: List[str], sender_id: Optional[str]) -> str:
        dest = parse_goto_args(args)
        if dest.is_sender:
            if not sender_id:
                raise InvalidCommand(f"Usage: {USAGE[verb]}")
            point = self._locate_point(sender_id)
        elif dest.point is not None:
            point = dest.point
        else:
            point = self._locate_point(dest.ref)
        task = CurrentTask(
            TaskState.MOVING,
            f"moving to {point}",
            destination=point,
            tolerance=self.navigator.default_tolerance,
            sender_id=sender_id,
        )
        await self._switch(task)
        return f"{self.id}: on my way to {point}."

    async def _start_guard(self, args: List[str], sender_id: Optional[str]) -> str:
        position, entity_ref, radius = parse_guard_args(args, float(self.guard_cfg.get("radius", 16.0)))
        if entity_ref is not None:
            guard = GuardTarget(entity_ref=entity_ref, radius=radius)
            reply = f"{self.id}: guarding {entity_ref}."
            if self.body.locate_entity(entity_ref) is None:
                reply = f"{self.id}: guarding {entity_ref} (waiting until they are in sight)."
        else:
            guard = GuardTarget(position=position, radius=radius)
            reply = f"{self.id}: guarding {position} (radius {radius:g})."
        task = CurrentTask(
            TaskState.GUARDING, f"guarding {guard.describe()}", guard=guard, sender_id=sender_id
        )
        await self._switch(task)
        return reply

    async def _start_patrol(self, args: List[str], sender_id: Optional[str]) -> str:
        points, radius = parse_patrol_args(
            args, float(self.patrol_cfg.get("check_radius", 5.0)), named=self.store.get_position
        )
        route = PatrolRoute(points, check_radius=radius, dwell_s=float(self.patrol_cfg.get("dwell_s", 2.0)))
        task = CurrentTask(
            TaskState.PATROLLING,
            f"patrolling {len(points)} points",
            patrol=route,
            sender_id=sender_id,
        )
        await self._switch(task)
        return f"{self.id}: patrolling {len(points)} points."

    async def _start_attack(self, args: List[str], sender_id: Optional[str]) -> str:
        if not args:
            raise InvalidCommand(f"Usage: {USAGE['attack']}")
        ref = " ".join(args)
        entity = self.body.locate_entity(ref)
        if entity is None:
            entity = self._nearest_named(ref)
        if entity is None or not entity.is_valid:
            raise TargetNotFound(f"{self.id} cannot see '{ref}'")
        task = CurrentTask(
            TaskState.ATTACKING,
            f"attacking {entity.display_name}",
            target_id=entity.id,
            sender_id=sender_id,
        )
        await self._switch(task)
        return f"{self.id}: attacking {entity.display_name}."

    def _nearest_named(self, name: str):
        """Nearest visible entity whose type name is *name* (catalog-checked)."""
        wanted = name.lower()
        if self.catalog.try_resolve("entity", wanted) is None:
            return None
        candidates = [
            e for e in self.body.nearby_entities(self.position, self.scan_radius * 2)
            if e.name.lower() == wanted and e.is_valid
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda e: e.position.distance_to(self.position))

    def _locate_point(self, ref: Optional[str]) -> Vec3:
        """Resolve a named place or a visible entity to a point."""
        if ref is None:
            raise TargetNotFound("Nothing to go to")
        place = self.store.get_position(ref)
        if place is not None:
            return place
        entity = self.body.locate_entity(ref)
        if entity is not None:
            return entity.position
        raise TargetNotFound(f"{self.id} does not know where '{ref}' is")

    def _mark(self, args: List[str]) -> str:
        if not args:
            raise InvalidCommand(f"Usage: {USAGE['mark']}")
        name = args[0]
        if len(args) > 1:
            try:
                points = parse_points(args[1:])
            except ValueError as exc:
                raise InvalidCommand(f"{exc}. Usage: {USAGE['mark']}") from exc
            if len(points) != 1:
                raise InvalidCommand(f"Usage: {USAGE['mark']}")
            point = points[0]
        else:
            point = self.position.rounded()
        self.store.set_position(name, point)
        return f"Marked '{name.lower()}' at {point}."

    def _edit_whitelist(self, args: List[str]) -> Any:
        action = args[0].lower() if args else "list"
        if action == "list":
            return sorted(self.whitelist)
        if action not in ("add", "remove") or len(args) < 2:
            raise InvalidCommand(f"Usage: {USAGE['whitelist']}")
        name = args[1].lower()
        if action == "add":
            self.whitelist.add(name)
            return f"{self.id}: will not attack '{name}'."
        self.whitelist.discard(name)
        return f"{self.id}: removed '{name}' from whitelist."

    def _set_aggression(self, args: List[str]) -> str:
        if not args:
            return f"{self.id}: aggression is {self.combat.aggression}."
        if len(args) != 1:
            raise InvalidCommand(f"Usage: {USAGE['aggression']}")
        try:
            level = self.combat.set_aggression(args[0])
        except ValueError as exc:
            raise InvalidCommand(f"{exc}. Usage: {USAGE['aggression']}") from exc
        return f"{self.id}: aggression set to {level}."

    def _threat_lines(self) -> List[str]:
        records = self.store.threats_near(self.position, self.scan_radius * 2)
        if not records:
            return ["No threats nearby."]
        return [
            f"{r.name} ({r.entity_ref}) at {r.position.rounded()}, {r.distance:.0f} blocks"
            for r in records
        ]

    # ------------------------------------------------------------------
    # Behavior task slot
    # ------------------------------------------------------------------

    async def _switch(self, task: Optional[CurrentTask], expected: Any = _UNSET) -> bool:
        """Cancel the running behavior and install *task* (``None`` = Idle).

        With *expected*, the switch only happens while ``current_task`` is
        still that task; returns False otherwise.
        """
        async with self._switch_lock:
            if expected is not _UNSET and self.current_task is not expected:
                return False
            await self._cancel_behavior()
            self._install(task)
            return True

    async def _cancel_behavior(self) -> None:
        behavior = self._behavior
        self._behavior = None
        self.combat.disengage()
        self.navigator.cancel()
        if behavior is None or behavior.done() or behavior is asyncio.current_task():
            return
        behavior.cancel()
        try:
            await behavior
        except asyncio.CancelledError:
            pass

    def _install(self, task: Optional[CurrentTask]) -> None:
        previous = self.state
        self.current_task = task
        guard = task.guard_target() if task is not None else None
        self.combat.guarded_identity = guard.entity_ref if guard is not None else None
        if task is None:
            self._behavior = None
        else:
            self._behavior = asyncio.create_task(self._drive(task), name=f"{self.id}:{task.state.value}")
        if previous is not self.state:
            self._logger.info("%s: %s -> %s", self.id, previous.value, self.state.value)

    async def _drive(self, task: CurrentTask) -> None:
        """Run one behavior; resolve errors to a safe transition."""
        runners = {
            TaskState.MOVING: self._run_goto,
            TaskState.GUARDING: self._run_guard,
            TaskState.PATROLLING: self._run_patrol,
            TaskState.ATTACKING: self._run_attack,
            TaskState.RETREATING: self._run_retreat,
        }
        try:
            await runners[task.state](task)
        except asyncio.CancelledError:
            raise
        except WardenError as exc:
            self._fail(task, exc.message)
            await self._switch(None, expected=task)
            return
        except Exception as exc:
            self._record_error(f"{task.state.value} behavior crashed: {exc}")
            self._fail(task, str(exc))
            await self._switch(None, expected=task)
            return
        if self.current_task is task:
            await self._switch(None, expected=task)

    def _fail(self, task: CurrentTask, message: str) -> None:
        self.last_error = message
        self._logger.warning("%s: %s failed: %s", self.id, task.description, message)
        self.notify(f"Could not finish {task.description}: {message}")

    # ------------------------------------------------------------------
    # Behaviors
    # ------------------------------------------------------------------

    async def _run_goto(self, task: CurrentTask) -> None:
        result = await self.navigator.go_to(task.destination, task.tolerance)
        if result.outcome is NavOutcome.CANCELLED:
            return
        result.raise_for_outcome()
        self.last_error = None
        self.notify(f"Arrived at {task.destination}.")
        await self._switch(None, expected=task)

    async def _run_guard(self, task: CurrentTask) -> None:
        guard = task.guard
        interval = float(self.guard_cfg.get("search_interval_s", 1.0))
        if not guard.follows_entity:
            if not await self._reach(guard.position):
                return
            self.notify(f"Guarding {guard.position}.")
            hold = max(2.0, float(self.guard_cfg.get("follow_distance", 3.0)))
            while True:
                await asyncio.sleep(interval)
                if self.position.distance_to(guard.position) > hold:
                    if not await self._reach(guard.position):
                        return

        distance = float(self.guard_cfg.get("follow_distance", 3.0))
        waiting = False
        while True:
            entity = self.body.locate_entity(guard.entity_ref)
            if entity is None or not entity.is_valid:
                if not waiting:
                    self._logger.info("%s: waiting for %s to appear", self.id, guard.entity_ref)
                    waiting = True
                await asyncio.sleep(interval)
                continue
            if waiting:
                self.notify(f"Found {guard.entity_ref}, guarding.")
                waiting = False
            guard.last_known = entity.position
            stream = self.navigator.follow_entity(guard.entity_ref, distance)
            async with contextlib.aclosing(stream):
                async for pos in stream:
                    guard.last_known = pos
            await asyncio.sleep(interval)

    async def _reach(self, point: Vec3) -> bool:
        """Go to *point*. False when superseded; raises on navigation failure."""
        result = await self.navigator.go_to(point)
        if result.outcome is NavOutcome.CANCELLED:
            return False
        result.raise_for_outcome()
        return True

    async def _run_patrol(self, task: CurrentTask) -> None:
        route = task.patrol
        failures = 0
        while True:
            point = route.current()
            result = await self.navigator.go_to(point)
            if result.outcome is NavOutcome.CANCELLED:
                return
            if result.ok:
                failures = 0
                self._pending_scan = (point, route.check_radius)
                await asyncio.sleep(route.dwell_s)
            else:
                failures += 1
                self._logger.warning(
                    "%s: skipping patrol point %d %s (%s)",
                    self.id, route.index, point, result.outcome.value,
                )
                if failures >= len(route.points):
                    raise NavigationFailed(
                        result.outcome.value, "no patrol point is reachable"
                    )
            route.advance()

    async def _run_attack(self, task: CurrentTask) -> None:
        result = await self.combat.engage(task.target_id)
        if result.outcome is EngagementOutcome.CANCELLED:
            return
        if result.outcome is EngagementOutcome.LOW_HEALTH:
            await self._switch(self._retreat_task(task, result.last_target_position), expected=task)
            return
        if result.outcome is EngagementOutcome.DEFEATED:
            self.notify(f"Defeated {task.target_id}.")
        elif not task.automatic:
            raise EngagementLost(f"engagement with {task.target_id} ended: {result.outcome.value}")
        else:
            self._logger.debug("%s: %s %s, resuming", self.id, task.target_id, result.outcome.value)
        await self._switch(task.resume, expected=task)

    async def _run_retreat(self, task: CurrentTask) -> None:
        self.notify(f"Health low ({self.body.health:.0f}), retreating to {task.destination}.")
        food = await self.inventory.eat_food()
        if food is not None:
            self.notify(f"Ate {food.name}.")
        await self.inventory.equip_offhand(TOTEM)
        result = await self.navigator.go_to(task.destination, tolerance=2.0)
        if result.outcome is NavOutcome.CANCELLED:
            return
        result.raise_for_outcome()
        self.notify("Reached safety.")
        await self._switch(task.resume, expected=task)

    def _retreat_task(self, from_task: CurrentTask, threat_position: Optional[Vec3]) -> CurrentTask:
        return CurrentTask(
            TaskState.RETREATING,
            "retreating",
            destination=self._retreat_point(threat_position),
            resume=from_task.resume,
            sender_id=from_task.sender_id,
        )

    def _retreat_point(self, threat_position: Optional[Vec3]) -> Vec3:
        """Nearest configured safe zone, else a point away from the threat."""
        zones = []
        for zone in self.retreat_cfg.get("safe_zones") or []:
            if isinstance(zone, str):
                place = self.store.get_position(zone)
                if place is not None:
                    zones.append(place)
            else:
                zones.append(Vec3.from_any(zone))
        best = nearest(self.position, zones)
        if best is not None:
            return best
        flee = float(self.retreat_cfg.get("flee_distance", 20.0))
        away = (self.position - threat_position) if threat_position is not None else Vec3(1, 0, 0)
        away = Vec3(away.x, 0.0, away.z).normalized()
        if away.length() == 0:
            away = Vec3(1.0, 0.0, 0.0)
        return self.position + away.scale(flee)

    # ------------------------------------------------------------------
    # Scheduler tick
    # ------------------------------------------------------------------

    def _scan_focus(self, task: Optional[CurrentTask]):
        """``(center, radius)`` to scan this tick, or ``None``."""
        if task is None:
            if not self.thresholds.passive_defense or self.combat.aggression == "low":
                return None
            return self.position, self.passive_radius
        if task.state is TaskState.GUARDING:
            center = task.guard.center() or self.position
            return center, task.guard.radius
        if task.state is TaskState.PATROLLING:
            return self.position, self.scan_radius
        return None

    def observe(self, task: Optional[CurrentTask]) -> TickObservation:
        """Build this tick's observation, scanning when one is due."""
        threat = None
        focus = self._scan_focus(task)
        now = time.monotonic()
        if focus is not None and (self._pending_scan or now - self._last_scan >= self.scan_interval_s):
            if self._pending_scan is not None and task is not None and task.state is TaskState.PATROLLING:
                focus = self._pending_scan
            self._pending_scan = None
            self._last_scan = now
            threat = self.combat.select_target(self.combat.scan(*focus))
        return TickObservation(
            health=self.body.health,
            max_health=self.body.max_health,
            position=self.position,
            threat=threat,
        )

    async def tick(self) -> None:
        task = self.current_task
        decision = plan_tick(task, self.observe(task), self.thresholds)
        await self.apply(decision, task)

    async def apply(self, decision: TickDecision, task: Optional[CurrentTask]) -> None:
        if decision.action is TickAction.RETREAT:
            threat_pos = None
            if task is not None and task.target_id:
                target = self.body.locate_entity(task.target_id)
                threat_pos = target.position if target is not None else None
            if await self._switch(self._retreat_task(task, threat_pos), expected=task):
                self._logger.warning("%s: forced retreat (%s)", self.id, decision.reason)
        elif decision.action is TickAction.ENGAGE:
            resume = task if task is not None and task.state in RESUMABLE_STATES else None
            engagement = CurrentTask(
                TaskState.ATTACKING,
                f"engaging {decision.target_id}",
                target_id=decision.target_id,
                resume=resume,
                automatic=True,
            )
            if await self._switch(engagement, expected=task):
                self._logger.info("%s: engaging %s (%s)", self.id, decision.target_id, decision.reason)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the scheduler, cancel the behavior and release the navigator."""
        await super().stop()
        await self._switch(None)
        await self.navigator.close()

    def health(self) -> Dict[str, Any]:
        report = super().health()
        report["state"] = self.state.value
        return report
