"""NavigationController — supervised path-following for one agent.

Wraps the external :class:`~warden.drivers.base.PathfinderBase` with the
three responsibilities the pathfinder does not provide:

1. **Stuck detection** — samples the agent position every
   ``sample_interval_s``; after ``stuck_samples`` consecutive samples with
   displacement below ``stuck_epsilon`` it runs a short randomised unstick
   maneuver and re-issues the same goal.
2. **Escalating retry** — on ``NO_PATH`` (or a per-attempt timeout) it
   retries up to ``retry.max_attempts`` with progressively more permissive
   :class:`~warden.drivers.base.MovementProfile` values.
3. **Deadline enforcement** — an absolute deadline across all attempts;
   crossing it cancels the in-flight request and returns ``TIMEOUT``.

At most one goal is live per agent. Starting a goal cancels the previous
one, and every request carries a ``(generation, sequence)`` token so a
cancelled request that completes late is discarded instead of clobbering
the newer goal.
"""

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Set, Tuple

from warden.drivers.base import BodyBase, GoalSpec, MovementProfile, PathfinderBase, PathOutcome
from warden.errors import NavigationFailed
from warden.geometry import Vec3

logger = logging.getLogger("OpenWarden.Agents.Navigator")

UNSTICK_DIRECTIONS = ("forward", "back", "left", "right")

# A moving target must drift this far before a follow/pursuit goal is re-issued
REPATH_DISTANCE = 2.0


class NavOutcome(Enum):
    """Terminal result of :meth:`NavigationController.go_to`."""

    SUCCESS = "success"
    NO_PATH = "no_path"
    TIMEOUT = "timeout"
    STUCK_EXCEEDED = "stuck_exceeded"
    CANCELLED = "cancelled"


class _Attempt(Enum):
    REACHED = "reached"
    NO_PATH = "no_path"
    ATTEMPT_TIMEOUT = "attempt_timeout"
    DEADLINE = "deadline"
    STUCK = "stuck"
    CANCELLED = "cancelled"


@dataclass
class NavigationGoal:
    """The single live navigation target of an agent.

    Attributes:
        destination: Target point (for follow goals, the last known target position).
        follow_entity_id: Entity being followed, or ``None`` for point goals.
        tolerance: Arrival radius in blocks.
        retry_count: Index of the current attempt (0 = first try).
        deadline: Absolute ``time.monotonic()`` deadline.
        generation: Controller generation that owns this goal.
        supervised: False for fire-and-forget pursuit goals.
    """

    destination: Optional[Vec3]
    follow_entity_id: Optional[str]
    tolerance: float
    retry_count: int
    deadline: float
    generation: int
    supervised: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination.to_list() if self.destination else None,
            "follow_entity_id": self.follow_entity_id,
            "tolerance": self.tolerance,
            "retry_count": self.retry_count,
        }


@dataclass
class NavResult:
    """Outcome of one :meth:`NavigationController.go_to` call."""

    outcome: NavOutcome
    attempts: int
    elapsed_s: float
    position: Vec3
    stuck_recoveries: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is NavOutcome.SUCCESS

    def raise_for_outcome(self) -> None:
        """Raise :class:`NavigationFailed` for failed (not cancelled) outcomes."""
        if self.outcome in (NavOutcome.SUCCESS, NavOutcome.CANCELLED):
            return
        raise NavigationFailed(
            self.outcome.value,
            f"Navigation failed ({self.outcome.value}) after {self.attempts} attempt(s)",
        )


@dataclass
class RetryPolicy:
    """How failed attempts escalate.

    Attempt ``n`` (0-based) widens the arrival radius by ``n * tolerance_step``
    and unlocks digging from attempt 1 and parkour from attempt 2.
    """

    max_attempts: int = 3
    attempt_timeout_s: float = 20.0
    tolerance_step: float = 1.0
    backoff_s: float = 0.5

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "RetryPolicy":
        cfg = cfg or {}
        return cls(
            max_attempts=max(1, int(cfg.get("max_attempts", 3))),
            attempt_timeout_s=float(cfg.get("attempt_timeout_s", 20.0)),
            tolerance_step=float(cfg.get("tolerance_step", 1.0)),
            backoff_s=float(cfg.get("backoff_s", 0.5)),
        )

    def profile_for(self, attempt: int) -> MovementProfile:
        return MovementProfile(
            extra_tolerance=attempt * self.tolerance_step,
            allow_dig=attempt >= 1,
            allow_parkour=attempt >= 2,
            max_drop=3 + attempt,
            level=attempt,
        )

    def backoff_for(self, attempt: int) -> float:
        return self.backoff_s * attempt


class StuckDetector:
    """Counts consecutive near-zero displacements between position samples.

    The first sample only sets the baseline, so a fresh detector can never
    report stuck before ``samples_required`` further samples.
    """

    def __init__(self, epsilon: float = 0.05, samples_required: int = 8) -> None:
        self.epsilon = epsilon
        self.samples_required = max(1, samples_required)
        self._last: Optional[Vec3] = None
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def reset(self) -> None:
        self._last = None
        self._count = 0

    def sample(self, position: Vec3) -> bool:
        """Record a position. Returns True once the agent is considered stuck."""
        if self._last is None:
            self._last = position
            return False
        moved = position.distance_to(self._last)
        self._last = position
        if moved < self.epsilon:
            self._count += 1
        else:
            self._count = 0
        return self._count >= self.samples_required


class NavigationController:
    """Per-agent supervisor around the external pathfinder.

    Configuration keys (``navigation`` section, all optional):

    * ``default_tolerance`` — arrival radius when none is given (default ``1.0``).
    * ``default_timeout_s`` — deadline offset when none is given (default ``60``).
    * ``sample_interval_s`` — supervision cadence (default ``0.25``).
    * ``stuck_epsilon`` / ``stuck_samples`` — stuck detection thresholds.
    * ``max_stuck_recoveries`` — unstick maneuvers per goal before giving up.
    * ``retry`` — :class:`RetryPolicy` fields.

    Example::

        nav = NavigationController("Guard1", body, pathfinder, config["navigation"])
        result = await nav.go_to(Vec3(10, 64, 0), tolerance=1.0)
        if not result.ok:
            print(result.outcome)
    """

    def __init__(
        self,
        agent_id: str,
        body: BodyBase,
        pathfinder: PathfinderBase,
        config: Optional[Dict[str, Any]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        cfg = config or {}
        self.agent_id = agent_id
        self.body = body
        self.pathfinder = pathfinder
        self.policy = RetryPolicy.from_config(cfg.get("retry"))
        self.default_tolerance: float = float(cfg.get("default_tolerance", 1.0))
        self.default_timeout_s: float = float(cfg.get("default_timeout_s", 60.0))
        self.sample_interval_s: float = float(cfg.get("sample_interval_s", 0.25))
        self.max_stuck_recoveries: int = int(cfg.get("max_stuck_recoveries", 3))
        self.unstick_duration_s: float = float(cfg.get("unstick_duration_s", 1.0))
        self._stuck = StuckDetector(
            float(cfg.get("stuck_epsilon", 0.05)), int(cfg.get("stuck_samples", 8))
        )
        self._rng = rng or random.Random()

        self._generation = 0
        self._seq = 0
        self._goal: Optional[NavigationGoal] = None
        self._request: Optional[asyncio.Future] = None
        self._request_token: Optional[Tuple[int, int]] = None
        self._orphans: Set[asyncio.Future] = set()

        self.last_result: Optional[NavResult] = None
        self.last_follow_end: Optional[str] = None
        self.stale_results_discarded = 0
        self.total_recoveries = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_goal(self) -> Optional[NavigationGoal]:
        return self._goal

    @property
    def generation(self) -> int:
        return self._generation

    def _within(self, destination: Vec3, tolerance: float) -> bool:
        return self.body.position.distance_to(destination) <= tolerance

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Drop the live goal (if any). Takes effect before the next sample.

        Idempotent; always safe to call.
        """
        self._generation += 1
        had_goal = self._goal is not None
        self._goal = None
        self._abandon_request()
        if had_goal:
            logger.debug("%s: navigation goal cancelled (gen %d)", self.agent_id, self._generation)

    async def close(self) -> None:
        """Cancel the goal and any orphaned pathfinder requests."""
        self.cancel()
        orphans = list(self._orphans)
        for task in orphans:
            task.cancel()
        if orphans:
            await asyncio.gather(*orphans, return_exceptions=True)
        self._orphans.clear()

    def _abandon_request(self) -> None:
        task = self._request
        self._request = None
        self._request_token = None
        if task is None:
            return
        self.pathfinder.cancel(self.agent_id)
        if not task.done():
            self._orphans.add(task)

    # ------------------------------------------------------------------
    # Pathfinder requests
    # ------------------------------------------------------------------

    def _launch(self, spec: GoalSpec, profile: MovementProfile) -> asyncio.Future:
        self._seq += 1
        token = (self._generation, self._seq)
        task = asyncio.ensure_future(self.pathfinder.request_path(self.agent_id, spec, profile))
        task.add_done_callback(lambda t, token=token: self._on_request_done(token, t))
        self._request = task
        self._request_token = token
        return task

    def _on_request_done(self, token: Tuple[int, int], task: asyncio.Future) -> None:
        self._orphans.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error("%s: pathfinder request failed: %s", self.agent_id, exc)
        if token != self._request_token:
            if not task.cancelled():
                self.stale_results_discarded += 1
                logger.debug("%s: discarded stale pathfinder result %s", self.agent_id, token)
            return
        goal = self._goal
        if goal is not None and not goal.supervised and goal.follow_entity_id is None:
            # Fire-and-forget pursuit finished on its own
            self._goal = None
            self._request = None
            self._request_token = None

    @staticmethod
    def _outcome_of(task: asyncio.Future) -> PathOutcome:
        if task.cancelled() or task.exception() is not None:
            return PathOutcome.NO_PATH
        result = task.result()
        return result if isinstance(result, PathOutcome) else PathOutcome.NO_PATH

    # ------------------------------------------------------------------
    # goTo
    # ------------------------------------------------------------------

    async def go_to(
        self,
        destination: Vec3,
        tolerance: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> NavResult:
        """Drive the agent to *destination* under supervision.

        Args:
            destination: Target point.
            tolerance: Arrival radius (default ``default_tolerance``).
            deadline: Absolute ``time.monotonic()`` deadline
                (default now + ``default_timeout_s``).

        Returns:
            :class:`NavResult`; ``outcome`` is SUCCESS, NO_PATH, TIMEOUT,
            STUCK_EXCEEDED or CANCELLED (superseded by another goal).
        """
        self.cancel()
        gen = self._generation
        tolerance = self.default_tolerance if tolerance is None else float(tolerance)
        start = time.monotonic()
        if deadline is None:
            deadline = start + self.default_timeout_s
        goal = NavigationGoal(destination, None, tolerance, 0, deadline, gen)
        self._goal = goal

        attempts = 0
        recoveries = 0
        found_no_path = False
        outcome = NavOutcome.NO_PATH
        try:
            while True:
                if self._generation != gen:
                    outcome = NavOutcome.CANCELLED
                    break
                if self._within(destination, tolerance):
                    outcome = NavOutcome.SUCCESS
                    break
                if time.monotonic() >= deadline:
                    outcome = NavOutcome.TIMEOUT
                    break
                if attempts >= self.policy.max_attempts:
                    # TIMEOUT when every attempt timed out without a no-path answer
                    outcome = NavOutcome.NO_PATH if found_no_path else NavOutcome.TIMEOUT
                    break

                profile = self.policy.profile_for(attempts)
                goal.retry_count = attempts
                attempts += 1
                attempt_deadline = min(deadline, time.monotonic() + self.policy.attempt_timeout_s)
                result = await self._run_attempt(
                    gen, GoalSpec(destination, tolerance), profile, attempt_deadline, deadline
                )

                if result is _Attempt.REACHED:
                    outcome = NavOutcome.SUCCESS
                    break
                if result is _Attempt.CANCELLED:
                    outcome = NavOutcome.CANCELLED
                    break
                if result is _Attempt.DEADLINE:
                    outcome = NavOutcome.TIMEOUT
                    break
                if result is _Attempt.STUCK:
                    recoveries += 1
                    if recoveries > self.max_stuck_recoveries:
                        outcome = NavOutcome.STUCK_EXCEEDED
                        break
                    await self._recover(deadline)
                    # Re-issue the same goal; stuck recovery does not use up a retry
                    attempts -= 1
                    continue

                # NO_PATH or per-attempt timeout: escalate
                if result is _Attempt.NO_PATH:
                    found_no_path = True
                logger.info(
                    "%s: attempt %d/%d to %s failed (%s)",
                    self.agent_id, attempts, self.policy.max_attempts, destination, result.value,
                )
                if attempts < self.policy.max_attempts:
                    pause = min(self.policy.backoff_for(attempts), max(0.0, deadline - time.monotonic()))
                    if pause > 0:
                        await asyncio.sleep(pause)
        finally:
            if self._generation == gen:
                self._goal = None
                self._abandon_request()

        result = NavResult(
            outcome=outcome,
            attempts=attempts,
            elapsed_s=round(time.monotonic() - start, 3),
            position=self.body.position,
            stuck_recoveries=recoveries,
        )
        self.last_result = result
        if outcome is NavOutcome.SUCCESS:
            logger.debug("%s reached %s", self.agent_id, destination)
        elif outcome is not NavOutcome.CANCELLED:
            logger.warning("%s could not reach %s: %s", self.agent_id, destination, outcome.value)
        return result

    async def _run_attempt(
        self,
        gen: int,
        spec: GoalSpec,
        profile: MovementProfile,
        attempt_deadline: float,
        deadline: float,
    ) -> _Attempt:
        task = self._launch(spec, profile)
        self._stuck.reset()
        self._stuck.sample(self.body.position)
        try:
            while True:
                wait_s = max(0.0, min(self.sample_interval_s, deadline - time.monotonic()))
                done, _ = await asyncio.wait({task}, timeout=wait_s)
                if self._generation != gen:
                    return _Attempt.CANCELLED
                if task in done:
                    self._request = None
                    if self._outcome_of(task) is PathOutcome.REACHED:
                        return _Attempt.REACHED
                    return _Attempt.NO_PATH

                now = time.monotonic()
                if now >= deadline:
                    self._abandon_request()
                    return _Attempt.DEADLINE
                if now >= attempt_deadline:
                    self._abandon_request()
                    return _Attempt.ATTEMPT_TIMEOUT
                if self._stuck.sample(self.body.position):
                    self._abandon_request()
                    logger.warning("%s is stuck near %s", self.agent_id, self.body.position)
                    return _Attempt.STUCK
        except asyncio.CancelledError:
            if self._generation == gen:
                self._abandon_request()
            raise

    async def _recover(self, deadline: float) -> None:
        """Jump, then walk a short way in a random direction."""
        direction = self._rng.choice(UNSTICK_DIRECTIONS)
        budget = max(0.0, min(self.unstick_duration_s, deadline - time.monotonic()))
        self.total_recoveries += 1
        logger.info("%s: unstick maneuver (%s, %.2fs)", self.agent_id, direction, budget)
        try:
            await self.body.jump()
            await self.body.nudge(direction, budget)
        except Exception as exc:
            logger.warning("%s: unstick maneuver failed: %s", self.agent_id, exc)

    # ------------------------------------------------------------------
    # Pursuit and follow
    # ------------------------------------------------------------------

    def steer_toward(self, destination: Vec3, tolerance: float) -> None:
        """Issue (or keep) an unsupervised goal toward a moving target.

        Does not wait for arrival; used by the combat loop to close distance.
        The request is re-issued only when the target drifted by
        ``REPATH_DISTANCE`` or the previous request finished.
        """
        goal = self._goal
        request = self._request
        if (
            goal is not None
            and not goal.supervised
            and goal.destination is not None
            and request is not None
            and not request.done()
            and goal.destination.distance_to(destination) < REPATH_DISTANCE
        ):
            return
        self.cancel()
        self._goal = NavigationGoal(
            destination,
            None,
            tolerance,
            0,
            time.monotonic() + self.default_timeout_s,
            self._generation,
            supervised=False,
        )
        self._launch(GoalSpec(destination, tolerance), self.policy.profile_for(0))

    async def follow_entity(
        self, ref: str, distance: float, deadline: Optional[float] = None
    ) -> AsyncIterator[Vec3]:
        """Follow entity *ref*, yielding its position every sample.

        Never completes on arrival. The stream ends when the goal is
        cancelled (or superseded), the target is lost, or *deadline* passes;
        ``last_follow_end`` records which.
        """
        self.cancel()
        gen = self._generation
        goal = NavigationGoal(
            None, ref, distance, 0, deadline if deadline is not None else math.inf, gen
        )
        self._goal = goal
        reason = "cancelled"
        try:
            while True:
                if self._generation != gen:
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    reason = "deadline"
                    break
                entity = self.body.locate_entity(ref)
                if entity is None or not entity.is_valid:
                    reason = "lost"
                    break

                yield entity.position

                if self._generation != gen:
                    break
                if self.body.position.distance_to(entity.position) > distance:
                    request = self._request
                    drifted = (
                        goal.destination is None
                        or goal.destination.distance_to(entity.position) >= REPATH_DISTANCE
                    )
                    if request is None or request.done() or drifted:
                        self._abandon_request()
                        goal.destination = entity.position
                        self._launch(GoalSpec(entity.position, distance), self.policy.profile_for(0))
                await asyncio.sleep(self.sample_interval_s)
        finally:
            self.last_follow_end = reason
            if self._generation == gen:
                self._goal = None
                self._abandon_request()
            logger.debug("%s stopped following %s (%s)", self.agent_id, ref, reason)
