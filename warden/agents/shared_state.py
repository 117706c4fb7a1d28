"""Thread-safe shared state store for inter-agent coordination.

The store is the only channel through which agents observe each other's
discoveries. It is partitioned into independent categories (resources,
threats, containers, tasks, positions); within a category keys are derived
from stable identifiers, so concurrent writers converge on the same entry
and last-writer-wins is sufficient. All operations are guarded by an RLock.

Threats carry a recency window: :meth:`SharedStateStore.query_in_radius`
drops threat entries older than the window as a read-time concern, so no
expiry thread is needed.

Persistence goes through a :class:`~warden.drivers.base.SnapshotPersistence`.
A failing backend never takes the store down; it logs ``StoreUnavailable``
and keeps running in memory (``degraded`` becomes True).
"""

import copy
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from warden.drivers.base import SnapshotPersistence
from warden.errors import StoreUnavailable
from warden.geometry import Vec3

logger = logging.getLogger("OpenWarden.SharedState")

RESOURCES = "resources"
THREATS = "threats"
CONTAINERS = "containers"
TASKS = "tasks"
POSITIONS = "positions"

CATEGORIES = (RESOURCES, THREATS, CONTAINERS, TASKS, POSITIONS)

DEFAULT_THREAT_WINDOW_S = 300.0

TASK_PENDING = "pending"
TASK_IN_PROGRESS = "in_progress"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"


@dataclass
class ThreatRecord:
    """A classified, positioned entity reported by some agent's scan."""

    entity_ref: str
    name: str
    position: Vec3
    classification: str = "hostile"
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    reported_by: Optional[str] = None
    distance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["position"] = self.position.to_list()
        data.pop("distance")
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ThreatRecord":
        return cls(
            entity_ref=d["entity_ref"],
            name=d.get("name", d["entity_ref"]),
            position=Vec3.from_any(d["position"]),
            classification=d.get("classification", "hostile"),
            first_seen=float(d.get("first_seen", 0.0)),
            last_seen=float(d.get("last_seen", 0.0)),
            reported_by=d.get("reported_by"),
        )


@dataclass
class TaskRecord:
    """Cross-agent task claim, independent of any agent's current task."""

    task_id: str
    description: str
    status: str = TASK_PENDING
    assigned_to: Optional[str] = None
    agent_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TaskRecord":
        return cls(**d)


class _Entry:
    """Internal container for a stored value with its position and write time."""

    __slots__ = ("value", "position", "updated_at")

    def __init__(self, value: Any, position: Optional[Vec3], updated_at: float) -> None:
        self.value = value
        self.position = position
        self.updated_at = updated_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": copy.deepcopy(self.value),
            "position": self.position.to_list() if self.position is not None else None,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "_Entry":
        pos = d.get("position")
        return cls(
            value=d.get("value"),
            position=Vec3.from_any(pos) if pos is not None else None,
            updated_at=float(d.get("updated_at", 0.0)),
        )


class SharedStateStore:
    """Categorised key-value store with radius queries and pub/sub callbacks.

    Example::

        store = SharedStateStore(persistence=JsonDirectoryPersistence("~/.openwarden/data"))
        store.load()

        store.set_position("home", Vec3(0, 64, 0))
        sub_id = store.subscribe("threats", lambda cat, key, val: print(key, val))
        store.record_threat(ThreatRecord("e42", "zombie", Vec3(3, 64, 1)))
        nearby = store.query_in_radius("threats", Vec3(0, 64, 0), 16)
        store.unsubscribe(sub_id)

        store.save()
    """

    def __init__(
        self,
        persistence: Optional[SnapshotPersistence] = None,
        threat_window_s: float = DEFAULT_THREAT_WINDOW_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._data: Dict[str, Dict[str, _Entry]] = {c: {} for c in CATEGORIES}
        # category → {sub_id → callback}
        self._subscribers: Dict[str, Dict[str, Callable]] = {}
        self._persistence = persistence
        self.threat_window_s = threat_window_s
        self._clock = clock
        self.degraded = persistence is None

    # ------------------------------------------------------------------
    # Core store operations
    # ------------------------------------------------------------------

    def _bucket(self, category: str) -> Dict[str, _Entry]:
        try:
            return self._data[category]
        except KeyError:
            raise KeyError(
                f"Unknown category '{category}'. Available: {list(self._data)}"
            ) from None

    def put(self, category: str, key: str, value: Any, position: Optional[Vec3] = None) -> None:
        """Store *value* under *key* in *category* (last writer wins).

        Subscribers of *category* are notified synchronously, outside the
        lock to prevent deadlocks.
        """
        with self._lock:
            callbacks = self._write(category, key, value, position)
        self._notify(callbacks, category, key, value)

    def _write(self, category: str, key: str, value: Any, position: Optional[Vec3] = None) -> List[Callable]:
        # Caller holds self._lock
        self._bucket(category)[key] = _Entry(value, position, self._clock())
        return list(self._subscribers.get(category, {}).values())

    def _notify(self, callbacks: List[Callable], category: str, key: str, value: Any) -> None:
        for cb in callbacks:
            try:
                cb(category, key, value)
            except Exception as exc:
                logger.warning(f"Subscriber callback error for '{category}/{key}': {exc}")

    def get(self, category: str, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._bucket(category).get(key)
            if entry is None or self._is_stale(category, entry):
                return default
            return entry.value

    def delete(self, category: str, key: str) -> bool:
        """Remove *key*. Returns True if it existed."""
        with self._lock:
            return self._bucket(category).pop(key, None) is not None

    def keys(self, category: str) -> List[str]:
        with self._lock:
            self._prune(category)
            return list(self._bucket(category).keys())

    def query_in_radius(self, category: str, center: Vec3, radius: float) -> List[Any]:
        """Return values in *category* positioned within *radius* of *center*.

        Results are ordered by ascending distance from *center*. Threat
        entries older than the recency window are pruned first.
        """
        with self._lock:
            self._prune(category)
            hits = []
            for entry in self._bucket(category).values():
                if entry.position is None:
                    continue
                d = entry.position.distance_to(center)
                if d <= radius:
                    hits.append((d, entry.value))
        hits.sort(key=lambda pair: pair[0])
        return [copy.deepcopy(value) for _, value in hits]

    def _is_stale(self, category: str, entry: _Entry) -> bool:
        if category != THREATS:
            return False
        return (self._clock() - entry.updated_at) > self.threat_window_s

    def _prune(self, category: str) -> None:
        if category != THREATS:
            return
        bucket = self._bucket(category)
        stale = [k for k, e in bucket.items() if self._is_stale(category, e)]
        for k in stale:
            del bucket[k]
        if stale:
            logger.debug("Pruned %d stale threat(s)", len(stale))

    # ------------------------------------------------------------------
    # Pub/sub
    # ------------------------------------------------------------------

    def subscribe(self, category: str, callback: Callable) -> str:
        """Call ``callback(category, key, value)`` on every :meth:`put` to *category*.

        Returns:
            Subscription ID string — pass to :meth:`unsubscribe` to remove.
        """
        self._bucket(category)
        sub_id = str(uuid.uuid4())
        with self._lock:
            self._subscribers.setdefault(category, {})[sub_id] = callback
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        """Remove a subscription by its ID. Unknown IDs are a no-op."""
        with self._lock:
            for subs in self._subscribers.values():
                if sub_id in subs:
                    del subs[sub_id]
                    return

    # ------------------------------------------------------------------
    # Threats
    # ------------------------------------------------------------------

    def record_threat(self, record: ThreatRecord) -> ThreatRecord:
        """Insert or refresh a threat, keeping its original ``first_seen``."""
        now = self._clock()
        existing = self.get(THREATS, record.entity_ref)
        record.first_seen = existing["first_seen"] if existing else now
        record.last_seen = now
        self.put(THREATS, record.entity_ref, record.to_dict(), position=record.position)
        return record

    def remove_threat(self, entity_ref: str) -> bool:
        return self.delete(THREATS, entity_ref)

    def threats_near(self, center: Vec3, radius: float) -> List[ThreatRecord]:
        """Recent threats within *radius* of *center*, nearest first."""
        records = [ThreatRecord.from_dict(d) for d in self.query_in_radius(THREATS, center, radius)]
        for r in records:
            r.distance = r.position.distance_to(center)
        return records

    # ------------------------------------------------------------------
    # Named positions, resources, containers
    # ------------------------------------------------------------------

    def set_position(self, name: str, position: Vec3) -> None:
        self.put(POSITIONS, name.lower(), position.to_list(), position=position)

    def get_position(self, name: str) -> Optional[Vec3]:
        value = self.get(POSITIONS, name.lower())
        return Vec3.from_any(value) if value is not None else None

    def positions(self) -> Dict[str, Vec3]:
        with self._lock:
            return {k: Vec3.from_any(e.value) for k, e in self._data[POSITIONS].items()}

    def add_resource(self, resource_type: str, location: Vec3, amount: int = 1) -> str:
        key = f"{resource_type}:{location.key()}"
        self.put(
            RESOURCES,
            key,
            {"type": resource_type, "location": location.to_list(), "amount": amount},
            position=location,
        )
        return key

    def update_container(self, location: Vec3, contents: List[Dict[str, Any]]) -> str:
        key = location.key()
        self.put(
            CONTAINERS,
            key,
            {"location": location.to_list(), "contents": contents},
            position=location,
        )
        return key

    # ------------------------------------------------------------------
    # Task claiming
    # ------------------------------------------------------------------

    def create_task(self, task_id: str, description: str, agent_id: Optional[str] = None) -> TaskRecord:
        record = TaskRecord(task_id=task_id, description=description, agent_id=agent_id)
        self.put(TASKS, task_id, record.to_dict())
        return record

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        value = self.get(TASKS, task_id)
        return TaskRecord.from_dict(value) if value is not None else None

    def claim_task(self, task_id: str, agent_id: str) -> bool:
        """Move a pending task to in_progress for *agent_id*.

        Returns False if the task is unknown or already claimed.
        """
        with self._lock:
            record = self.get_task(task_id)
            if record is None or record.status != TASK_PENDING:
                return False
            record.status = TASK_IN_PROGRESS
            record.assigned_to = agent_id
            record.updated_at = self._clock()
            value = record.to_dict()
            callbacks = self._write(TASKS, task_id, value)
        self._notify(callbacks, TASKS, task_id, value)
        return True

    def complete_task(self, task_id: str, success: bool = True) -> Optional[TaskRecord]:
        with self._lock:
            record = self.get_task(task_id)
            if record is None:
                return None
            record.status = TASK_COMPLETED if success else TASK_FAILED
            record.updated_at = self._clock()
            value = record.to_dict()
            callbacks = self._write(TASKS, task_id, value)
        self._notify(callbacks, TASKS, task_id, value)
        return record

    # ------------------------------------------------------------------
    # Snapshots and persistence
    # ------------------------------------------------------------------

    def snapshot(self, category: str) -> Dict[str, Dict[str, Any]]:
        """Serialisable deep copy of one category."""
        with self._lock:
            return {k: e.to_dict() for k, e in self._bucket(category).items()}

    def restore(self, category: str, data: Dict[str, Dict[str, Any]]) -> int:
        """Replace *category* with a snapshot. Returns the number of entries."""
        entries = {k: _Entry.from_dict(v) for k, v in (data or {}).items()}
        with self._lock:
            self._data[category] = entries
        return len(entries)

    def load(self) -> int:
        """Reload every category from persistence. Returns total entries loaded."""
        if self._persistence is None:
            return 0
        total = 0
        try:
            for category in CATEGORIES:
                total += self.restore(category, self._persistence.load_snapshot(category))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            self._mark_unavailable("load", exc)
            return total
        self.degraded = False
        logger.info("Loaded %d shared-state entr(ies) from persistent storage", total)
        return total

    def save(self) -> bool:
        """Flush every category to persistence. Returns False in degraded mode."""
        if self._persistence is None:
            return False
        try:
            for category in CATEGORIES:
                self._persistence.save_snapshot(category, self.snapshot(category))
        except (OSError, ValueError, TypeError) as exc:
            self._mark_unavailable("save", exc)
            return False
        self.degraded = False
        logger.debug("Shared state saved")
        return True

    def _mark_unavailable(self, op: str, exc: Exception) -> None:
        self.degraded = True
        err = StoreUnavailable(f"Persistent storage {op} failed: {exc}")
        logger.error("%s (continuing in memory)", err.message)
