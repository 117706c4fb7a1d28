"""Capability contracts and the in-memory simulation backend."""

from .base import (
    BodyBase,
    Entity,
    GoalSpec,
    Item,
    LoggingSink,
    MovementProfile,
    NotificationSink,
    PathfinderBase,
    PathOutcome,
    SnapshotPersistence,
)

__all__ = [
    "BodyBase",
    "Entity",
    "GoalSpec",
    "Item",
    "LoggingSink",
    "MovementProfile",
    "NotificationSink",
    "PathOutcome",
    "PathfinderBase",
    "SnapshotPersistence",
]
