"""Error taxonomy shared by the router, behavior engine and store.

Every error carries a machine-readable ``code`` and a human-readable
``message``. Command-level errors travel back to the sender verbatim;
behavior-loop errors are caught at the tick boundary and turned into a
safe state transition instead of propagating.

Usage::

    from warden.errors import TargetNotFound

    raise TargetNotFound("Agent 'Guard2' not found")
"""

from __future__ import annotations

from typing import Optional


class WardenError(Exception):
    """Base class for all OpenWarden errors."""

    code: str = "WARDEN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class Unauthorized(WardenError):
    """Sender's trust level is below the verb's requirement. No state changed."""

    code = "UNAUTHORIZED"


class TargetNotFound(WardenError):
    """The addressed agent or entity does not exist or is not visible."""

    code = "TARGET_NOT_FOUND"


class CatalogError(TargetNotFound):
    """A human-readable name could not be resolved by the catalog."""

    code = "CATALOG_MISS"


class InvalidCommand(WardenError):
    """Malformed command text, unknown verb or bad arguments."""

    code = "INVALID_COMMAND"


class NavigationFailed(WardenError):
    """A navigation goal ended without reaching its destination.

    ``reason`` is one of ``"no_path"``, ``"timeout"``, ``"stuck_exceeded"``.
    """

    code = "NAVIGATION_FAILED"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Navigation failed: {reason}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class EngagementLost(WardenError):
    """An ordered attack lost its target before defeating it.

    Automatic engagements never raise this; they resume the guard or
    patrol they interrupted.
    """

    code = "ENGAGEMENT_LOST"


class StoreUnavailable(WardenError):
    """Durable storage failed; the store keeps running in memory only."""

    code = "STORE_UNAVAILABLE"


class ConfigError(WardenError):
    """Configuration could not be loaded or failed validation."""

    code = "CONFIG_ERROR"
