"""Command authorization: trust levels and the verb → level table.

Implements a 4-tier hierarchy::

    GUEST   (0) -- Read-only: help, list, status, threats.
    TRUSTED (1) -- Drive agents: stop, goto/come, guard, patrol, attack, mark,
                   aggression.
    ADMIN   (2) -- Fleet policy: whitelist.
    OWNER   (3) -- Everything.

Verbs missing from the table fall back to ADMIN, so a new or misspelled
verb is never open to guests.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Dict, Optional

from warden.errors import Unauthorized

logger = logging.getLogger("OpenWarden.Commands.Auth")


class TrustLevel(IntEnum):
    """Sender trust hierarchy."""

    GUEST = 0
    TRUSTED = 1
    ADMIN = 2
    OWNER = 3

    @classmethod
    def parse(cls, value: Any) -> "TrustLevel":
        """Accept a level name (``"admin"``), an int, or a TrustLevel.

        Raises:
            ValueError: For unknown names or out-of-range numbers.
        """
        if isinstance(value, TrustLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown trust level: {value!r}") from None


VERB_PERMISSIONS: Dict[str, TrustLevel] = {
    "help": TrustLevel.GUEST,
    "list": TrustLevel.GUEST,
    "status": TrustLevel.GUEST,
    "threats": TrustLevel.GUEST,
    "stop": TrustLevel.TRUSTED,
    "goto": TrustLevel.TRUSTED,
    "come": TrustLevel.TRUSTED,
    "guard": TrustLevel.TRUSTED,
    "patrol": TrustLevel.TRUSTED,
    "attack": TrustLevel.TRUSTED,
    "mark": TrustLevel.TRUSTED,
    "aggression": TrustLevel.TRUSTED,
    "whitelist": TrustLevel.ADMIN,
}

UNKNOWN_VERB_LEVEL = TrustLevel.ADMIN


class AuthDirectory:
    """Maps sender ids to trust levels and verbs to required levels.

    Config (``auth`` section)::

        auth:
          default_level: guest
          users:
            Steve: owner
            Alex: trusted
          permissions:       # per-verb overrides
            threats: trusted
    """

    def __init__(
        self,
        users: Optional[Dict[str, Any]] = None,
        default_level: Any = TrustLevel.GUEST,
        permissions: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.default_level = TrustLevel.parse(default_level)
        self._users: Dict[str, TrustLevel] = {
            str(name).lower(): TrustLevel.parse(level) for name, level in (users or {}).items()
        }
        self._permissions: Dict[str, TrustLevel] = dict(VERB_PERMISSIONS)
        for verb, level in (permissions or {}).items():
            self._permissions[str(verb).lower()] = TrustLevel.parse(level)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AuthDirectory":
        auth = config.get("auth") or {}
        return cls(
            users=auth.get("users") or {},
            default_level=auth.get("default_level", "guest"),
            permissions=auth.get("permissions") or {},
        )

    def level_for(self, sender_id: str) -> TrustLevel:
        return self._users.get(sender_id.lower(), self.default_level)

    def set_level(self, sender_id: str, level: Any) -> None:
        self._users[sender_id.lower()] = TrustLevel.parse(level)

    def required_level(self, verb: str) -> TrustLevel:
        return self._permissions.get(verb.lower(), UNKNOWN_VERB_LEVEL)

    def is_allowed(self, verb: str, level: TrustLevel) -> bool:
        return level >= self.required_level(verb)

    def authorize(self, verb: str, level: TrustLevel, sender_id: str = "?") -> None:
        """Raise :class:`Unauthorized` if *level* may not use *verb*."""
        required = self.required_level(verb)
        if level < required:
            logger.warning(
                "Denied '%s' for %s (level %s, needs %s)",
                verb, sender_id, level.name, required.name,
            )
            raise Unauthorized(
                f"'{verb}' requires {required.name.lower()} access "
                f"(you have {level.name.lower()})"
            )

    def verbs_for(self, level: TrustLevel) -> list:
        """Known verbs usable at *level*, sorted."""
        return sorted(v for v, need in self._permissions.items() if level >= need)
