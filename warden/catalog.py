"""Read-only catalog: human-readable names → internal identifiers.

Commands and combat code talk about ``diamond_sword`` or ``zombie``; the
environment deals in namespaced ids. The catalog is loaded once at startup
and never mutated afterwards, so it is safe to share across agents.

Config::

    catalog:
      path: ./catalog.yaml          # optional YAML file {kind: {name: id}}
      entries:                      # optional inline additions
        weapon:
          trident: "minecraft:trident"
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import yaml

from warden.errors import CatalogError, ConfigError

logger = logging.getLogger("OpenWarden.Catalog")

_WEAPONS = [
    "netherite_sword",
    "diamond_sword",
    "iron_sword",
    "stone_sword",
    "golden_sword",
    "wooden_sword",
    "netherite_axe",
    "diamond_axe",
    "iron_axe",
    "stone_axe",
    "golden_axe",
    "wooden_axe",
]

# Best healing first
_FOOD = [
    "golden_apple",
    "cooked_beef",
    "cooked_porkchop",
    "bread",
    "baked_potato",
    "apple",
]

_ITEMS = _WEAPONS + _FOOD + [
    "shield",
    "bow",
    "arrow",
    "totem_of_undying",
    "torch",
]

_ENTITIES = [
    "zombie",
    "zombie_villager",
    "husk",
    "drowned",
    "skeleton",
    "stray",
    "creeper",
    "spider",
    "cave_spider",
    "enderman",
    "witch",
    "slime",
    "magma_cube",
    "blaze",
    "ghast",
    "silverfish",
    "guardian",
    "phantom",
    "pillager",
    "vindicator",
    "cow",
    "pig",
    "sheep",
    "chicken",
    "wolf",
    "iron_golem",
    "villager",
    "player",
]

_BLOCKS = ["chest", "barrel", "cobblestone", "dirt", "stone", "oak_planks"]


def _namespaced(names: List[str]) -> Dict[str, str]:
    return {name: f"minecraft:{name}" for name in names}


DEFAULT_ENTRIES: Dict[str, Dict[str, str]] = {
    "weapon": _namespaced(_WEAPONS),
    "food": _namespaced(_FOOD),
    "item": _namespaced(_ITEMS),
    "entity": _namespaced(_ENTITIES),
    "block": _namespaced(_BLOCKS),
}


class Catalog:
    """Name lookup keyed by ``(kind, name)``. Names are case-insensitive."""

    def __init__(self, entries: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._entries: Dict[str, Dict[str, str]] = {}
        self._reverse: Dict[str, str] = {}
        for kind, names in (entries if entries is not None else DEFAULT_ENTRIES).items():
            self._add_kind(kind, names)

    def _add_kind(self, kind: str, names: Dict[str, str]) -> None:
        bucket = self._entries.setdefault(kind.lower(), {})
        for name, ident in (names or {}).items():
            bucket[str(name).lower()] = str(ident)
            self._reverse.setdefault(str(ident), str(name).lower())

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Catalog":
        """Build the catalog from the ``catalog`` config section.

        Raises:
            ConfigError: If ``catalog.path`` is set but cannot be loaded.
                This is fatal at startup.
        """
        section = config.get("catalog") or {}
        catalog = cls()
        path = section.get("path")
        if path:
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigError(f"Cannot load catalog {path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"Catalog {path} must be a mapping of kind → names")
            for kind, names in data.items():
                catalog._add_kind(kind, names)
        for kind, names in (section.get("entries") or {}).items():
            catalog._add_kind(kind, names)
        logger.debug("Catalog ready: %s", {k: len(v) for k, v in catalog._entries.items()})
        return catalog

    def resolve_name(self, kind: str, name: str) -> str:
        """Return the internal id for *name* of *kind*.

        Raises:
            CatalogError: If the name is unknown.
        """
        ident = self._entries.get(kind.lower(), {}).get(name.lower())
        if ident is None:
            raise CatalogError(f"Unknown {kind} '{name}'")
        return ident

    def try_resolve(self, kind: str, name: str) -> Optional[str]:
        """Like :meth:`resolve_name` but returns ``None`` on a miss."""
        return self._entries.get(kind.lower(), {}).get(name.lower())

    def name_for(self, ident: str) -> Optional[str]:
        """Reverse lookup: id → first registered name."""
        return self._reverse.get(ident)

    def names(self, kind: str) -> List[str]:
        return sorted(self._entries.get(kind.lower(), {}))

    def kinds(self) -> List[str]:
        return sorted(self._entries)
