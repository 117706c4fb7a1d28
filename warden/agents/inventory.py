"""Weapon, food and off-hand selection for an agent's inventory.

Weapons rank by :data:`WEAPON_RANKING`, food by :data:`FOOD_RANKING`. Catalog
aliases resolve item ids whose display name is not a plain vanilla name.
"""

import logging
from typing import List, Optional

from warden.catalog import Catalog
from warden.drivers.base import BodyBase, Item

logger = logging.getLogger("OpenWarden.Agents.Inventory")

_MATERIALS = ["netherite", "diamond", "iron", "stone", "golden", "wooden"]

#: Best first: every sword outranks every axe, then by material.
WEAPON_RANKING: List[str] = [f"{m}_sword" for m in _MATERIALS] + [f"{m}_axe" for m in _MATERIALS]

#: Best healing first.
FOOD_RANKING: List[str] = [
    "golden_apple",
    "cooked_beef",
    "cooked_porkchop",
    "bread",
    "baked_potato",
    "apple",
]

TOTEM = "totem_of_undying"


class Inventory:
    """Picks and equips the best melee weapon an agent carries."""

    def __init__(self, body: BodyBase, catalog: Optional[Catalog] = None) -> None:
        self.body = body
        self.catalog = catalog or Catalog()

    def _name(self, item: Item, known: List[str]) -> str:
        name = item.name.lower()
        if name not in known:
            name = self.catalog.name_for(item.id) or name
        return name

    def _rank(self, item: Item) -> Optional[int]:
        name = self._name(item, WEAPON_RANKING)
        try:
            return WEAPON_RANKING.index(name)
        except ValueError:
            return None

    def best_weapon(self) -> Optional[Item]:
        """Highest-ranked weapon carried, or ``None``."""
        ranked = []
        for item in self.body.items():
            rank = self._rank(item)
            if rank is not None:
                ranked.append((rank, item))
        if not ranked:
            return None
        return min(ranked, key=lambda pair: pair[0])[1]

    async def equip_best_weapon(self) -> Optional[Item]:
        """Hold the best weapon. No-op when it is already in hand.

        Returns the weapon now held, or ``None`` when the agent has none.
        """
        weapon = self.best_weapon()
        if weapon is None:
            return None
        if self.body.held_item() == weapon.id:
            return weapon
        try:
            await self.body.equip(weapon.id)
        except Exception as exc:
            logger.warning("%s could not equip %s: %s", self.body.agent_id, weapon.name, exc)
            return None
        logger.debug("%s equipped %s", self.body.agent_id, weapon.name)
        return weapon

    # ------------------------------------------------------------------
    # Food and off-hand
    # ------------------------------------------------------------------

    def find(self, name: str) -> Optional[Item]:
        """First carried stack whose name (or catalog name) is *name*."""
        wanted = name.lower()
        for item in self.body.items():
            if item.count > 0 and self._name(item, [wanted]) == wanted:
                return item
        return None

    def best_food(self) -> Optional[Item]:
        """Best-healing food carried, or ``None``.

        Items the catalog lists under ``food`` but that have no vanilla rank
        come after every ranked food.
        """
        custom = {self.catalog.try_resolve("food", n) for n in self.catalog.names("food")}
        ranked = []
        for item in self.body.items():
            if item.count <= 0:
                continue
            name = self._name(item, FOOD_RANKING)
            if name in FOOD_RANKING:
                ranked.append((FOOD_RANKING.index(name), item))
            elif item.id in custom:
                ranked.append((len(FOOD_RANKING), item))
        if not ranked:
            return None
        return min(ranked, key=lambda pair: pair[0])[1]

    async def eat_food(self) -> Optional[Item]:
        """Eat one of the best food carried.

        Returns the food eaten, or ``None`` when there was nothing to eat or the
        body could not eat it.
        """
        food = self.best_food()
        if food is None:
            return None
        try:
            await self.body.consume(food.id)
        except Exception as exc:
            logger.warning("%s could not eat %s: %s", self.body.agent_id, food.name, exc)
            return None
        logger.info("%s ate %s", self.body.agent_id, food.name)
        return food

    async def equip_offhand(self, name: str = TOTEM) -> Optional[Item]:
        """Move *name* into the off-hand. No-op when it is already there.

        Returns the item now in the off-hand, or ``None`` when the agent does
        not carry it.
        """
        item = self.find(name)
        if item is None:
            return None
        if self.body.offhand_item() == item.id:
            return item
        try:
            await self.body.equip_offhand(item.id)
        except Exception as exc:
            logger.warning("%s could not move %s to off-hand: %s", self.body.agent_id, item.name, exc)
            return None
        logger.debug("%s holds %s in off-hand", self.body.agent_id, item.name)
        return item
