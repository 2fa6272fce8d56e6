"""Catalog — read-only lookup over the static unit/hero/building tables."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from polis.loaders.catalog_loader import load_catalog_data
from polis.models.catalog import (
    BuildingDetails,
    HeroDetails,
    ResearchDetails,
    UnitDetails,
    UnitType,
)


class Catalog:
    """Static game data — read-only after initialization.

    Lookups of unknown ids return ``None``; callers skip such entries
    instead of failing.
    """

    def __init__(self) -> None:
        self.units: dict[str, UnitDetails] = {}
        self.heroes: dict[str, HeroDetails] = {}
        self.buildings: dict[str, BuildingDetails] = {}
        self.research_items: dict[str, ResearchDetails] = {}

    @classmethod
    def from_directory(cls, path: str | Path = "config") -> "Catalog":
        catalog = cls()
        catalog.load(**load_catalog_data(path))
        return catalog

    def load(self, units=(), heroes=(), buildings=(), research=()) -> None:
        self.units = {u.uid: u for u in units}
        self.heroes = {h.hid: h for h in heroes}
        self.buildings = {b.bid: b for b in buildings}
        self.research_items = {r.rid: r for r in research}

    def unit(self, uid: str) -> UnitDetails | None:
        return self.units.get(uid)

    def hero(self, hid: str | None) -> HeroDetails | None:
        if not hid:
            return None
        return self.heroes.get(hid)

    def building(self, bid: str) -> BuildingDetails | None:
        return self.buildings.get(bid)

    def research(self, rid: str) -> ResearchDetails | None:
        return self.research_items.get(rid)

    def display_name(self, item_id: str) -> str:
        """Best display name for any catalog id, falling back to the id."""
        for table in (self.units, self.heroes, self.buildings, self.research_items):
            item = table.get(item_id)
            if item is not None:
                return item.name
        return item_id

    def population_value(self, units: Mapping[str, int]) -> int:
        """Sum of ``population × count`` over known units."""
        total = 0
        for uid, count in units.items():
            details = self.units.get(uid)
            if details is not None and count > 0:
                total += details.population * count
        return total

    def is_type(self, uid: str, unit_type: UnitType) -> bool:
        details = self.units.get(uid)
        return details is not None and details.type == unit_type
