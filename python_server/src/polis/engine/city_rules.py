"""City rules — derived values of a city document.

Happiness, production, storage and population formulas.  Everything
here is computed from the city document plus the owner's alliance
document; nothing is stored.

Alliance documents look like::

    {"id": ..., "name": ...,
     "research": {"forestry_experts": {"level": 2}, ...},
     "allianceWonder": {"id": "shrine_of_the_ancestors"}}
"""

from __future__ import annotations

import copy
import math
from typing import Any, Mapping, Optional

from polis.engine.catalog import Catalog
from polis.loaders.game_config_loader import GameConfig
from polis.util.constants import (
    ALLIANCE_FAVOR_RESEARCH,
    ALLIANCE_PRODUCTION_RESEARCH,
    ALLIANCE_STORAGE_RESEARCH,
    FREE_LEVEL_ONE_BUILDINGS,
    PRISON_BASE_CAPACITY,
    PRODUCTION_BUILDINGS,
    SHRINE_WONDER,
    UNIT_QUEUES,
)

City = Mapping[str, Any]
Alliance = Optional[Mapping[str, Any]]

_SPECIAL_BUILDING_POPULATION = 60
_WORKER_POPULATION = 20
_RESEARCH_POINTS = 50

# resource → (base per hour, growth per level)
_BASE_PRODUCTION = {
    "wood": (30, 1.2),
    "stone": (30, 1.2),
    "silver": (15, 1.15),
}


def building_level(city: City, building_id: str) -> int:
    return int(((city.get("buildings") or {}).get(building_id) or {}).get("level") or 0)


def _workers(city: City, building_id: str) -> int:
    return int(((city.get("buildings") or {}).get(building_id) or {}).get("workers") or 0)


def _research_level(alliance: Alliance, key: str) -> int:
    if not alliance:
        return 0
    return int(((alliance.get("research") or {}).get(key) or {}).get("level") or 0)


def _has_wonder(alliance: Alliance, wonder_id: str) -> bool:
    if not alliance:
        return False
    return ((alliance.get("allianceWonder") or {}).get("id")) == wonder_id


class CityRules:
    """Formulas over city documents.

    Args:
        catalog: Unit, hero, building and research tables.
        config: Alliance bonus constants.
    """

    def __init__(self, catalog: Catalog, config: GameConfig | None = None) -> None:
        self._catalog = catalog
        self._cfg = config or GameConfig()

    # -- Happiness ----------------------------------------------------

    def happiness(self, city: City, alliance: Alliance = None) -> float:
        """Senate level × 10 minus 5 per worker, plus the shrine bonus."""
        buildings = city.get("buildings") or {}
        if "senate" not in buildings:
            return 0
        workers = sum(_workers(city, bid) for bid in PRODUCTION_BUILDINGS)
        value = max(0, min(100, building_level(city, "senate") * 10 - workers * 5))
        if _has_wonder(alliance, SHRINE_WONDER):
            value += self._cfg.shrine_wonder_bonus * 100
        return min(100, value)

    # -- Production ---------------------------------------------------

    def production_rates(self, city: City, alliance: Alliance = None,
                         city_id: str | None = None) -> dict[str, int]:
        """Resources per hour.

        Heroes stationed in the city (``heroes[h].cityId == city_id``)
        contribute their ``silver_production`` passive.
        """
        city_id = city_id or city.get("id")
        rates: dict[str, float] = {}
        for building_id, resource in PRODUCTION_BUILDINGS.items():
            base, growth = _BASE_PRODUCTION[resource]
            level = building_level(city, building_id) or 1
            rate = math.floor(base * growth ** (level - 1))
            workers = _workers(city, building_id)
            if workers:
                rate *= 1 + workers * 0.1
            rates[resource] = rate

        for hero_id, hero_state in (city.get("heroes") or {}).items():
            if not isinstance(hero_state, Mapping) or hero_state.get("cityId") != city_id:
                continue
            hero = self._catalog.hero(hero_id)
            if hero is not None and hero.passive_subtype == "silver_production":
                rates["silver"] *= 1 + hero.passive_value

        for resource, research_key in ALLIANCE_PRODUCTION_RESEARCH.items():
            rates[resource] *= 1 + _research_level(alliance, research_key) * 0.02

        happiness = self.happiness(city, alliance)
        band = 1.1 if happiness > 70 else (0.9 if happiness < 40 else 1.0)
        return {resource: math.floor(rate * band) for resource, rate in rates.items()}

    # -- Capacities ---------------------------------------------------

    def warehouse_capacity(self, city: City, alliance: Alliance = None) -> int:
        level = building_level(city, "warehouse")
        if not level:
            return 0
        capacity = math.floor(1500 * 1.4 ** (level - 1))
        capacity *= 1 + _research_level(alliance, ALLIANCE_STORAGE_RESEARCH) * 0.05
        return math.floor(capacity)

    def farm_capacity(self, city: City, alliance: Alliance = None) -> int:
        level = building_level(city, "farm")
        if not level:
            return 0
        capacity = math.floor(200 * 1.25 ** (level - 1))
        if _has_wonder(alliance, SHRINE_WONDER):
            capacity *= 1 + self._cfg.shrine_wonder_bonus
        return math.floor(capacity)

    @staticmethod
    def hospital_capacity(city: City) -> int:
        return building_level(city, "hospital") * 1000

    @staticmethod
    def prison_capacity(city: City) -> int:
        level = building_level(city, "prison")
        return level + PRISON_BASE_CAPACITY if level > 0 else 0

    @staticmethod
    def market_capacity(city: City) -> int:
        level = building_level(city, "market")
        if level < 1:
            return 0
        return min(2500, 500 + (level - 1) * 200)

    def free_hospital_space(self, city: City) -> int:
        occupied = sum((city.get("wounded") or {}).values())
        return max(0, self.hospital_capacity(city) - occupied)

    # -- Favor --------------------------------------------------------

    @staticmethod
    def favor_cap(city: City) -> int:
        return 100 + building_level(city, "temple") * 20

    def favor_per_second(self, city: City, alliance: Alliance = None) -> float:
        """Favor for the worshipped god; zero without a god or temple."""
        level = building_level(city, "temple")
        if not city.get("god") or level <= 0:
            return 0.0
        rate = level / 3600
        rate *= 1 + _research_level(alliance, ALLIANCE_FAVOR_RESEARCH) * 0.02
        return rate

    # -- Population & points ------------------------------------------

    def building_population(self, building_id: str, level: int) -> int:
        """Population cost of upgrading *building_id* to *level*."""
        details = self._catalog.building(building_id)
        if details is None or level < 1:
            return 0
        if level == 1 and building_id in FREE_LEVEL_ONE_BUILDINGS:
            return 0
        return math.floor(details.population * 1.1 ** (level - 1))

    def used_population(self, city: City) -> int:
        used = 0
        for building_id, state in (city.get("buildings") or {}).items():
            level = int((state or {}).get("level") or 0)
            for step in range(1, level + 1):
                used += self.building_population(building_id, step)
            used += int((state or {}).get("workers") or 0) * _WORKER_POPULATION
        used += self._catalog.population_value(city.get("units") or {})
        if city.get("specialBuilding"):
            used += _SPECIAL_BUILDING_POPULATION
        for queue in UNIT_QUEUES:
            for task in city.get(queue) or []:
                unit = self._catalog.unit(task.get("unitId", ""))
                if unit is not None:
                    used += unit.population * int(task.get("amount") or 0)
        return used

    def available_population(self, city: City, alliance: Alliance = None) -> int:
        return self.farm_capacity(city, alliance) - self.used_population(city)

    def points(self, city: City, alliance: Alliance = None) -> int:
        """City score: buildings, units, research and the alliance wonder."""
        points = 0.0
        for building_id, state in (city.get("buildings") or {}).items():
            details = self._catalog.building(building_id)
            if details is None or not details.points:
                continue
            level = int((state or {}).get("level") or 0)
            points += details.points * (level * (level + 1) / 2)
        for uid, count in (city.get("units") or {}).items():
            unit = self._catalog.unit(uid)
            if unit is not None:
                points += count * (unit.population or 1)
        points += len(city.get("research") or {}) * _RESEARCH_POINTS
        if alliance and alliance.get("allianceWonder"):
            points += self._cfg.alliance_wonder_points
        return math.floor(points)

    # -- Accrual ------------------------------------------------------

    def accrue(self, city: City, now: float, alliance: Alliance = None) -> dict[str, Any]:
        """Return a copy of *city* with production and favor caught up to *now*.

        Stored resources are valid as of ``lastUpdated``; any gap is
        filled linearly.  A negative gap (clock skew) changes nothing.
        """
        result = copy.deepcopy(dict(city))
        last = city.get("lastUpdated") or now
        elapsed = now - last
        if elapsed < 0:
            return result

        rates = self.production_rates(city, alliance)
        capacity = self.warehouse_capacity(city, alliance)
        resources = dict(result.get("resources") or {})
        for resource, rate in rates.items():
            resources[resource] = min(capacity, (resources.get(resource) or 0) + rate / 3600 * elapsed)
        result["resources"] = resources

        favor_rate = self.favor_per_second(city, alliance)
        if favor_rate > 0:
            god = city["god"]
            worship = dict(result.get("worship") or {})
            worship[god] = min(self.favor_cap(city), (worship.get(god) or 0) + favor_rate * elapsed)
            result["worship"] = worship

        result["lastUpdated"] = now
        return result

    # -- Clamps -------------------------------------------------------

    def clamp_resources(self, resources: Mapping[str, float], city: City,
                        alliance: Alliance = None) -> dict[str, float]:
        """Cap every resource at the warehouse capacity."""
        capacity = self.warehouse_capacity(city, alliance)
        return {key: min(capacity, value or 0) for key, value in resources.items()}
