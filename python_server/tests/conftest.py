"""Shared fixtures: a fresh document store, the real catalog, a small world.

The world used by most tests:

    island i1:  slot s1 — alice's city c1 (10, 10)
                slot s2 — bob's city c2 (13, 14)
                village v1 (12, 11)
    island i2:  slot s3 — free plot (40, 40)
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Optional

import pytest

from polis.engine.accounts import AccountDirectory
from polis.engine.catalog import Catalog
from polis.engine.city_rules import CityRules
from polis.loaders.game_config_loader import GameConfig, load_game_config
from polis.persistence import paths
from polis.persistence.document_store import DocumentStore
from polis.util.cache import TTLCache
from polis.util.events import EventBus

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

T0 = 1_000_000.0
WORLD = "w1"


class FakeClock:
    """Settable clock for the store and caches."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FixedRandom:
    """Stand-in for ``random`` returning a fixed draw."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------

BASE_BUILDINGS: dict[str, int] = {
    "senate": 1, "farm": 1, "warehouse": 1, "timber_camp": 1, "quarry": 1,
    "silver_mine": 1, "cave": 1, "hospital": 1, "market": 1,
}


def make_city(name: str, owner: str, slot_id: str, x: float, y: float, island: str = "i1",
              units: Optional[dict[str, int]] = None,
              resources: Optional[dict[str, float]] = None,
              buildings: Optional[dict[str, int]] = None,
              **extra: Any) -> dict[str, Any]:
    levels = dict(BASE_BUILDINGS)
    levels.update(buildings or {})
    city = {
        "cityName": name,
        "slotId": slot_id,
        "x": x,
        "y": y,
        "islandId": island,
        "playerInfo": {"username": owner},
        "buildings": {bid: {"level": level} for bid, level in levels.items()},
        "units": dict(units or {}),
        "resources": dict(resources if resources is not None else {"wood": 1000, "stone": 1000, "silver": 1000}),
        "wounded": {},
        "cave": {"silver": 0},
        "lastUpdated": T0,
    }
    city.update(extra)
    return city


def make_movement(mtype: str, origin_owner: str = "alice", origin_city: str = "c1",
                  departure: float = T0 - 600, arrival: float = T0,
                  status: str = "moving", **fields: Any) -> dict[str, Any]:
    doc = {
        "type": mtype,
        "status": status,
        "departureTime": departure,
        "arrivalTime": arrival,
        "originOwnerId": origin_owner,
        "originCityId": origin_city,
        "originCityName": "Athens" if origin_city == "c1" else "Sparta",
        "originOwnerUsername": origin_owner,
        "units": {},
        "resources": {},
        "involvedParties": [origin_owner],
    }
    doc.update(fields)
    return doc


def city_attack_fields(target_owner: str = "bob", target_city: str = "c2",
                       slot: str = "s2", name: str = "Sparta") -> dict[str, Any]:
    return {
        "targetOwnerId": target_owner,
        "targetCityId": target_city,
        "targetSlotId": slot,
        "targetCityName": name,
        "ownerUsername": target_owner,
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def catalog() -> Catalog:
    return Catalog.from_directory(CONFIG_DIR)


@pytest.fixture
def game_config() -> GameConfig:
    return load_game_config(str(CONFIG_DIR / "game.yaml"))


@pytest.fixture
def rules(catalog: Catalog, game_config: GameConfig) -> CityRules:
    return CityRules(catalog, game_config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(tmp_path, clock: FakeClock):
    s = DocumentStore(str(tmp_path / "test.db"), clock=clock)
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(60.0, clock=clock)


@pytest.fixture
def accounts(store: DocumentStore, cache: TTLCache) -> AccountDirectory:
    return AccountDirectory(store, cache)


async def seed(store: DocumentStore, documents: dict[str, dict[str, Any]]) -> None:
    batch = store.batch()
    for path, data in documents.items():
        batch.set(path, copy.deepcopy(data))
    await batch.commit()


@pytest.fixture
async def world(store: DocumentStore) -> dict[str, dict[str, Any]]:
    """Seed the two-player world; returns the seeded documents by path."""
    documents = {
        paths.world(WORLD): {"season": "Spring", "weather": "Clear", "windSpeed": 5},
        paths.account("alice"): {"username": "alice"},
        paths.account("bob"): {"username": "bob"},
        paths.account_game("alice", WORLD): {"battlePoints": 0, "warPoints": 0},
        paths.account_game("bob", WORLD): {"battlePoints": 0, "warPoints": 0},
        paths.city_slot(WORLD, "s1"): {"x": 10, "y": 10, "islandId": "i1",
                                       "ownerId": "alice", "ownerUsername": "alice",
                                       "cityName": "Athens"},
        paths.city_slot(WORLD, "s2"): {"x": 13, "y": 14, "islandId": "i1",
                                       "ownerId": "bob", "ownerUsername": "bob",
                                       "cityName": "Sparta"},
        paths.city_slot(WORLD, "s3"): {"x": 40, "y": 40, "islandId": "i2", "ownerId": None},
        paths.city("alice", WORLD, "c1"): make_city(
            "Athens", "alice", "s1", 10, 10, units={"hoplite": 100, "swordsman": 20},
            agents={"architect": 1},
        ),
        paths.city("bob", WORLD, "c2"): make_city(
            "Sparta", "bob", "s2", 13, 14, units={"archer": 50},
        ),
        paths.village(WORLD, "v1"): {"name": "Farmstead", "x": 12, "y": 11, "islandId": "i1",
                                     "level": 1, "resources": {"wood": 400, "stone": 400, "silver": 400},
                                     "demandYield": {"wood": 100, "stone": 80, "silver": 40}},
    }
    await seed(store, documents)
    return documents
