"""Tests for demanding from and plundering conquered villages."""

from __future__ import annotations

import pytest

from conftest import T0, WORLD, make_city, seed
from polis.engine.village_service import REVOLT_MESSAGE, VillageService
from polis.persistence import paths
from polis.util.errors import ActionRejected
from polis.util.events import ReportCreated

ALICE_CITY = paths.city("alice", WORLD, "c1")
RECORD = paths.conquered_village("alice", WORLD, "v1")
VILLAGE = paths.village(WORLD, "v1")


@pytest.fixture
def villages(store, catalog, rules, accounts, event_bus, game_config) -> VillageService:
    return VillageService(store, catalog, rules, accounts, event_bus, game_config)


@pytest.fixture
async def conquered(store, world):
    await seed(store, {RECORD: {"level": 1, "happiness": 100.0, "happinessLastUpdated": T0,
                                "lastCollected": 0}})


class TestHappiness:
    def test_regenerates_two_per_hour(self, villages):
        record = {"happiness": 50.0, "happinessLastUpdated": T0}
        assert villages.current_happiness(record, T0 + 5 * 3600) == pytest.approx(60.0)

    def test_capped_at_hundred(self, villages):
        record = {"happiness": 95.0, "happinessLastUpdated": T0}
        assert villages.current_happiness(record, T0 + 10 * 3600) == 100.0

    def test_missing_happiness_is_full(self, villages):
        assert villages.current_happiness({}, T0) == 100.0

    async def test_regenerate_persists(self, store, conquered, villages):
        await store.update(RECORD, {"happiness": 50.0})
        assert await villages.regenerate_happiness(WORLD, "alice", T0 + 3600) == 1
        record = await store.get(RECORD)
        assert record["happiness"] == pytest.approx(52.0)
        assert record["happinessLastUpdated"] == T0 + 3600

    async def test_listing_catches_up_happiness(self, store, conquered, villages):
        await store.update(RECORD, {"happiness": 50.0})
        [row] = await villages.list_conquered(WORLD, "alice", T0 + 3600)
        assert row["id"] == "v1"
        assert row["happiness"] == pytest.approx(52.0)
        assert (await store.get(RECORD))["happiness"] == pytest.approx(52.0)

    async def test_listing_without_villages(self, world, villages):
        assert await villages.list_conquered(WORLD, "bob", T0) == []


class TestDemand:
    async def test_collects_into_city(self, store, conquered, villages):
        collected = await villages.demand(WORLD, "alice", "c1", "v1", "40 minutes", T0)

        assert collected == {"wood": 100, "stone": 80, "silver": 40}
        assert (await store.get(ALICE_CITY))["resources"] == {"wood": 1100, "stone": 1080, "silver": 1040}
        record = await store.get(RECORD)
        assert record["lastCollected"] == T0
        assert record["happiness"] == pytest.approx(98.0)

    async def test_waits_for_the_option_duration(self, conquered, villages):
        await villages.demand(WORLD, "alice", "c1", "v1", "40 minutes", T0)
        with pytest.raises(ActionRejected, match="Not enough time"):
            await villages.demand(WORLD, "alice", "c1", "v1", "40 minutes", T0 + 100)

    async def test_unknown_option(self, conquered, villages):
        with pytest.raises(ActionRejected, match="Unknown demand option"):
            await villages.demand(WORLD, "alice", "c1", "v1", "1 day", T0)

    async def test_not_conquered(self, world, villages):
        with pytest.raises(ActionRejected, match="could not be found"):
            await villages.demand(WORLD, "alice", "c1", "v1", "40 minutes", T0)

    async def test_island_bonus_with_two_cities(self, store, conquered, villages):
        await seed(store, {paths.city("alice", WORLD, "c3"): make_city("Corinth", "alice", "s4", 11, 12)})
        collected = await villages.demand(WORLD, "alice", "c1", "v1", "40 minutes", T0)
        assert collected["wood"] == 120


class TestPlunder:
    async def test_seizes_half_the_stock(self, store, conquered, villages, event_bus):
        titles = []
        event_bus.on(ReportCreated, lambda e: titles.append(e.title))

        result = await villages.plunder(WORLD, "alice", "c1", "v1", T0)

        assert result == {"revolt": False, "plunder": {"wood": 200, "stone": 200, "silver": 200}, "losses": {}}
        assert (await store.get(VILLAGE))["resources"] == {"wood": 200, "stone": 200, "silver": 200}
        assert (await store.get(ALICE_CITY))["resources"] == {"wood": 1200, "stone": 1200, "silver": 1200}
        record = await store.get(RECORD)
        assert record["happiness"] == pytest.approx(60.0)
        assert record["lastPlundered"] == T0
        assert titles == ["Plunder of Farmstead successful!"]

    async def test_cooldown(self, conquered, villages):
        await villages.plunder(WORLD, "alice", "c1", "v1", T0)
        with pytest.raises(ActionRejected, match="wait"):
            await villages.plunder(WORLD, "alice", "c1", "v1", T0 + 600)

    async def test_unhappy_village_revolts(self, store, conquered, villages):
        await store.update(RECORD, {"happiness": 40.0})

        result = await villages.plunder(WORLD, "alice", "c1", "v1", T0)

        assert result["revolt"] is True
        assert result["plunder"] == {"wood": 200, "stone": 200, "silver": 200}
        assert result["losses"] == {"hoplite": 5, "swordsman": 1}
        assert await store.get(RECORD) is None
        city = await store.get(ALICE_CITY)
        assert city["units"] == {"hoplite": 95, "swordsman": 19}
        assert city["resources"]["wood"] == 1200

        reports = await store.query(paths.reports("alice", WORLD))
        assert len(reports) == 1
        report = reports[0][1]
        assert report["title"] == "Revolt at Farmstead!"
        assert report["outcome"]["message"] == REVOLT_MESSAGE
        assert report["attacker"]["losses"] == {"hoplite": 5, "swordsman": 1}

    async def test_missing_record(self, world, villages):
        with pytest.raises(ActionRejected, match="not found"):
            await villages.plunder(WORLD, "alice", "c1", "v1", T0)
