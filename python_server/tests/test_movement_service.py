"""Tests for sending, cancelling and listing movements."""

from __future__ import annotations

import pytest

from conftest import T0, WORLD
from polis.engine.movement_service import MovementService, SendOrder
from polis.persistence import paths
from polis.util.errors import MovementRejected

ALICE_CITY = paths.city("alice", WORLD, "c1")


@pytest.fixture
def movements(store, catalog, rules, accounts, game_config) -> MovementService:
    return MovementService(store, catalog, rules, accounts, game_config)


def _order(mode: str = "attack", target_id: str = "s2", target_kind: str = "city", **kwargs) -> SendOrder:
    return SendOrder(mode=mode, target_kind=target_kind, target_id=target_id, **kwargs)


async def _movement(store, movement_id: str) -> dict:
    return await store.get(paths.movement(WORLD, movement_id))


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------


class TestSendAttack:
    async def test_creates_movement_and_debits_city(self, store, world, movements):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            units={"hoplite": 50}, attack_formation={"front": "hoplite"},
        ))

        doc = await _movement(store, movement_id)
        assert doc["type"] == "attack"
        assert doc["status"] == "moving"
        assert doc["targetCityId"] == "c2"
        assert doc["targetOwnerId"] == "bob"
        assert doc["targetCityName"] == "Sparta"
        assert doc["units"] == {"hoplite": 50}
        assert doc["attackFormation"] == {"front": "hoplite"}
        assert doc["involvedParties"] == ["alice", "bob"]
        assert doc["isCrossIsland"] is False
        assert doc["departureTime"] == T0
        assert doc["cancellableUntil"] == T0 + 30
        # 5 tiles at hoplite speed 6 × world speed 5
        assert doc["arrivalTime"] == pytest.approx(T0 + 600)
        assert (await store.get(ALICE_CITY))["units"] == {"hoplite": 50, "swordsman": 20}

    async def test_hero_leaves_city(self, store, world, movements):
        await store.update(ALICE_CITY, {"heroes": {"achilles": {"cityId": "c1"}}})
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            units={"hoplite": 10}, hero="achilles",
        ))
        assert (await _movement(store, movement_id))["hero"] == "achilles"
        assert (await store.get(ALICE_CITY))["heroes"]["achilles"]["cityId"] is None

    async def test_wounded_hero_stays(self, store, world, movements):
        await store.update(ALICE_CITY, {"heroes": {"achilles": {"cityId": "c1", "woundedUntil": T0 + 60}}})
        with pytest.raises(MovementRejected, match="recovering"):
            await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}, hero="achilles"))

    async def test_village_attack(self, store, world, movements):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            target_kind="village", target_id="v1", units={"hoplite": 10},
        ))
        doc = await _movement(store, movement_id)
        assert doc["type"] == "attack_village"
        assert doc["targetVillageName"] == "Farmstead"
        assert doc["involvedParties"] == ["alice"]


class TestSendValidation:
    @pytest.mark.parametrize("order, message", [
        (_order(mode="raid", units={"hoplite": 1}), "Unknown movement mode"),
        (_order(target_kind="island", units={"hoplite": 1}), "Unknown target"),
        (_order(mode="trade", target_kind="village", target_id="v1"), "Only attacks"),
        (_order(units={"golem": 1}), "Unknown unit"),
        (_order(units={"hoplite": 500}), "Not enough Hoplite in Athens"),
        (_order(target_id="s1", units={"hoplite": 1}), "your own cities"),
        (_order(target_id="s3", units={"hoplite": 1}), "no city on this plot"),
        (_order(target_id="s9", units={"hoplite": 1}), "could not be found"),
        (_order(units={}), "No units or hero"),
    ])
    async def test_rejected(self, store, world, movements, order, message):
        with pytest.raises(MovementRejected, match=message):
            await movements.send(WORLD, "alice", "c1", order)
        assert (await store.get(ALICE_CITY))["units"] == {"hoplite": 100, "swordsman": 20}
        assert await store.query(paths.movements(WORLD)) == []

    async def test_missing_origin(self, world, movements):
        with pytest.raises(MovementRejected, match="your city could not be found"):
            await movements.send(WORLD, "alice", "c9", _order(units={"hoplite": 1}))

    async def test_sea_needs_ships(self, store, world, movements):
        await store.update(paths.city_slot(WORLD, "s2"), {"islandId": "i2"})
        with pytest.raises(MovementRejected, match="without transport ships"):
            await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}))

    async def test_ship_capacity(self, store, world, movements):
        await store.update(paths.city_slot(WORLD, "s2"), {"islandId": "i2"})
        await store.update(ALICE_CITY, {"units.transport_ship": 1})
        with pytest.raises(MovementRejected, match="Need 4 more capacity"):
            await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 20, "transport_ship": 1}))

        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            units={"hoplite": 16, "transport_ship": 1},
        ))
        assert (await _movement(store, movement_id))["isCrossIsland"] is True


class TestSendFastModes:
    async def test_scout_pays_from_cave(self, store, world, movements):
        await store.update(ALICE_CITY, {"cave.silver": 500})
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            mode="scout", resources={"silver": 100},
        ))
        doc = await _movement(store, movement_id)
        assert doc["type"] == "scout"
        assert doc["involvedParties"] == ["alice"]
        # 5 tiles × 15 s
        assert doc["arrivalTime"] == pytest.approx(T0 + 75)
        city = await store.get(ALICE_CITY)
        assert city["cave"]["silver"] == 400
        assert city["resources"]["silver"] == 1000

    async def test_scout_without_cave_silver(self, world, movements):
        with pytest.raises(MovementRejected, match="cave"):
            await movements.send(WORLD, "alice", "c1", _order(mode="scout", resources={"silver": 100}))

    async def test_trade_debits_resources(self, store, world, movements):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            mode="trade", resources={"wood": 300},
        ))
        assert (await _movement(store, movement_id))["resources"] == {"wood": 300}
        assert (await store.get(ALICE_CITY))["resources"]["wood"] == 700

    async def test_trade_limited_by_market(self, world, movements):
        with pytest.raises(MovementRejected, match="market capacity of 500"):
            await movements.send(WORLD, "alice", "c1", _order(mode="trade", resources={"wood": 600}))


class TestSendFounding:
    @pytest.fixture
    async def fleet(self, store, world):
        await store.update(ALICE_CITY, {"units.transport_ship": 1, "units.villager": 5})

    async def test_settlers_take_the_architect(self, store, fleet, movements):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(
            mode="found_city", target_id="s3", agent="architect",
            units={"transport_ship": 1, "villager": 5, "hoplite": 10},
        ))
        doc = await _movement(store, movement_id)
        assert doc["type"] == "found_city"
        assert doc["targetSlotId"] == "s3"
        assert doc["newCityName"] == "alice's Colony"
        assert doc["agent"] == "architect"
        # 24 h less one hour per villager
        assert doc["foundingTimeSeconds"] == 86400 - 5 * 3600
        assert "cancellableUntil" not in doc
        assert (await store.get(ALICE_CITY))["agents"] == {"architect": 0}

    async def test_needs_an_architect(self, fleet, movements):
        with pytest.raises(MovementRejected, match="architect"):
            await movements.send(WORLD, "alice", "c1", _order(
                mode="found_city", target_id="s3", units={"transport_ship": 1, "villager": 5},
            ))

    async def test_claimed_plot(self, fleet, movements):
        with pytest.raises(MovementRejected, match="already been claimed"):
            await movements.send(WORLD, "alice", "c1", _order(
                mode="found_city", target_id="s2", agent="architect", units={"hoplite": 1},
            ))

    def test_colony_names_stay_unique(self):
        assert MovementService._colony_name("alice", []) == "alice's Colony"
        assert MovementService._colony_name(
            "alice", ["alice's Colony", "alice's Colony 2"]) == "alice's Colony 3"


# ---------------------------------------------------------------------------
# Cancelling and listing
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_turns_around_with_elapsed_time(self, store, world, movements, clock):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}))
        clock.advance(10)

        arrival = await movements.cancel(WORLD, "alice", movement_id)

        assert arrival == T0 + 20
        doc = await _movement(store, movement_id)
        assert doc["status"] == "returning"
        assert doc["arrivalTime"] == T0 + 20
        assert doc["cancellableUntil"] is None
        assert doc["involvedParties"] == ["alice"]

    async def test_grace_period_over(self, world, movements, clock):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}))
        clock.advance(31)
        with pytest.raises(MovementRejected, match="grace period"):
            await movements.cancel(WORLD, "alice", movement_id)

    async def test_only_owner_cancels(self, world, movements):
        movement_id = await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}))
        with pytest.raises(MovementRejected, match="your own movements"):
            await movements.cancel(WORLD, "bob", movement_id)

    async def test_unknown_movement(self, world, movements):
        with pytest.raises(MovementRejected, match="not found"):
            await movements.cancel(WORLD, "alice", "nope")


class TestListMovements:
    async def test_visible_to_involved_parties(self, store, world, movements):
        attack = await movements.send(WORLD, "alice", "c1", _order(units={"hoplite": 10}))
        await store.update(ALICE_CITY, {"cave.silver": 100})
        scout = await movements.send(WORLD, "alice", "c1", _order(mode="scout", resources={"silver": 10}))

        assert [mid for mid, _ in await movements.list_movements(WORLD, "alice")] == [scout, attack]
        assert [mid for mid, _ in await movements.list_movements(WORLD, "bob")] == [attack]
