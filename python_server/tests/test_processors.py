"""Tests for the per-type movement processors.

Each test seeds a movement into the shared world (see ``conftest``) and
lets the dispatcher process it at ``T0``, then inspects the documents the
transaction wrote.
"""

from __future__ import annotations

from typing import Any

import pytest

from conftest import T0, WORLD, FixedRandom, city_attack_fields, make_movement, seed
from polis.engine.city_rules import CityRules
from polis.engine.combat import CombatResolver
from polis.engine.movement_processor import MovementProcessor
from polis.engine.processors.attack import AttackProcessor
from polis.engine.processors.base import ProcessorDeps
from polis.models.movement import movement_from_dict
from polis.persistence import paths
from polis.persistence.document_store import DocumentStore

ALICE_CITY = paths.city("alice", WORLD, "c1")
BOB_CITY = paths.city("bob", WORLD, "c2")


@pytest.fixture
def processor(store, catalog, game_config, event_bus, cache) -> MovementProcessor:
    return MovementProcessor(store, catalog, game_config, event_bus, cache, rng=FixedRandom(0.0))


async def send(store: DocumentStore, movement_id: str, doc: dict[str, Any]) -> str:
    await seed(store, {paths.movement(WORLD, movement_id): doc})
    return paths.movement(WORLD, movement_id)


async def reports_of(store: DocumentStore, owner: str) -> list[dict[str, Any]]:
    return [data for _, data in await store.query(paths.reports(owner, WORLD))]


# ---------------------------------------------------------------------------
# Player attacks
# ---------------------------------------------------------------------------


class TestAttack:
    async def test_battle_and_return_leg(self, store, world, processor):
        path = await send(store, "m1", make_movement(
            "attack", units={"hoplite": 100}, **city_attack_fields(),
        ))

        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}

        movement = await store.get(path)
        assert movement["status"] == "returning"
        assert movement["arrivalTime"] == T0 + 600
        assert movement["units"] == {"hoplite": 22}
        assert movement["wounded"] == {"hoplite": 11}
        assert movement["resources"] == {"wood": 250, "stone": 250, "silver": 250}
        assert movement["involvedParties"] == ["alice"]

        defender = await store.get(BOB_CITY)
        assert defender["units"] == {"archer": 0}
        assert defender["resources"] == {"wood": 750, "stone": 750, "silver": 750}

        assert (await store.get(paths.account_game("alice", WORLD)))["battlePoints"] == 50
        assert (await store.get(paths.account_game("bob", WORLD)))["battlePoints"] == 67

    async def test_both_sides_get_reports(self, store, world, processor):
        await send(store, "m1", make_movement("attack", units={"hoplite": 100}, **city_attack_fields()))
        await processor.process_due(WORLD, T0)

        [attacker] = await reports_of(store, "alice")
        [defender] = await reports_of(store, "bob")
        assert attacker["title"] == "Attack on Sparta"
        assert attacker["outcome"]["attackerWon"] is True
        assert attacker["defender"]["losses"] == {"archer": 50}
        assert defender["title"] == "Defense of Sparta"
        assert defender["outcome"]["defenderWon"] is False
        assert defender["outcome"]["plunder"] == {}
        assert defender["read"] is False

    async def test_annihilated_attacker_learns_nothing(self, store, world, processor):
        await send(store, "m1", make_movement("attack", units={"swordsman": 5}, **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        [attacker] = await reports_of(store, "alice")
        assert attacker["outcome"]["attackerWon"] is False
        assert "annihilated" in attacker["outcome"]["message"]
        assert attacker["defender"]["units"] == {}

    async def test_vanished_target_sends_troops_home(self, store, world, processor):
        path = await send(store, "m1", make_movement(
            "attack", units={"hoplite": 100}, **city_attack_fields(target_city="gone"),
        ))
        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}

        movement = await store.get(path)
        assert movement["units"] == {"hoplite": 100}
        assert movement["arrivalTime"] == T0 + 600
        [report] = await reports_of(store, "alice")
        assert report["type"] == "attack_failed"

    async def test_defending_hero_wounded_without_prison(self, store, world, processor):
        await store.update(BOB_CITY, {"heroes": {"leonidas": {"cityId": "c2"}}})
        await send(store, "m1", make_movement("attack", units={"hoplite": 100}, **city_attack_fields()))
        await processor.process_due(WORLD, T0)

        defender = await store.get(BOB_CITY)
        hero = defender["heroes"]["leonidas"]
        assert hero["cityId"] == "c2"
        assert hero["woundedUntil"] == T0 + 12 * 3600
        assert "prisoners" not in await store.get(ALICE_CITY)

    async def test_defending_hero_captured_into_prison(self, store, world, processor):
        await store.update(ALICE_CITY, {"buildings.prison": {"level": 1}})
        await store.update(BOB_CITY, {"heroes": {"leonidas": {"cityId": "c2"}}})
        await send(store, "m1", make_movement("attack", units={"hoplite": 100}, **city_attack_fields()))
        await processor.process_due(WORLD, T0)

        [prisoner] = (await store.get(ALICE_CITY))["prisoners"]
        assert prisoner["heroId"] == "leonidas"
        assert prisoner["ownerId"] == "bob"
        assert prisoner["capturedAt"] == T0
        hero = (await store.get(BOB_CITY))["heroes"]["leonidas"]
        assert hero["cityId"] is None
        assert hero["status"] == "captured"
        assert "woundedUntil" not in hero

    async def test_stale_snapshot_is_skipped(self, store, world, catalog, game_config, event_bus, processor):
        path = await send(store, "m1", make_movement("attack", units={"hoplite": 100}, **city_attack_fields()))
        movement = movement_from_dict("m1", await store.get(path))
        ctx = await processor.load_context(WORLD, movement, T0)
        # Someone else rewrote the movement after it was loaded
        await store.update(path, {"arrivalTime": T0 + 50})

        deps = ProcessorDeps(store=store, catalog=catalog, config=game_config,
                             resolver=CombatResolver(catalog, game_config),
                             rules=CityRules(catalog, game_config), event_bus=event_bus)
        assert await AttackProcessor(deps).process(ctx) == "skipped"
        assert (await store.get(BOB_CITY))["units"] == {"archer": 50}
        assert await reports_of(store, "alice") == []


# ---------------------------------------------------------------------------
# Villages, ruins and god towns
# ---------------------------------------------------------------------------


def _village_attack(**fields: Any) -> dict[str, Any]:
    return make_movement("attack_village", units={"hoplite": 100}, targetVillageId="v1",
                         targetVillageName="Farmstead", **fields)


class TestVillageAttack:
    async def test_win_conquers_village(self, store, world, processor):
        path = await send(store, "m1", _village_attack())
        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}

        record = await store.get(paths.conquered_village("alice", WORLD, "v1"))
        assert record == {"level": 1, "lastCollected": T0, "happiness": 100, "happinessLastUpdated": T0}
        movement = await store.get(path)
        assert movement["resources"] == {"wood": 100, "stone": 100, "silver": 100}
        [report] = await reports_of(store, "alice")
        assert report["title"] == "Attack on Farmstead"
        assert report["defender"]["troops"] == {"swordsman": 15, "archer": 10}

    async def test_explicit_troops_are_thinned(self, store, world, processor):
        await store.update(paths.village(WORLD, "v1"), {"troops": {"archer": 5}})
        await send(store, "m1", _village_attack())
        await processor.process_due(WORLD, T0)
        assert (await store.get(paths.village(WORLD, "v1")))["troops"] == {"archer": 0}

    async def test_loss_does_not_conquer(self, store, world, processor):
        await store.update(paths.village(WORLD, "v1"), {"troops": {"archer": 500}})
        await send(store, "m1", make_movement("attack_village", units={"swordsman": 5},
                                              targetVillageId="v1", targetVillageName="Farmstead"))
        await processor.process_due(WORLD, T0)
        assert await store.get(paths.conquered_village("alice", WORLD, "v1")) is None

    async def test_missing_village(self, store, world, processor):
        path = await send(store, "m1", make_movement("attack_village", units={"hoplite": 10},
                                                     targetVillageId="v9", targetVillageName="Nowhere"))
        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}
        assert (await store.get(path))["units"] == {"hoplite": 10}
        [report] = await reports_of(store, "alice")
        assert report["title"] == "Attack on Nowhere failed"


class TestRuinAttack:
    @pytest.fixture
    async def ruin(self, store, world):
        await seed(store, {paths.ruin(WORLD, "r1"): {
            "name": "Old Temple", "x": 20, "y": 20, "troops": {"archer": 5},
            "researchReward": "spy_network",
        }})

    async def test_win_claims_ruin_and_grants_research(self, store, ruin, processor):
        await send(store, "m1", make_movement("attack_ruin", units={"hoplite": 100},
                                              targetRuinId="r1", targetRuinName="Old Temple"))
        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}

        claimed = await store.get(paths.ruin(WORLD, "r1"))
        assert claimed["ownerId"] == "alice"
        assert claimed["troops"] == {}
        city = await store.get(ALICE_CITY)
        assert city["research"]["spy_network"] == {"completed": True, "active": True}
        [report] = await reports_of(store, "alice")
        assert report["outcome"]["reward"] == "spy_network"

    async def test_claimed_ruin_turns_troops_back(self, store, ruin, processor):
        await store.update(paths.ruin(WORLD, "r1"), {"ownerId": "bob"})
        path = await send(store, "m1", make_movement("attack_ruin", units={"hoplite": 100},
                                                     targetRuinId="r1", targetRuinName="Old Temple"))
        assert await processor.process_due(WORLD, T0) == {"m1": "returning"}
        assert (await store.get(path))["units"] == {"hoplite": 100}
        assert (await store.get(paths.ruin(WORLD, "r1")))["ownerId"] == "bob"
        [report] = await reports_of(store, "alice")
        assert report["title"] == "Attack on Old Temple failed"


class TestGodTownAttack:
    async def _attack(self, store, processor, health: int) -> dict[str, str]:
        await seed(store, {paths.god_town(WORLD, "g1"): {
            "name": "Temple of Zeus", "health": health, "troops": {"archer": 50},
        }})
        await send(store, "m1", make_movement("attack_god_town", units={"hoplite": 100},
                                              targetTownId="g1", targetTownName="Temple of Zeus"))
        return await processor.process_due(WORLD, T0)

    async def test_damage_and_war_points(self, store, world, processor):
        await self._attack(store, processor, 1000)
        town = await store.get(paths.god_town(WORLD, "g1"))
        assert town["health"] == 950
        assert town["troops"] == {"archer": 0}
        assert (await store.get(paths.account_game("alice", WORLD)))["warPoints"] == 5
        [report] = await reports_of(store, "alice")
        assert report["outcome"]["warPointsGained"] == 5
        assert report["outcome"]["townDestroyed"] is False

    async def test_town_falls_at_zero_health(self, store, world, processor):
        await self._attack(store, processor, 40)
        assert await store.get(paths.god_town(WORLD, "g1")) is None
        [report] = await reports_of(store, "alice")
        assert report["outcome"]["townDestroyed"] is True


# ---------------------------------------------------------------------------
# Scouting and deliveries
# ---------------------------------------------------------------------------


class TestScout:
    async def test_success_reports_and_deletes(self, store, world, processor):
        path = await send(store, "m1", make_movement("scout", resources={"silver": 1000},
                                                     **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}
        assert await store.get(path) is None

        [report] = await reports_of(store, "alice")
        assert report["title"] == "Scout report of Sparta"
        assert report["scoutSucceeded"] is True
        assert report["units"] == {"archer": 50}
        assert await reports_of(store, "bob") == []

    async def test_failure_feeds_defender_cave(self, store, world, processor):
        await store.update(BOB_CITY, {"cave.silver": 10_000})
        await send(store, "m1", make_movement("scout", resources={"silver": 1000}, **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        assert (await store.get(BOB_CITY))["cave"]["silver"] == 10_500
        [attacker] = await reports_of(store, "alice")
        [defender] = await reports_of(store, "bob")
        assert attacker["title"] == "Scouting Sparta failed"
        assert defender["title"] == "Caught a spy from Athens!"
        assert defender["silverGained"] == 500


class TestDeliveries:
    async def test_reinforcements_are_stationed(self, store, world, processor):
        await send(store, "m1", make_movement("reinforce", units={"swordsman": 10}, **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        expected = {"c1": {"ownerId": "alice", "originCityName": "Athens", "units": {"swordsman": 10}}}
        assert (await store.get(BOB_CITY))["reinforcements"] == expected
        assert (await store.get(paths.city_slot(WORLD, "s2")))["reinforcements"] == expected
        assert [r["title"] for r in await reports_of(store, "alice")] == ["Reinforcement to Sparta"]
        assert [r["title"] for r in await reports_of(store, "bob")] == ["Reinforcements from Athens"]

    async def test_trade_credits_resources(self, store, world, processor):
        await send(store, "m1", make_movement("trade", resources={"wood": 200}, **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        assert (await store.get(BOB_CITY))["resources"]["wood"] == 1200
        assert [r["title"] for r in await reports_of(store, "alice")] == ["Trade to Sparta"]
        assert [r["title"] for r in await reports_of(store, "bob")] == ["Trade from Athens"]


# ---------------------------------------------------------------------------
# Founding
# ---------------------------------------------------------------------------


def _settlers() -> dict[str, Any]:
    return make_movement("found_city", units={"hoplite": 10}, agent="architect",
                         targetSlotId="s3", newCityName="alice's Colony",
                         targetCoords={"x": 40, "y": 40}, foundingTimeSeconds=1800)


class TestFounding:
    async def test_arrival_starts_founding(self, store, world, processor):
        path = await send(store, "m1", _settlers())
        assert await processor.process_due(WORLD, T0) == {"m1": "founding"}

        movement = await store.get(path)
        assert movement["status"] == "founding"
        assert movement["arrivalTime"] == T0 + 1800
        assert movement["outboundSeconds"] == 600
        assert (await store.get(paths.city_slot(WORLD, "s3")))["ownerId"] is None

    async def test_founding_claims_slot_and_creates_city(self, store, world, processor):
        await send(store, "m1", _settlers())
        await processor.process_due(WORLD, T0)
        assert await processor.process_due(WORLD, T0 + 1800) == {"m1": "deleted"}

        slot = await store.get(paths.city_slot(WORLD, "s3"))
        assert slot["ownerId"] == "alice"
        assert slot["cityName"] == "alice's Colony"

        [(city_id, city)] = await store.query(paths.cities("alice", WORLD), [("slotId", "==", "s3")])
        assert city["id"] == city_id
        assert city["units"] == {"hoplite": 10}
        assert city["resources"] == {"wood": 1000, "stone": 1000, "silver": 500}
        assert city["buildings"]["senate"] == {"level": 1}
        assert city["buildings"]["barracks"] == {"level": 0}
        assert city["islandId"] == "i2"
        assert [r["type"] for r in await reports_of(store, "alice")] == ["found_city_success"]

    async def test_lost_race_turns_back(self, store, world, processor):
        path = await send(store, "m1", _settlers())
        await processor.process_due(WORLD, T0)
        await store.update(paths.city_slot(WORLD, "s3"), {"ownerId": "bob"})

        assert await processor.process_due(WORLD, T0 + 1800) == {"m1": "returning"}
        movement = await store.get(path)
        assert movement["arrivalTime"] == T0 + 1800 + 600
        assert movement["units"] == {"hoplite": 10}
        assert movement["agent"] == "architect"
        assert [r["type"] for r in await reports_of(store, "alice")] == ["found_city_failed"]

        # The agent comes back with the party
        assert await processor.process_due(WORLD, T0 + 2400) == {"m1": "deleted"}
        assert (await store.get(ALICE_CITY))["agents"] == {"architect": 2}


# ---------------------------------------------------------------------------
# Returns and hero assignment
# ---------------------------------------------------------------------------


class TestReturn:
    async def test_units_loot_and_wounded_come_home(self, store, world, processor):
        await send(store, "m1", make_movement(
            "attack", status="returning", units={"hoplite": 22},
            resources={"wood": 800, "stone": 100}, wounded={"hoplite": 1200},
            **city_attack_fields(),
        ))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        city = await store.get(ALICE_CITY)
        assert city["units"] == {"hoplite": 122, "swordsman": 20}
        # Warehouse level 1 holds 1500
        assert city["resources"] == {"wood": 1500, "stone": 1100, "silver": 1000}
        # Hospital level 1 holds 1000
        assert city["wounded"] == {"hoplite": 1000}
        [report] = await reports_of(store, "alice")
        assert report["title"] == "Troops returned to Athens"

    async def test_hero_rejoins_city(self, store, world, processor):
        await store.update(ALICE_CITY, {"heroes": {"achilles": {"cityId": None, "status": "away"}}})
        await send(store, "m1", make_movement("attack", status="returning", units={"hoplite": 1},
                                              hero="achilles", **city_attack_fields()))
        await processor.process_due(WORLD, T0)
        assert (await store.get(ALICE_CITY))["heroes"]["achilles"] == {"cityId": None}

    async def test_called_back_scout_refills_cave(self, store, world, processor):
        await store.update(ALICE_CITY, {"cave": {"silver": 50}})
        await send(store, "m1", make_movement("scout", status="returning",
                                              resources={"silver": 300}, **city_attack_fields()))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}

        city = await store.get(ALICE_CITY)
        assert city["cave"] == {"silver": 350}
        assert city["resources"] == {"wood": 1000, "stone": 1000, "silver": 1000}


class TestAssignHero:
    async def test_hero_is_stationed(self, store, world, processor):
        await send(store, "m1", make_movement("assign_hero", hero="achilles",
                                              targetOwnerId="alice", targetCityId="c1"))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}
        assert (await store.get(ALICE_CITY))["heroes"]["achilles"]["cityId"] == "c1"

    async def test_missing_city_reports_failure(self, store, world, processor):
        await send(store, "m1", make_movement("assign_hero", hero="achilles",
                                              targetOwnerId="alice", targetCityId="c9"))
        assert await processor.process_due(WORLD, T0) == {"m1": "deleted"}
        [report] = await reports_of(store, "alice")
        assert report["type"] == "assign_hero_failed"
        assert report["hero"] == "achilles"
