"""Movement service — sending and cancelling movements.

A send order is validated against the origin city as it is *now* (caught
up to the current time), then the movement document is created and the
origin city debited in one transaction.  Cancelling turns an outgoing
movement around while its grace period lasts.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from polis.engine.travel import FAST_MODES, distance, travel_seconds
from polis.models.catalog import UnitType
from polis.models.movement import MovementStatus, MovementType
from polis.persistence import paths
from polis.util.constants import HERO_STATUS_CAPTURED, RESOURCE_KEYS
from polis.util.errors import MovementRejected

if TYPE_CHECKING:
    from polis.engine.accounts import AccountDirectory
    from polis.engine.catalog import Catalog
    from polis.engine.city_rules import CityRules
    from polis.loaders.game_config_loader import GameConfig
    from polis.persistence.document_store import DocumentStore, Transaction

log = logging.getLogger(__name__)

SEND_MODES = ("attack", "reinforce", "scout", "trade", "found_city", "assign_hero")
TARGET_KINDS = ("city", "village", "ruin", "god_town")

BASE_FOUNDING_TIME_S = 86400
FOUNDING_REDUCTION_PER_VILLAGER_S = 3600
MIN_FOUNDING_TIME_S = 3600


@dataclass
class SendOrder:
    """A player's request to send a movement.

    ``target_id`` is a city slot id for ``target_kind="city"``, otherwise
    the id of the village, ruin or god town.
    """

    mode: str
    target_kind: str
    target_id: str
    units: dict[str, int] = field(default_factory=dict)
    resources: dict[str, int] = field(default_factory=dict)
    hero: Optional[str] = None
    agent: Optional[str] = None
    attack_formation: dict[str, str] = field(default_factory=dict)


@dataclass
class _Target:
    kind: str
    doc_id: str
    data: dict[str, Any]
    owner_id: Optional[str] = None
    city_id: Optional[str] = None


class MovementService:
    """Creates and cancels movements on behalf of players.

    Args:
        store: Document store.
        catalog: Unit catalog for speeds, types and capacities.
        rules: City formulas (accrual, market capacity).
        accounts: Account and alliance lookups.
        config: Game configuration.
    """

    def __init__(self, store: DocumentStore, catalog: Catalog, rules: CityRules,
                 accounts: AccountDirectory, config: GameConfig) -> None:
        self._store = store
        self._catalog = catalog
        self._rules = rules
        self._accounts = accounts
        self._cfg = config

    # -- Queries ---------------------------------------------------------

    async def list_movements(self, world_id: str, account_id: str) -> list[tuple[str, dict[str, Any]]]:
        """Movements the account is involved in, soonest arrival first."""
        rows = await self._store.query(
            paths.movements(world_id), [("involvedParties", "array_contains", account_id)],
        )
        rows.sort(key=lambda row: row[1].get("arrivalTime") or 0)
        return rows

    # -- Send ------------------------------------------------------------

    async def send(self, world_id: str, account_id: str, origin_city_id: str,
                   order: SendOrder) -> str:
        """Validate *order* and create its movement.

        Returns:
            The new movement id.

        Raises:
            MovementRejected: With a message for the player.
        """
        if order.mode not in SEND_MODES:
            raise MovementRejected(f"Unknown movement mode: {order.mode}")
        if order.target_kind not in TARGET_KINDS:
            raise MovementRejected(f"Unknown target: {order.target_kind}")
        if order.target_kind != "city" and order.mode != "attack":
            raise MovementRejected("Only attacks can target villages, ruins and god towns.")

        units = {uid: int(n) for uid, n in (order.units or {}).items() if n and int(n) > 0}
        resources = {key: int(n) for key, n in (order.resources or {}).items() if n and int(n) > 0}
        for uid in units:
            if self._catalog.unit(uid) is None:
                raise MovementRejected(f"Unknown unit: {uid}")

        target = await self._load_target(world_id, order)
        username = await self._accounts.username(account_id)
        world_state = await self._store.get(paths.world(world_id))
        alliance = await self._accounts.alliance(world_id, account_id)
        origin_path = paths.city(account_id, world_id, origin_city_id)
        movement_id = self._store.new_id()
        city_names: list[str] = []
        if order.mode == "found_city":
            rows = await self._store.query(paths.cities(account_id, world_id))
            city_names = [data.get("cityName", "") for _, data in rows]

        async def apply(tx: Transaction) -> dict[str, Any]:
            origin = await tx.get(origin_path)
            if origin is None:
                raise MovementRejected("Cannot send movement: your city could not be found.")
            now = self._store.server_time()
            city = self._rules.accrue(origin, now, alliance)

            self._check_target(order, target, account_id, origin_city_id, city)
            is_cross_island = self._check_crossing(order, target, city, units)
            if not units and order.mode not in FAST_MODES and not order.hero:
                raise MovementRejected("No units or hero selected for movement.")

            debit = self._debit(order, city, units, resources, now)
            seconds = self._travel_time(order, city, target, units, world_state)
            if math.isinf(seconds):
                raise MovementRejected("Your forces cannot travel in these conditions.")

            movement = self._movement_doc(order, target, city, origin_city_id, account_id, username,
                                          units, resources, is_cross_island, now, seconds, city_names)
            tx.set(paths.movement(world_id, movement_id), movement)
            tx.update(origin_path, debit)
            return movement

        movement = await self._store.run_transaction(apply)
        log.info("[STATE] Movement %s created: %s %s → %s (arrives %.0f)",
                 movement_id, movement["type"], origin_city_id, order.target_id, movement["arrivalTime"])
        return movement_id

    async def _load_target(self, world_id: str, order: SendOrder) -> _Target:
        if order.target_kind == "village":
            data = await self._store.get(paths.village(world_id, order.target_id))
        elif order.target_kind == "ruin":
            data = await self._store.get(paths.ruin(world_id, order.target_id))
        elif order.target_kind == "god_town":
            data = await self._store.get(paths.god_town(world_id, order.target_id))
        else:
            data = await self._store.get(paths.city_slot(world_id, order.target_id))
        if data is None:
            raise MovementRejected("The target could not be found.")
        target = _Target(order.target_kind, order.target_id, data)

        if order.target_kind == "city" and data.get("ownerId"):
            target.owner_id = data["ownerId"]
            rows = await self._store.query(
                paths.cities(target.owner_id, world_id), [("slotId", "==", order.target_id)], limit=1,
            )
            if not rows:
                raise MovementRejected(
                    "Could not find the target city's data. It may have been conquered or deleted.")
            target.city_id = rows[0][0]
        return target

    def _check_target(self, order: SendOrder, target: _Target, account_id: str,
                      origin_city_id: str, city: dict[str, Any]) -> None:
        if order.mode == "found_city":
            if target.owner_id is not None:
                raise MovementRejected("This plot has already been claimed.")
            return
        if order.target_kind != "city":
            if order.target_kind == "ruin" and target.data.get("ownerId"):
                raise MovementRejected("These ruins have already been conquered.")
            if order.target_kind == "village" and city.get("islandId") != target.data.get("islandId"):
                raise MovementRejected("You can only attack villages from a city on the same island.")
            return
        if target.owner_id is None:
            raise MovementRejected("There is no city on this plot.")
        own_target = target.owner_id == account_id
        if order.mode in ("attack", "scout") and own_target:
            raise MovementRejected("You cannot target your own cities.")
        if order.mode == "assign_hero":
            if not own_target:
                raise MovementRejected("Heroes can only be assigned to your own cities.")
            if not order.hero:
                raise MovementRejected("No hero selected.")
        if target.city_id == origin_city_id and order.mode != "assign_hero":
            raise MovementRejected("The target is the sending city.")

    def _check_crossing(self, order: SendOrder, target: _Target, city: dict[str, Any],
                        units: dict[str, int]) -> bool:
        """Return whether the trip crosses the sea; reject impossible crossings."""
        if order.target_kind in ("ruin", "god_town"):
            crossing = True
        elif order.target_kind == "village":
            crossing = False
        else:
            crossing = city.get("islandId") != target.data.get("islandId")
        if not crossing:
            return False

        land = naval = flying = False
        capacity = land_count = 0
        for uid, count in units.items():
            unit = self._catalog.unit(uid)
            if unit.type == UnitType.LAND:
                land = True
                land_count += count
                flying = flying or unit.flying
            else:
                naval = True
                capacity += unit.capacity * count
        if land and not naval and not flying:
            raise MovementRejected("Ground troops cannot travel across the sea without transport ships.")
        if land and capacity < land_count and not flying:
            raise MovementRejected(
                f"Not enough transport ship capacity. Need {land_count - capacity} more capacity.")
        return True

    def _debit(self, order: SendOrder, city: dict[str, Any], units: dict[str, int],
               resources: dict[str, int], now: float) -> dict[str, Any]:
        """Fields to write on the origin city; raises if it cannot pay."""
        garrison = dict(city.get("units") or {})
        for uid, count in units.items():
            if garrison.get(uid, 0) < count:
                raise MovementRejected(f"Not enough {self._catalog.display_name(uid)} in {city.get('cityName', 'your city')}.")
            garrison[uid] -= count

        fields: dict[str, Any] = {
            "units": garrison,
            "worship": city.get("worship") or {},
            "lastUpdated": now,
        }
        stock = dict(city.get("resources") or {})
        if order.mode == "scout":
            silver = resources.get("silver", 0)
            cave = dict(city.get("cave") or {})
            if (cave.get("silver") or 0) < silver:
                raise MovementRejected("Not enough silver in the cave.")
            cave["silver"] = (cave.get("silver") or 0) - silver
            fields["cave"] = cave
        elif resources:
            if order.mode == "trade":
                capacity = self._rules.market_capacity(city)
                if sum(resources.values()) > capacity:
                    raise MovementRejected(f"Trade exceeds your market capacity of {capacity}.")
            for key, amount in resources.items():
                if key not in RESOURCE_KEYS:
                    raise MovementRejected(f"Unknown resource: {key}")
                if (stock.get(key) or 0) < amount:
                    raise MovementRejected(f"Not enough {key}.")
                stock[key] = (stock.get(key) or 0) - amount
        fields["resources"] = stock

        if order.hero:
            heroes = city.get("heroes") or {}
            state = heroes.get(order.hero)
            if state is None:
                raise MovementRejected("This hero is not in your city.")
            if state.get("status") == HERO_STATUS_CAPTURED:
                raise MovementRejected("This hero is imprisoned.")
            if (state.get("woundedUntil") or 0) > now:
                raise MovementRejected("This hero is still recovering from wounds.")
            if order.mode != "assign_hero":
                fields[f"heroes.{order.hero}.cityId"] = None

        if order.mode == "found_city":
            agents = dict(city.get("agents") or {})
            if not order.agent or agents.get(order.agent, 0) < 1:
                raise MovementRejected("An architect is needed to found a city.")
            agents[order.agent] -= 1
            fields["agents"] = agents
        return fields

    def _travel_time(self, order: SendOrder, city: dict[str, Any], target: _Target,
                     units: dict[str, int], world_state: Optional[dict[str, Any]]) -> float:
        unit_types: set[str] = set()
        speeds = []
        for uid in units:
            unit = self._catalog.unit(uid)
            speeds.append(unit.speed)
            unit_types.add(unit.type.value)
            if unit.flying:
                unit_types.add("flying")
        speed = min(speeds) if speeds else self._cfg.default_unit_speed
        dist = distance(city, target.data)
        return travel_seconds(dist, speed, order.mode, world_state, unit_types, self._cfg)

    def _movement_doc(self, order: SendOrder, target: _Target, city: dict[str, Any],
                      origin_city_id: str, account_id: str, username: str,
                      units: dict[str, int], resources: dict[str, int],
                      is_cross_island: bool, now: float, seconds: float,
                      city_names: list[str]) -> dict[str, Any]:
        target_name = target.data.get("cityName") or target.data.get("name", "")
        doc: dict[str, Any] = {
            "status": MovementStatus.MOVING.value,
            "originCityId": origin_city_id,
            "originCoords": {"x": city.get("x"), "y": city.get("y")},
            "originOwnerId": account_id,
            "originCityName": city.get("cityName", ""),
            "originOwnerUsername": username,
            "targetCoords": {"x": target.data.get("x"), "y": target.data.get("y")},
            "units": units,
            "hero": order.hero,
            "resources": resources,
            "departureTime": now,
            "arrivalTime": now + seconds,
            "cancellableUntil": now + self._cfg.cancel_window_s,
            "attackFormation": dict(order.attack_formation or {}),
            "involvedParties": [account_id],
            "isCrossIsland": is_cross_island,
        }
        kind = order.target_kind
        if kind == "village":
            doc.update(type=MovementType.ATTACK_VILLAGE.value,
                       targetVillageId=target.doc_id, targetVillageName=target_name)
        elif kind == "ruin":
            doc.update(type=MovementType.ATTACK_RUIN.value,
                       targetRuinId=target.doc_id, targetRuinName=target_name)
        elif kind == "god_town":
            doc.update(type=MovementType.ATTACK_GOD_TOWN.value,
                       targetTownId=target.doc_id, targetTownName=target_name)
        elif order.mode == "found_city":
            villagers = units.get("villager", 0)
            doc.update(
                type=MovementType.FOUND_CITY.value,
                targetSlotId=target.doc_id,
                agent=order.agent,
                newCityName=self._colony_name(username, city_names),
                foundingTimeSeconds=max(
                    MIN_FOUNDING_TIME_S,
                    BASE_FOUNDING_TIME_S - villagers * FOUNDING_REDUCTION_PER_VILLAGER_S,
                ),
            )
            doc.pop("cancellableUntil")
        elif order.mode == "assign_hero":
            doc.update(type=MovementType.ASSIGN_HERO.value,
                       targetOwnerId=target.owner_id, targetCityId=target.city_id)
        else:
            doc.update(
                type=order.mode,
                targetOwnerId=target.owner_id,
                targetCityId=target.city_id,
                targetSlotId=target.doc_id,
                targetCityName=target_name,
                ownerUsername=target.data.get("ownerUsername", ""),
            )
            if order.mode != "scout" and target.owner_id != account_id:
                doc["involvedParties"] = [account_id, target.owner_id]
        return doc

    @staticmethod
    def _colony_name(username: str, existing: list[str]) -> str:
        base = f"{username}'s Colony"
        if base not in existing:
            return base
        count = 2
        while f"{base} {count}" in existing:
            count += 1
        return f"{base} {count}"

    # -- Cancel ----------------------------------------------------------

    async def cancel(self, world_id: str, account_id: str, movement_id: str) -> float:
        """Turn an outgoing movement around within its grace period.

        The way back takes as long as the movement has travelled so far.

        Returns:
            The new arrival time.
        """
        path = paths.movement(world_id, movement_id)

        async def apply(tx: Transaction) -> float:
            movement = await tx.get(path)
            if movement is None:
                raise MovementRejected("Movement data not found.")
            if movement.get("originOwnerId") != account_id:
                raise MovementRejected("You can only cancel your own movements.")
            if movement.get("status") != MovementStatus.MOVING.value:
                raise MovementRejected("Only outgoing movements can be cancelled.")
            now = self._store.server_time()
            until = movement.get("cancellableUntil")
            if until is None or now > until:
                raise MovementRejected("The grace period to cancel this movement has passed.")
            elapsed = max(0.0, now - (movement.get("departureTime") or now))
            arrival = now + elapsed
            tx.update(path, {
                "status": MovementStatus.RETURNING.value,
                "arrivalTime": arrival,
                "departureTime": now,
                "cancellableUntil": None,
                "involvedParties": [account_id],
            })
            return arrival

        arrival = await self._store.run_transaction(apply)
        log.info("[STATE] Movement %s: MOVING → RETURNING (cancelled, arrives %.0f)", movement_id, arrival)
        return arrival
