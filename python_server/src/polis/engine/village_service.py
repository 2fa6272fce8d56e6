"""Village service — actions on conquered farming villages.

A conquered village is a per-account record
(``users/{uid}/games/{world}/conqueredVillages/{villageId}``) next to the
shared village document (``worlds/{world}/villages/{villageId}``).

- ``demand``: collect the village's demand yield for one of the demand
  options, once the option's duration has passed since the last
  collection.  Costs a little happiness.
- ``plunder``: seize half of the village's stock.  Costs a lot of
  happiness; at or below the revolt threshold the village revolts, the
  army suffers retaliation losses and the record is lost.
- Happiness regenerates linearly over time up to 100 and is written
  back whenever the account lists its villages.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Optional

from polis.engine.retaliation import resolve_village_retaliation
from polis.models.report import Report
from polis.persistence import paths
from polis.util.constants import RESOURCE_KEYS
from polis.util.errors import ActionRejected
from polis.util.events import ReportCreated

if TYPE_CHECKING:
    from polis.engine.accounts import AccountDirectory
    from polis.engine.catalog import Catalog
    from polis.engine.city_rules import CityRules
    from polis.loaders.game_config_loader import DemandOption, GameConfig
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

REVOLT_MESSAGE = ("Your plunder attempt on a low-happiness village caused a revolt! "
                  "You have lost control and suffered casualties, but secured the resources.")


class VillageService:
    """Demand, plunder and happiness of conquered villages.

    Args:
        store: Document store.
        catalog: Unit catalog for retaliation losses.
        rules: City formulas (accrual, warehouse capacity).
        accounts: Username and alliance lookups.
        event_bus: Receives ``ReportCreated``.
        config: Village constants.
    """

    def __init__(self, store: DocumentStore, catalog: Catalog, rules: CityRules,
                 accounts: AccountDirectory, event_bus: EventBus, config: GameConfig) -> None:
        self._store = store
        self._catalog = catalog
        self._rules = rules
        self._accounts = accounts
        self._events = event_bus
        self._cfg = config

    # -- Happiness -------------------------------------------------------

    def current_happiness(self, record: dict[str, Any], now: float) -> float:
        """Happiness of a conquered village caught up to *now*."""
        happiness = record.get("happiness")
        if happiness is None:
            happiness = 100.0
        last = record.get("happinessLastUpdated") or now
        elapsed_hours = max(0.0, now - last) / 3600
        return min(100.0, happiness + elapsed_hours * self._cfg.village_happiness_regen_per_hour)

    async def regenerate_happiness(self, world_id: str, account_id: str, now: float) -> int:
        """Persist regenerated happiness on all of the account's villages.

        Returns:
            Number of records updated.
        """
        collection = paths.conquered_villages(account_id, world_id)
        batch = self._store.batch()
        for village_id, record in await self._store.query(collection):
            happiness = self.current_happiness(record, now)
            if happiness > (record.get("happiness") or 0):
                batch.update(f"{collection}/{village_id}", {
                    "happiness": happiness,
                    "happinessLastUpdated": now,
                })
        if len(batch):
            await batch.commit()
        return len(batch)

    async def list_conquered(self, world_id: str, account_id: str,
                             now: float) -> list[dict[str, Any]]:
        """Return the account's conquered villages with happiness caught up to *now*."""
        await self.regenerate_happiness(world_id, account_id, now)
        rows = await self._store.query(paths.conquered_villages(account_id, world_id))
        return [dict(record, id=village_id) for village_id, record in rows]

    # -- Demand ----------------------------------------------------------

    def demand_option(self, name: str) -> DemandOption:
        for option in self._cfg.demand_options:
            if option.name == name:
                return option
        raise ActionRejected(f"Unknown demand option: {name}")

    async def demand(self, world_id: str, account_id: str, city_id: str,
                     village_id: str, option_name: str, now: float) -> dict[str, int]:
        """Collect resources from a conquered village into *city_id*.

        Returns:
            The resources collected.

        Raises:
            ActionRejected: Unknown option, missing documents or the
                option's time has not passed yet.
        """
        option = self.demand_option(option_name)
        record_path = paths.conquered_village(account_id, world_id, village_id)
        village_path = paths.village(world_id, village_id)
        city_path = paths.city(account_id, world_id, city_id)
        alliance = await self._accounts.alliance(world_id, account_id)
        island_bonus = await self._island_bonus(world_id, account_id, village_id)

        async def apply(tx: Transaction) -> dict[str, int]:
            record = await tx.get(record_path)
            village = await tx.get(village_path)
            city = await tx.get(city_path)
            if record is None or village is None or city is None:
                raise ActionRejected("Your village or active city could not be found.")
            if now < (record.get("lastCollected") or 0) + option.duration:
                raise ActionRejected("Not enough time has passed for this demand option.")

            level = record.get("level") or village.get("level") or 1
            base = village.get("demandYield") or {}
            collected = {
                key: math.floor((base.get(key) or 0) * option.multiplier * level * island_bonus)
                for key in RESOURCE_KEYS
            }
            city = self._rules.accrue(city, now, alliance)
            tx.update(city_path, self._credit(city, collected, alliance, now))
            tx.update(record_path, {
                "lastCollected": now,
                "happiness": max(0.0, self.current_happiness(record, now) - option.happiness_cost),
                "happinessLastUpdated": now,
            })
            return collected

        collected = await self._store.run_transaction(apply)
        log.info("[STATE] %s demanded %s from village %s", account_id, collected, village_id)
        return collected

    async def _island_bonus(self, world_id: str, account_id: str, village_id: str) -> float:
        """Bonus for owning more than one city on the village's island."""
        village = await self._store.get(paths.village(world_id, village_id))
        if village is None:
            return 1.0
        cities = await self._store.query(
            paths.cities(account_id, world_id), [("islandId", "==", village.get("islandId"))],
        )
        return self._cfg.village_island_bonus if len(cities) > 1 else 1.0

    # -- Plunder ---------------------------------------------------------

    async def plunder(self, world_id: str, account_id: str, city_id: str,
                      village_id: str, now: float) -> dict[str, Any]:
        """Seize half of a conquered village's stock.

        Returns:
            ``{"revolt": bool, "plunder": {...}, "losses": {...}}``
        """
        record_path = paths.conquered_village(account_id, world_id, village_id)
        village_path = paths.village(world_id, village_id)
        city_path = paths.city(account_id, world_id, city_id)
        alliance = await self._accounts.alliance(world_id, account_id)
        username = await self._accounts.username(account_id)
        report_id = self._store.new_id()

        async def apply(tx: Transaction) -> tuple[dict[str, Any], Report]:
            record = await tx.get(record_path)
            city = await tx.get(city_path)
            village = await tx.get(village_path)
            if record is None or city is None or village is None:
                raise ActionRejected("Required data not found.")
            last = record.get("lastPlundered")
            if last is not None and now < last + self._cfg.village_plunder_cooldown_s:
                raise ActionRejected("You must wait before plundering again.")

            stock = dict(village.get("resources") or {})
            seized = {key: math.floor((stock.get(key) or 0) * self._cfg.village_plunder_ratio)
                      for key in RESOURCE_KEYS}
            for key, amount in seized.items():
                stock[key] = (stock.get(key) or 0) - amount
            city = self._rules.accrue(city, now, alliance)
            city_fields = self._credit(city, seized, alliance, now)
            tx.update(village_path, {"resources": stock})

            happiness = self.current_happiness(record, now)
            attacker = {
                "cityId": city_id,
                "cityName": city.get("cityName", ""),
                "ownerId": account_id,
                "username": username,
                "x": city.get("x"),
                "y": city.get("y"),
            }
            defender = {"villageName": village.get("name", ""), "x": village.get("x"), "y": village.get("y")}
            losses: dict[str, int] = {}
            revolt = happiness <= self._cfg.village_revolt_happiness

            if revolt:
                losses = resolve_village_retaliation(
                    self._catalog, city.get("units") or {}, self._cfg.village_retaliation_ratio,
                )
                units = dict(city.get("units") or {})
                for uid, lost in losses.items():
                    units[uid] = max(0, units.get(uid, 0) - lost)
                city_fields["units"] = units
                tx.delete(record_path)
                report = Report("attack_village", f"Revolt at {village.get('name', '')}!", now, {
                    "outcome": {"attackerWon": False, "message": REVOLT_MESSAGE, "plunder": seized},
                    "attacker": dict(attacker, units={}, losses=losses),
                    "defender": defender,
                })
                log.info("[STATE] Village %s revolted against %s", village_id, account_id)
            else:
                tx.update(record_path, {
                    "happiness": max(0.0, happiness - self._cfg.village_plunder_happiness_cost),
                    "happinessLastUpdated": now,
                    "lastPlundered": now,
                })
                report = Report("attack_village", f"Plunder of {village.get('name', '')} successful!", now, {
                    "outcome": {"attackerWon": True, "plunder": seized},
                    "attacker": attacker,
                    "defender": defender,
                })

            tx.update(city_path, city_fields)
            tx.set(paths.report(account_id, world_id, report_id), report.to_dict())
            return {"revolt": revolt, "plunder": seized, "losses": losses}, report

        result, report = await self._store.run_transaction(apply)
        self._events.emit(ReportCreated(world_id=world_id, owner_id=account_id,
                                        report_type=report.type, title=report.title))
        return result

    # -- Helpers ---------------------------------------------------------

    def _credit(self, city: dict[str, Any], gained: dict[str, int],
                alliance: Optional[dict[str, Any]], now: float) -> dict[str, Any]:
        """City fields after crediting *gained*, capped at the warehouse."""
        resources = dict(city.get("resources") or {})
        for key, amount in gained.items():
            resources[key] = (resources.get(key) or 0) + amount
        return {
            "resources": self._rules.clamp_resources(resources, city, alliance),
            "worship": city.get("worship") or {},
            "lastUpdated": now,
        }
