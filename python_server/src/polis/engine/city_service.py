"""City service — simulation tick for active cities.

Responsibilities:
- Resource and favor accrual (every ``city_tick_interval_s``)
- Completion of build, unit, research and heal queues
  (every ``queue_tick_interval_s``)
- Periodic autosave with warehouse clamping (every ``autosave_interval_s``)

Only cities an account currently has open are ticked.  Stored resources
are valid as of ``lastUpdated``; every persisted change first catches the
city up to *now*, so nothing is lost between ticks.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from polis.engine.city_rules import CityRules
from polis.persistence import paths
from polis.util.constants import QUEUE_NAMES, RESOURCE_KEYS, UNIT_QUEUES
from polis.util.errors import ActionRejected
from polis.util.events import CitySaved, QueueItemCompleted

if TYPE_CHECKING:
    from polis.engine.accounts import AccountDirectory
    from polis.engine.catalog import Catalog
    from polis.loaders.game_config_loader import GameConfig
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)


@dataclass
class ActiveCity:
    """A city currently open by its owner, with its last known state."""

    world_id: str
    account_id: str
    city_id: str
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return paths.city(self.account_id, self.world_id, self.city_id)


class CityService:
    """Service advancing the active cities.

    Args:
        store: Document store holding the city documents.
        catalog: Static unit/building/research tables.
        rules: City formulas.
        accounts: Cached alliance lookups.
        event_bus: Receives ``QueueItemCompleted`` and ``CitySaved``.
        game_config: Tick intervals.
    """

    def __init__(self, store: DocumentStore, catalog: Catalog, rules: CityRules,
                 accounts: AccountDirectory, event_bus: EventBus,
                 game_config: GameConfig) -> None:
        self._store = store
        self._catalog = catalog
        self._rules = rules
        self._accounts = accounts
        self._events = event_bus
        self._cfg = game_config
        self._active: dict[tuple[str, str], ActiveCity] = {}
        self._running = False

    # -- Active city registry --------------------------------------------

    async def activate(self, world_id: str, account_id: str, city_id: str) -> Optional[ActiveCity]:
        """Make *city_id* the account's open city; returns ``None`` if missing."""
        data = await self._store.get(paths.city(account_id, world_id, city_id))
        if data is None:
            return None
        active = ActiveCity(world_id, account_id, city_id, self._normalize(data))
        self._active[(world_id, account_id)] = active
        log.info("City activated: %s/%s/%s", world_id, account_id, city_id)
        return active

    def deactivate(self, world_id: str, account_id: str) -> None:
        self._active.pop((world_id, account_id), None)

    def active(self, world_id: str, account_id: str) -> Optional[ActiveCity]:
        return self._active.get((world_id, account_id))

    @property
    def active_cities(self) -> list[ActiveCity]:
        return list(self._active.values())

    def _normalize(self, data: dict[str, Any]) -> dict[str, Any]:
        """Fill in fields older documents may lack."""
        city = copy.deepcopy(data)
        buildings = city.setdefault("buildings", {})
        for building_id in self._catalog.buildings:
            buildings.setdefault(building_id, {"level": 0})
        for key in ("units", "wounded", "worship", "research"):
            city.setdefault(key, {})
        city.setdefault("cave", {"silver": 0})
        for queue in QUEUE_NAMES:
            city.setdefault(queue, [])
        return city

    # -- Accrual ---------------------------------------------------------

    async def accrue(self, city: dict[str, Any], now: float,
                     alliance: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Return *city* with resources and favor caught up to *now*."""
        return self._rules.accrue(city, now, alliance)

    async def tick(self, now: float) -> None:
        """Advance the in-memory state of every active city."""
        for active in self.active_cities:
            alliance = await self._accounts.alliance(active.world_id, active.account_id)
            active.state = self._rules.accrue(active.state, now, alliance)

    # -- Queues ----------------------------------------------------------

    def process_queues(self, city: dict[str, Any], now: float
                       ) -> tuple[dict[str, Any], list[QueueItemCompleted]]:
        """Apply every queue entry whose ``endTime`` has passed.

        Queues are handled in the fixed order of ``QUEUE_NAMES``; within a
        queue, entries complete in list order.

        Returns:
            The updated city and one notification per completed entry.
        """
        city = copy.deepcopy(city)
        city_id = city.get("id", "")
        done: list[QueueItemCompleted] = []
        for queue in QUEUE_NAMES:
            entries = city.get(queue) or []
            if not entries:
                continue
            pending = []
            completed = []
            for task in entries:
                end_time = task.get("endTime")
                if not isinstance(end_time, (int, float)):
                    log.error("Dropping %s entry without endTime in city %s: %r", queue, city_id, task)
                    continue
                (completed if now >= end_time else pending).append(task)
            if not completed:
                continue
            city[queue] = pending
            for task in completed:
                self._complete(city, queue, task)
                done.append(self._notification(city, queue, task))
        return city, done

    def _complete(self, city: dict[str, Any], queue: str, task: dict[str, Any]) -> None:
        if queue == "buildQueue":
            self._complete_build(city, task)
        elif queue in UNIT_QUEUES or queue == "healQueue":
            units = city.setdefault("units", {})
            unit_id = task.get("unitId", "")
            units[unit_id] = units.get(unit_id, 0) + int(task.get("amount") or 0)
        elif queue == "researchQueue":
            city.setdefault("research", {})[task.get("researchId", "")] = {
                "completed": True, "active": True,
            }

    def _complete_build(self, city: dict[str, Any], task: dict[str, Any]) -> None:
        buildings = city.setdefault("buildings", {})
        building_id = task.get("buildingId", "")
        level = int(task.get("level") or 0)
        if task.get("type") == "demolish":
            if building_id in buildings:
                buildings[building_id]["level"] = level
            if building_id == "academy":
                self._set_research_activity(city, level)
        elif task.get("isSpecial"):
            city["specialBuilding"] = building_id
        else:
            buildings.setdefault(building_id, {"level": 0})["level"] = level
            if building_id == "academy":
                self._set_research_activity(city, level)

    def _set_research_activity(self, city: dict[str, Any], academy_level: int) -> None:
        """Deactivate research above *academy_level*, reactivate the rest."""
        research = city.setdefault("research", {})
        for research_id, state in list(research.items()):
            completed = state is True or (isinstance(state, dict) and state.get("completed"))
            if not completed:
                continue
            details = self._catalog.research(research_id)
            if details is None:
                continue
            research[research_id] = {
                "completed": True,
                "active": details.academy_level <= academy_level,
            }

    def _notification(self, city: dict[str, Any], queue: str,
                      task: dict[str, Any]) -> QueueItemCompleted:
        city_name = city.get("cityName", "")
        name = self._catalog.display_name
        if queue == "buildQueue":
            building_id = task.get("buildingId", "")
            if task.get("type") == "demolish":
                message = f"Demolition of {name(building_id)} is complete in {city_name}."
            else:
                message = f"Your {name(building_id)} (Level {task.get('level')}) is complete in {city_name}."
            icon_type, icon_id = "building", building_id
        elif queue == "researchQueue":
            message = f"Research for {name(task.get('researchId', ''))} is complete in {city_name}."
            icon_type, icon_id = "building", "academy"
        elif queue == "healQueue":
            unit_id = task.get("unitId", "")
            message = f"Healing of {task.get('amount')}x {name(unit_id)} is complete in {city_name}."
            icon_type, icon_id = "unit", unit_id
        else:
            unit_id = task.get("unitId", "")
            message = f"Training of {task.get('amount')}x {name(unit_id)} is complete in {city_name}."
            icon_type, icon_id = "unit", unit_id
        return QueueItemCompleted(
            city_id=city.get("id", ""), queue=queue, message=message,
            icon_type=icon_type, icon_id=icon_id,
        )

    async def tick_queues(self, active: ActiveCity, now: float) -> list[QueueItemCompleted]:
        """Persist completed queue entries of one city and notify."""
        async def apply(tx: Transaction) -> list[QueueItemCompleted]:
            stored = await tx.get(active.path)
            if stored is None:
                return []
            updated, done = self.process_queues(dict(stored, id=active.city_id), now)
            if done:
                fields = {queue: updated.get(queue, []) for queue in QUEUE_NAMES if queue in stored}
                for key in ("buildings", "units", "research", "specialBuilding"):
                    if key in updated:
                        fields[key] = updated[key]
                tx.update(active.path, fields)
            return done

        done = await self._store.run_transaction(apply)
        if done:
            refreshed = await self._store.get(active.path)
            if refreshed is not None:
                active.state = self._normalize(self._rules.accrue(
                    refreshed, now,
                    await self._accounts.alliance(active.world_id, active.account_id),
                ))
            for note in done:
                log.info("[STATE] City %s: %s", active.city_id, note.message)
                self._events.emit(note)
        return done

    # -- Autosave --------------------------------------------------------

    async def save(self, active: ActiveCity, now: float) -> None:
        """Catch the stored city up to *now* and clamp its resources."""
        alliance = await self._accounts.alliance(active.world_id, active.account_id)

        async def apply(tx: Transaction) -> Optional[dict[str, Any]]:
            stored = await tx.get(active.path)
            if stored is None:
                return None
            accrued = self._rules.accrue(stored, now, alliance)
            resources = dict(accrued.get("resources") or {})
            resources.update(self._rules.clamp_resources(
                {k: resources.get(k, 0) for k in ("wood", "stone", "silver")}, accrued, alliance,
            ))
            accrued["resources"] = resources
            tx.update(active.path, {
                "resources": resources,
                "worship": accrued.get("worship") or {},
                "lastUpdated": accrued["lastUpdated"],
            })
            return accrued

        saved = await self._store.run_transaction(apply)
        if saved is None:
            log.warning("Active city %s vanished; deactivating", active.city_id)
            self.deactivate(active.world_id, active.account_id)
            return
        active.state = self._normalize(saved)
        self._events.emit(CitySaved(world_id=active.world_id, city_id=active.city_id))

    async def autosave(self, now: float) -> None:
        for active in self.active_cities:
            await self.save(active, now)

    # -- War points ------------------------------------------------------

    async def convert_war_points(self, world_id: str, account_id: str, city_id: str,
                                 points: int, now: float) -> dict[str, float]:
        """Trade war points for resources in one of the account's cities.

        Each point buys ``war_point_resource_value`` of every resource;
        anything beyond the warehouse is lost.

        Raises:
            ActionRejected: Not enough war points or no such city.
        """
        if points <= 0:
            raise ActionRejected("Choose how many war points to convert.")
        game_path = paths.account_game(account_id, world_id)
        city_path = paths.city(account_id, world_id, city_id)
        alliance = await self._accounts.alliance(world_id, account_id)

        async def apply(tx: Transaction) -> dict[str, float]:
            game = await tx.get(game_path)
            city = await tx.get(city_path)
            if city is None:
                raise ActionRejected("City not found.")
            available = (game or {}).get("warPoints") or 0
            if available < points:
                raise ActionRejected(f"Not enough war points ({available} available).")
            city = self._rules.accrue(city, now, alliance)
            gained = points * self._cfg.war_point_resource_value
            resources = dict(city.get("resources") or {})
            for key in RESOURCE_KEYS:
                resources[key] = (resources.get(key) or 0) + gained
            resources = self._rules.clamp_resources(resources, city, alliance)
            tx.update(game_path, {"warPoints": available - points})
            tx.update(city_path, {
                "resources": resources,
                "worship": city.get("worship") or {},
                "lastUpdated": now,
            })
            return resources

        resources = await self._store.run_transaction(apply)
        log.info("[STATE] %s converted %d war points in city %s", account_id, points, city_id)
        active = self.active(world_id, account_id)
        if active is not None and active.city_id == city_id:
            active.state["resources"] = dict(resources)
        return resources

    # -- Loops -----------------------------------------------------------

    async def run(self, clock: Callable[[], float]) -> None:
        """Run tick, queue and autosave loops until :meth:`stop` is called."""
        self._running = True
        await asyncio.gather(
            self._loop(self._cfg.city_tick_interval_s, lambda: self.tick(clock())),
            self._loop(self._cfg.queue_tick_interval_s, lambda: self.tick_all_queues(clock())),
            self._loop(self._cfg.autosave_interval_s, lambda: self.autosave(clock())),
        )

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def tick_all_queues(self, now: float) -> None:
        """Complete due queue entries of every active city."""
        for active in self.active_cities:
            await self.tick_queues(active, now)

    async def _loop(self, interval: float, step: Callable[[], Any]) -> None:
        while self._running:
            try:
                await step()
            except Exception:
                log.exception("City loop step failed")
            await asyncio.sleep(interval)
