"""Movement dispatcher — polls for due movements and routes them.

Every ``movement_poll_interval_s`` each tracked world is queried for
movements whose ``arrivalTime`` has passed.  For each one the documents
it needs are loaded into a :class:`MovementContext` and the processor
for its (type, status) is invoked:

    returning              → ReturnProcessor
    assign_hero            → AssignHeroProcessor
    found_city             → FoundingProcessor (moving and founding)
    attack                 → AttackProcessor
    attack_village         → VillageAttackProcessor
    attack_ruin            → RuinAttackProcessor
    attack_god_town        → GodTownAttackProcessor
    scout                  → ScoutProcessor
    reinforce / trade      → ReinforceProcessor / TradeProcessor

A movement whose origin city is gone is deleted without a report.  A
failing movement is logged and left untouched for the next poll.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any, Iterable, Optional

from polis.engine.accounts import AccountDirectory
from polis.engine.city_rules import CityRules
from polis.engine.combat import CombatResolver
from polis.engine.processors.assignment import AssignHeroProcessor
from polis.engine.processors.attack import AttackProcessor
from polis.engine.processors.base import (
    OUTCOME_DELETED,
    OUTCOME_SKIPPED,
    MovementContext,
    MovementHandler,
    ProcessorDeps,
)
from polis.engine.processors.founding import FoundingProcessor
from polis.engine.processors.returns import ReturnProcessor
from polis.engine.processors.ruin import GodTownAttackProcessor, RuinAttackProcessor
from polis.engine.processors.scout import ScoutProcessor
from polis.engine.processors.support import ReinforceProcessor, TradeProcessor
from polis.engine.processors.village import VillageAttackProcessor
from polis.models.movement import Movement, MovementStatus, MovementType, movement_from_dict
from polis.persistence import paths
from polis.util.events import MovementFailed, MovementProcessed

if TYPE_CHECKING:
    from polis.engine.catalog import Catalog
    from polis.loaders.game_config_loader import GameConfig
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.cache import TTLCache
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

# Types resolved without looking at the origin city first.
_SELF_CONTAINED = (MovementType.ASSIGN_HERO, MovementType.FOUND_CITY)


class MovementProcessor:
    """Dispatches due movements to their type-specific processors.

    Args:
        store: Document store holding worlds, cities and movements.
        catalog: Unit/hero/building catalog.
        config: Game configuration.
        event_bus: Receives ``MovementProcessed`` / ``MovementFailed`` and
            the events raised by processors.
        cache: TTL cache for account and alliance lookups.
        rng: Random source for scouting.
    """

    def __init__(self, store: DocumentStore, catalog: Catalog, config: GameConfig,
                 event_bus: EventBus, cache: TTLCache, rng: Any = random) -> None:
        self._store = store
        self._cfg = config
        self._events = event_bus
        self._accounts = AccountDirectory(store, cache)
        self._running = False
        deps = ProcessorDeps(
            store=store,
            catalog=catalog,
            config=config,
            resolver=CombatResolver(catalog, config),
            rules=CityRules(catalog, config),
            event_bus=event_bus,
        )
        self._returns = ReturnProcessor(deps)
        self._handlers: dict[MovementType, MovementHandler] = {
            MovementType.ATTACK: AttackProcessor(deps),
            MovementType.ATTACK_VILLAGE: VillageAttackProcessor(deps),
            MovementType.ATTACK_RUIN: RuinAttackProcessor(deps),
            MovementType.ATTACK_GOD_TOWN: GodTownAttackProcessor(deps),
            MovementType.SCOUT: ScoutProcessor(deps, rng),
            MovementType.REINFORCE: ReinforceProcessor(deps),
            MovementType.TRADE: TradeProcessor(deps),
            MovementType.FOUND_CITY: FoundingProcessor(deps),
            MovementType.ASSIGN_HERO: AssignHeroProcessor(deps),
        }
        self.polls: int = 0

    # -- Polling ------------------------------------------------------

    async def run(self, world_ids: Iterable[str]) -> None:
        """Poll *world_ids* until :meth:`stop` is called."""
        worlds = list(world_ids)
        self._running = True
        log.info("Movement dispatcher running for %s (every %.1f s)",
                 ", ".join(worlds), self._cfg.movement_poll_interval_s)
        while self._running:
            for world_id in worlds:
                try:
                    await self.process_due(world_id, self._store.server_time())
                except Exception:
                    log.exception("Movement poll failed for world %s", world_id)
            self.polls += 1
            await asyncio.sleep(self._cfg.movement_poll_interval_s)

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def process_due(self, world_id: str, now: float) -> dict[str, str]:
        """Process every movement of *world_id* due at *now*.

        Returns:
            Movement id → outcome (``deleted``, ``returning``,
            ``founding``, ``skipped`` or ``failed``).
        """
        due = await self._store.query(paths.movements(world_id), [("arrivalTime", "<=", now)])
        if due:
            log.info("World %s: %d movement(s) due", world_id, len(due))
        results: dict[str, str] = {}
        for movement_id, data in due:
            try:
                outcome = await self._process_one(world_id, movement_id, data, now)
            except Exception as exc:
                log.exception("Error processing movement %s", movement_id)
                self._events.emit(MovementFailed(world_id=world_id, movement_id=movement_id, error=str(exc)))
                results[movement_id] = "failed"
                continue
            results[movement_id] = outcome
            self._events.emit(MovementProcessed(
                world_id=world_id, movement_id=movement_id,
                movement_type=str(data.get("type")), outcome=outcome,
            ))
        return results

    # -- Routing ------------------------------------------------------

    async def _process_one(self, world_id: str, movement_id: str,
                           data: dict[str, Any], now: float) -> str:
        try:
            movement = movement_from_dict(movement_id, data)
        except ValueError:
            log.warning("Unknown movement type/status %r/%r; deleting %s",
                        data.get("type"), data.get("status"), movement_id)
            return await self._delete_unknown(world_id, movement_id, data)

        ctx = await self.load_context(world_id, movement, now)
        handler = self._route(movement)
        if handler is None:
            log.warning("No processor for %s movement in status %s; deleting %s",
                        movement.type.value, movement.status.value, movement_id)
            return await self._returns.delete_only(ctx)

        if movement.type not in _SELF_CONTAINED or movement.status == MovementStatus.RETURNING:
            if ctx.origin_city is None:
                log.info("Origin city of movement %s not found; deleting", movement_id)
                return await handler.delete_only(ctx)
        return await handler.process(ctx)

    async def _delete_unknown(self, world_id: str, movement_id: str,
                              data: dict[str, Any]) -> str:
        """Delete a movement that cannot be parsed, unless it changed since the poll."""
        path = paths.movement(world_id, movement_id)

        async def guarded(tx: Transaction) -> bool:
            current = await tx.get(path)
            if (current is None
                    or current.get("status") != data.get("status")
                    or current.get("arrivalTime") != data.get("arrivalTime")):
                return False
            tx.delete(path)
            return True

        if not await self._store.run_transaction(guarded):
            log.info("Movement %s already processed; skipping", movement_id)
            return OUTCOME_SKIPPED
        return OUTCOME_DELETED

    def _route(self, movement: Movement) -> Optional[MovementHandler]:
        if movement.status == MovementStatus.RETURNING:
            return self._returns
        if movement.status == MovementStatus.FOUNDING:
            if movement.type == MovementType.FOUND_CITY:
                return self._handlers[MovementType.FOUND_CITY]
            return None
        return self._handlers.get(movement.type)

    async def load_context(self, world_id: str, movement: Movement, now: float) -> MovementContext:
        """Load the documents *movement* needs to be processed."""
        store = self._store
        ctx = MovementContext(world_id=world_id, now=now, movement=movement)
        ctx.origin_city = await store.get(ctx.origin_city_path)
        ctx.origin_game = await self._accounts.game(world_id, movement.origin_owner_id)
        ctx.origin_alliance = await self._accounts.alliance(world_id, movement.origin_owner_id)
        ctx.world_state = await store.get(paths.world(world_id))

        target_owner = getattr(movement, "target_owner_id", None)
        target_city = getattr(movement, "target_city_id", None)
        if movement.status == MovementStatus.MOVING and target_owner:
            if target_city:
                ctx.target_city = await store.get(paths.city(target_owner, world_id, target_city))
            ctx.target_game = await self._accounts.game(world_id, target_owner)
            ctx.target_alliance = await self._accounts.alliance(world_id, target_owner)
        return ctx
