"""Shared machinery for movement processors.

A processor reads the documents a movement touches, decides the outcome
(usually with a pure resolver) and commits everything in a single store
transaction: target state, one report per recipient, and the rewrite or
deletion of the movement.  The transaction re-reads the movement first;
if it was already deleted or rewritten, nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from polis.models.movement import Movement, MovementStatus
from polis.models.report import Report
from polis.persistence import paths
from polis.util.events import ReportCreated

if TYPE_CHECKING:
    from polis.engine.catalog import Catalog
    from polis.engine.city_rules import CityRules
    from polis.engine.combat import CombatResolver
    from polis.loaders.game_config_loader import GameConfig
    from polis.persistence.document_store import DocumentStore, Transaction
    from polis.util.events import EventBus

log = logging.getLogger(__name__)

OUTCOME_DELETED = "deleted"
OUTCOME_RETURNING = "returning"
OUTCOME_FOUNDING = "founding"
OUTCOME_SKIPPED = "skipped"


@dataclass
class MovementContext:
    """Everything loaded for one due movement before it is processed.

    Alliance entries are full alliance documents with their ``id``
    (or ``None``); reports only carry the id and name.
    """

    world_id: str
    now: float
    movement: Movement
    origin_city: Optional[dict[str, Any]] = None
    target_city: Optional[dict[str, Any]] = None
    origin_game: Optional[dict[str, Any]] = None
    target_game: Optional[dict[str, Any]] = None
    origin_alliance: Optional[dict[str, Any]] = None
    target_alliance: Optional[dict[str, Any]] = None
    world_state: Optional[dict[str, Any]] = None

    @property
    def movement_path(self) -> str:
        return paths.movement(self.world_id, self.movement.id)

    @property
    def origin_city_path(self) -> str:
        m = self.movement
        return paths.city(m.origin_owner_id, self.world_id, m.origin_city_id)


@dataclass
class Outcome:
    """What a committed transaction did; events are emitted from it."""

    result: str = OUTCOME_DELETED
    reports: list[ReportCreated] = field(default_factory=list)


@dataclass
class ProcessorDeps:
    """Collaborators every processor receives."""

    store: DocumentStore
    catalog: Catalog
    config: GameConfig
    resolver: CombatResolver
    rules: CityRules
    event_bus: EventBus


class MovementHandler:
    """Base class: guarded commit, reports and return legs."""

    def __init__(self, deps: ProcessorDeps) -> None:
        self._deps = deps
        self._store = deps.store
        self._catalog = deps.catalog
        self._cfg = deps.config
        self._resolver = deps.resolver
        self._rules = deps.rules
        self._events = deps.event_bus

    async def process(self, ctx: MovementContext) -> str:
        raise NotImplementedError

    # -- Commit ----------------------------------------------------------

    async def commit(self, ctx: MovementContext,
                     apply: Callable[[Transaction, Outcome], Awaitable[None]]) -> str:
        """Run *apply* atomically, guarded by the movement's current state.

        *apply* performs its reads first, then buffers writes on the
        transaction and records the result on the :class:`Outcome`.
        """
        movement = ctx.movement

        async def guarded(tx: Transaction) -> Optional[Outcome]:
            current = await tx.get(ctx.movement_path)
            if (current is None
                    or current.get("status") != movement.status.value
                    or current.get("arrivalTime") != movement.arrival_time):
                return None
            outcome = Outcome()
            await apply(tx, outcome)
            return outcome

        outcome = await self._store.run_transaction(guarded)
        if outcome is None:
            log.info("Movement %s already processed; skipping", movement.id)
            return OUTCOME_SKIPPED
        for event in outcome.reports:
            self._events.emit(event)
        return outcome.result

    async def delete_only(self, ctx: MovementContext) -> str:
        """Drop a movement that can no longer be resolved."""
        async def apply(tx: Transaction, outcome: Outcome) -> None:
            tx.delete(ctx.movement_path)
        return await self.commit(ctx, apply)

    # -- Helpers used inside apply() -------------------------------------

    def add_report(self, tx: Transaction, outcome: Outcome, ctx: MovementContext,
                   owner_id: Optional[str], report: Report) -> None:
        if not owner_id:
            return
        report_id = self._store.new_id()
        tx.set(paths.report(owner_id, ctx.world_id, report_id), report.to_dict())
        outcome.reports.append(ReportCreated(
            world_id=ctx.world_id, owner_id=owner_id,
            report_type=report.type, title=report.title,
        ))

    def report(self, ctx: MovementContext, report_type: str, title: str, **body: Any) -> Report:
        return Report(type=report_type, title=title, timestamp=ctx.now, body=body)

    def send_home(self, tx: Transaction, outcome: Outcome, ctx: MovementContext, *,
                  units: dict[str, int], hero: Optional[str] = None,
                  resources: Optional[dict[str, int]] = None,
                  wounded: Optional[dict[str, int]] = None,
                  agent: Optional[str] = None,
                  arrival_time: Optional[float] = None) -> None:
        """Rewrite the movement as its return leg."""
        movement = ctx.movement
        arrival = arrival_time if arrival_time is not None else movement.return_arrival()
        tx.update(ctx.movement_path, {
            "status": MovementStatus.RETURNING.value,
            "units": units,
            "hero": hero,
            "agent": agent if agent is not None else movement.agent,
            "resources": resources or {},
            "wounded": wounded or {},
            "arrivalTime": arrival,
            "involvedParties": [movement.origin_owner_id],
        })
        outcome.result = OUTCOME_RETURNING
        log.info("[STATE] Movement %s: %s → RETURNING (arrives %.0f)",
                 movement.id, movement.status.name, arrival)

    def finish(self, tx: Transaction, outcome: Outcome, ctx: MovementContext) -> None:
        tx.delete(ctx.movement_path)
        outcome.result = OUTCOME_DELETED
        log.info("[STATE] Movement %s: %s → DELETED", ctx.movement.id, ctx.movement.status.name)

    @staticmethod
    def party(city: Optional[dict[str, Any]], *, city_id: Optional[str], owner_id: Optional[str], username: str,
              alliance: Optional[dict[str, str]], **extra: Any) -> dict[str, Any]:
        """One side's section of a combat report."""
        city = city or {}
        data = {
            "cityId": city_id,
            "cityName": city.get("cityName", ""),
            "ownerId": owner_id,
            "username": username or "Unknown Player",
            "allianceId": alliance["id"] if alliance else None,
            "allianceName": alliance.get("name") if alliance else None,
            "x": city.get("x"),
            "y": city.get("y"),
        }
        data.update(extra)
        return data


def add_counts(base: dict[str, int] | None, extra: dict[str, int] | None) -> dict[str, int]:
    result = dict(base or {})
    for key, count in (extra or {}).items():
        result[key] = result.get(key, 0) + count
    return result


def subtract_counts(base: dict[str, int] | None, losses: dict[str, int] | None) -> dict[str, int]:
    result = dict(base or {})
    for key, count in (losses or {}).items():
        result[key] = max(0, result.get(key, 0) - count)
    return result
