"""Hero assignment processor — stations a hero in a city on arrival."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from polis.engine.processors.base import MovementContext, MovementHandler, Outcome
from polis.models.movement import AssignHeroMovement
from polis.persistence import paths

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction

log = logging.getLogger(__name__)


class AssignHeroProcessor(MovementHandler):

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, AssignHeroMovement)
        owner_id = movement.target_owner_id or movement.origin_owner_id
        target_path = paths.city(owner_id, ctx.world_id, movement.target_city_id or "")

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            target = await tx.get(target_path) if movement.target_city_id else None
            if target is None or not movement.hero:
                log.warning("Hero assignment %s failed: target city %s not found",
                            movement.id, movement.target_city_id)
                hero = self._catalog.display_name(movement.hero) if movement.hero else "Your hero"
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "assign_hero_failed", "Hero assignment failed",
                    outcome={"message": f"{hero} could not reach the city. The assignment was cancelled."},
                    hero=movement.hero,
                ))
                self.finish(tx, outcome, ctx)
                return

            heroes = dict(target.get("heroes") or {})
            state = dict(heroes.get(movement.hero) or {})
            state["cityId"] = movement.target_city_id
            heroes[movement.hero] = state
            tx.update(target_path, {"heroes": heroes})
            log.info("[STATE] Hero %s stationed in %s", movement.hero, movement.target_city_id)
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)
