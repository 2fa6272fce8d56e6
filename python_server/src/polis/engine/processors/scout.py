"""Scout processor — spy missions never come back.

Success sends the attacker a snapshot of the target city.  Failure tells
the attacker, and the defender pockets part of the spy's silver in the
cave along with a "spy caught" report.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

from polis.engine.processors.base import MovementContext, MovementHandler, Outcome, ProcessorDeps
from polis.engine.scouting import resolve_scouting
from polis.models.movement import CityTargetMovement
from polis.persistence import paths
from polis.persistence.document_store import Increment

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction


class ScoutProcessor(MovementHandler):

    def __init__(self, deps: ProcessorDeps, rng: Any = random) -> None:
        super().__init__(deps)
        self._rng = rng

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        target_path = paths.city(movement.target_owner_id, ctx.world_id, movement.target_city_id)
        silver = movement.resources.get("silver", 0)

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            target = await tx.get(target_path)
            origin_name = (ctx.origin_city or {}).get("cityName", movement.origin_city_name)
            if target is None:
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "scout", f"Scouting {movement.target_city_name} failed",
                    scoutSucceeded=False,
                    message="The target city no longer exists.",
                ))
                self.finish(tx, outcome, ctx)
                return

            target_name = target.get("cityName", movement.target_city_name)
            result = resolve_scouting(target, silver, self._rng, self._cfg)
            if result.success:
                body = result.to_dict()
                body.pop("success")
                body["targetOwnerUsername"] = movement.target_owner_username or body["targetOwnerUsername"]
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "scout", f"Scout report of {target_name}",
                    scoutSucceeded=True,
                    attacker=self.party(
                        ctx.origin_city, city_id=movement.origin_city_id,
                        owner_id=movement.origin_owner_id, username=movement.origin_owner_username,
                        alliance=ctx.origin_alliance,
                    ),
                    defender=self.party(
                        target, city_id=movement.target_city_id,
                        owner_id=movement.target_owner_id, username=movement.target_owner_username,
                        alliance=ctx.target_alliance,
                    ),
                    **body,
                ))
            else:
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "scout", f"Scouting {target_name} failed",
                    scoutSucceeded=False,
                    message=result.message,
                ))
                tx.update(target_path, {"cave.silver": Increment(result.silver_gained)})
                self.add_report(tx, outcome, ctx, movement.target_owner_id, self.report(
                    ctx, "spy_caught", f"Caught a spy from {origin_name}!",
                    originCity=origin_name,
                    silverGained=result.silver_gained,
                ))
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)
