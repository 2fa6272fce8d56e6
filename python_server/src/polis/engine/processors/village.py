"""Village attack processor — conquering a farming village.

Villages fight with their explicit ``troops`` or the garrison for their
level.  A win records the village as conquered for the attacker (full
happiness); the village itself stays shared.  Only the attacker gets a
report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from polis.engine.combat import village_troops
from polis.engine.processors.base import (
    MovementContext,
    MovementHandler,
    Outcome,
    subtract_counts,
)
from polis.models.movement import VillageAttackMovement
from polis.persistence import paths

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction


class VillageAttackProcessor(MovementHandler):

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, VillageAttackMovement)
        village_path = paths.village(ctx.world_id, movement.target_village_id)
        conquered_path = paths.conquered_village(
            movement.origin_owner_id, ctx.world_id, movement.target_village_id,
        )

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            village = await tx.get(village_path)
            if village is None:
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "attack_village", f"Attack on {movement.target_village_name} failed",
                    outcome={"message": "The village could not be found. Your troops are returning home."},
                ))
                self.send_home(tx, outcome, ctx, units=dict(movement.units), hero=movement.hero)
                return

            troops = village_troops(village)
            result = self._resolver.resolve_combat(
                movement.units, troops, village.get("resources") or {}, False,
                movement.phalanx, movement.support, None, None, movement.hero, None,
            )

            if result.attacker_won:
                tx.set(conquered_path, {
                    "level": village.get("level") or 1,
                    "lastCollected": ctx.now,
                    "happiness": 100,
                    "happinessLastUpdated": ctx.now,
                }, merge=True)
            if village.get("troops"):
                tx.update(village_path, {"troops": subtract_counts(village["troops"], result.defender_losses)})

            report_outcome: dict[str, Any] = result.to_dict()
            report_outcome.pop("attackerBattlePoints")
            report_outcome.pop("defenderBattlePoints")
            name = village.get("name", movement.target_village_name)
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "attack_village", f"Attack on {name}",
                outcome=report_outcome,
                attacker=self.party(
                    ctx.origin_city, city_id=movement.origin_city_id,
                    owner_id=movement.origin_owner_id, username=movement.origin_owner_username,
                    alliance=ctx.origin_alliance, units=dict(movement.units),
                    losses=dict(result.attacker_losses),
                ),
                defender={
                    "villageId": movement.target_village_id,
                    "villageName": name,
                    "troops": troops,
                    "losses": dict(result.defender_losses),
                    "x": village.get("x"),
                    "y": village.get("y"),
                },
            ))

            survivors = result.survivors(movement.units)
            if survivors or result.wounded or movement.hero:
                self.send_home(tx, outcome, ctx, units=survivors, hero=movement.hero,
                               resources=result.plunder, wounded=result.wounded)
            else:
                self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)
