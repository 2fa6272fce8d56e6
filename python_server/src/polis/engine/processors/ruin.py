"""Ruin and god-town attack processors.

Both are world objects fought across the sea.

Ruins: a win claims the ruin for the attacker, clears its garrison and
grants its ``researchReward`` to the attacking city.  A loss only thins
the garrison.

God towns: every battle chips at a shared ``health`` pool by the
attacker's battle points and pays out war points.  The town disappears
once its health is gone.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from polis.engine.processors.base import (
    MovementContext,
    MovementHandler,
    Outcome,
    subtract_counts,
)
from polis.models.movement import GodTownAttackMovement, RuinAttackMovement
from polis.persistence import paths
from polis.persistence.document_store import Increment

if TYPE_CHECKING:
    from polis.models.combat import CombatResult
    from polis.persistence.document_store import Transaction

log = logging.getLogger(__name__)


class _WorldObjectAttack(MovementHandler):

    def _fight(self, ctx: MovementContext, troops: dict[str, int]) -> CombatResult:
        movement = ctx.movement
        return self._resolver.resolve_combat(
            movement.units, troops, {}, movement.is_cross_island,
            movement.phalanx, movement.support, None, None, movement.hero, None,
        )

    def _attacker_section(self, ctx: MovementContext, result: CombatResult) -> dict[str, Any]:
        movement = ctx.movement
        return self.party(
            ctx.origin_city, city_id=movement.origin_city_id, owner_id=movement.origin_owner_id,
            username=movement.origin_owner_username, alliance=ctx.origin_alliance,
            units=dict(movement.units), hero=movement.hero, losses=dict(result.attacker_losses),
        )

    def _come_home(self, tx: Transaction, outcome: Outcome, ctx: MovementContext,
                   result: CombatResult) -> None:
        movement = ctx.movement
        survivors = result.survivors(movement.units)
        if survivors or result.wounded or movement.hero:
            self.send_home(tx, outcome, ctx, units=survivors, hero=movement.hero,
                           wounded=result.wounded)
        else:
            self.finish(tx, outcome, ctx)

    def _vanished(self, tx: Transaction, outcome: Outcome, ctx: MovementContext,
                  report_type: str, name: str, message: str) -> None:
        movement = ctx.movement
        self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
            ctx, report_type, f"Attack on {name} failed", outcome={"message": message},
        ))
        self.send_home(tx, outcome, ctx, units=dict(movement.units), hero=movement.hero)


class RuinAttackProcessor(_WorldObjectAttack):

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, RuinAttackMovement)
        ruin_path = paths.ruin(ctx.world_id, movement.target_ruin_id)

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            ruin = await tx.get(ruin_path)
            origin = await tx.get(ctx.origin_city_path)
            if origin is None:
                self.finish(tx, outcome, ctx)
                return
            name = (ruin or {}).get("name", movement.target_ruin_name)
            if ruin is None or ruin.get("ownerId"):
                self._vanished(tx, outcome, ctx, "attack_ruin", name,
                               "The ruins have already been claimed. Your troops are returning home.")
                return

            troops = dict(ruin.get("troops") or {})
            result = self._fight(ctx, troops)
            reward = None
            if result.attacker_won:
                reward = ruin.get("researchReward")
                tx.update(ruin_path, {
                    "ownerId": movement.origin_owner_id,
                    "ownerUsername": movement.origin_owner_username,
                    "troops": {},
                })
                if reward:
                    tx.update(ctx.origin_city_path, {
                        f"research.{reward}": {"completed": True, "active": True},
                    })
                log.info("[STATE] Ruin %s claimed by %s", movement.target_ruin_id, movement.origin_owner_id)
            else:
                tx.update(ruin_path, {"troops": subtract_counts(troops, result.defender_losses)})

            report_outcome = result.to_dict()
            report_outcome["reward"] = reward
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "attack_ruin", f"Attack on {name}",
                outcome=report_outcome,
                attacker=self._attacker_section(ctx, result),
                defender={
                    "ruinId": movement.target_ruin_id,
                    "ruinName": name,
                    "troops": troops,
                    "losses": dict(result.defender_losses),
                    "x": ruin.get("x"),
                    "y": ruin.get("y"),
                },
            ))
            self._come_home(tx, outcome, ctx, result)

        return await self.commit(ctx, apply)


class GodTownAttackProcessor(_WorldObjectAttack):

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, GodTownAttackMovement)
        town_path = paths.god_town(ctx.world_id, movement.target_town_id)
        game_path = paths.account_game(movement.origin_owner_id, ctx.world_id)

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            town = await tx.get(town_path)
            game = await tx.get(game_path)
            if town is None:
                self._vanished(tx, outcome, ctx, "attack_god_town", movement.target_town_name,
                               "The god town has fallen already. Your troops are returning home.")
                return

            troops = dict(town.get("troops") or {})
            result = self._fight(ctx, troops)
            damage = result.attacker_battle_points * self._cfg.god_town_damage_per_point
            health = max(0, (town.get("health") or 0) - damage)
            war_points = math.floor(result.attacker_battle_points * self._cfg.war_points_per_battle_point)
            destroyed = health <= 0

            if destroyed:
                tx.delete(town_path)
                log.info("[STATE] God town %s destroyed", movement.target_town_id)
            else:
                tx.update(town_path, {
                    "health": health,
                    "troops": subtract_counts(troops, result.defender_losses),
                })
            if war_points > 0 and game is not None:
                tx.update(game_path, {"warPoints": Increment(war_points)})

            name = town.get("name", movement.target_town_name)
            report_outcome = result.to_dict()
            report_outcome.update({
                "damageDealt": damage,
                "warPointsGained": war_points,
                "townDestroyed": destroyed,
            })
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "attack_god_town", f"Attack on {name}",
                outcome=report_outcome,
                attacker=self._attacker_section(ctx, result),
                defender={
                    "townId": movement.target_town_id,
                    "townName": name,
                    "troops": troops,
                    "losses": dict(result.defender_losses),
                    "health": health,
                    "x": town.get("x"),
                    "y": town.get("y"),
                },
            ))
            self._come_home(tx, outcome, ctx, result)

        return await self.commit(ctx, apply)
