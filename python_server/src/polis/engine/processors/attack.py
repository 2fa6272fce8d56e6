"""Attack processor — resolves an army arriving at a player city.

Within one transaction:
- the defending city is caught up to now, fought, and loses units and
  plunder;
- a captured hero goes to the winner's prison (if a cell is free), a
  defeated hero that escapes capture is wounded for ``hero_wound_hours``;
- both accounts collect battle points;
- attacker and defender each get a report;
- the movement becomes the return leg, or is deleted if nothing is left
  to come home.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from polis.engine.processors.base import (
    MovementContext,
    MovementHandler,
    Outcome,
    subtract_counts,
)
from polis.models.catalog import UnitType
from polis.models.combat import CombatResult
from polis.models.movement import CityTargetMovement
from polis.persistence import paths
from polis.persistence.document_store import Increment
from polis.util.constants import HERO_STATUS_CAPTURED, RESOURCE_KEYS

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction

log = logging.getLogger(__name__)

ANNIHILATED_MESSAGE = "Your forces were annihilated. No information could be gathered from the battle."


def stationed_hero(city: dict[str, Any], city_id: Optional[str]) -> Optional[str]:
    """The hero whose ``cityId`` is *city_id*, if any."""
    for hero_id, state in (city.get("heroes") or {}).items():
        if isinstance(state, dict) and state.get("cityId") == city_id:
            return hero_id
    return None


class AttackProcessor(MovementHandler):
    """Player-versus-player attack."""

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        target_path = paths.city(movement.target_owner_id, ctx.world_id, movement.target_city_id)
        attacker_game_path = paths.account_game(movement.origin_owner_id, ctx.world_id)
        defender_game_path = paths.account_game(movement.target_owner_id, ctx.world_id)

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            origin = await tx.get(ctx.origin_city_path)
            target = await tx.get(target_path)
            attacker_game = await tx.get(attacker_game_path)
            defender_game = await tx.get(defender_game_path)

            if origin is None:
                self.finish(tx, outcome, ctx)
                return
            if target is None:
                self._target_gone(tx, outcome, ctx)
                return

            target = self._rules.accrue(target, ctx.now, ctx.target_alliance)
            defender_hero = stationed_hero(target, movement.target_city_id)
            result = self._resolver.resolve_combat(
                movement.units,
                target.get("units") or {},
                target.get("resources") or {},
                movement.is_cross_island,
                movement.phalanx,
                movement.support,
                None,
                None,
                movement.hero,
                defender_hero,
            )

            origin_fields: dict[str, Any] = {}
            target_fields: dict[str, Any] = {}
            sides = {
                "attacker": (origin, origin_fields, movement.origin_city_id),
                "defender": (target, target_fields, movement.target_city_id),
            }

            self._imprison_hero(result, ctx, sides)
            wounded_hero = self._wound_hero(result, movement.hero, defender_hero, sides, ctx.now)

            # Battle points
            if attacker_game is not None and result.attacker_battle_points > 0:
                tx.update(attacker_game_path, {"battlePoints": Increment(result.attacker_battle_points)})
            if defender_game is not None and result.defender_battle_points > 0:
                tx.update(defender_game_path, {"battlePoints": Increment(result.defender_battle_points)})

            # Defender losses and plunder
            target_fields["units"] = subtract_counts(target.get("units"), result.defender_losses)
            resources = dict(target.get("resources") or {})
            if result.attacker_won:
                for key in RESOURCE_KEYS:
                    resources[key] = max(0, (resources.get(key) or 0) - result.plunder.get(key, 0))
            target_fields["resources"] = resources
            target_fields["lastUpdated"] = ctx.now

            if origin_fields:
                tx.update(ctx.origin_city_path, origin_fields)
            tx.update(target_path, target_fields)

            self._write_reports(tx, outcome, ctx, origin, target, defender_hero, result, wounded_hero)

            survivors = result.survivors(movement.units)
            captured = result.captured_hero
            hero_survived = captured is None or captured.hero_id != movement.hero
            hero_home = movement.hero if movement.hero and hero_survived else None
            if survivors or hero_home or result.wounded:
                self.send_home(tx, outcome, ctx, units=survivors, hero=hero_home,
                               resources=result.plunder, wounded=result.wounded)
            else:
                self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)

    # -- Heroes ----------------------------------------------------------

    def _wound_hero(self, result: CombatResult, attacking_hero: Optional[str],
                    defending_hero: Optional[str], sides: dict, now: float) -> Optional[dict[str, str]]:
        """Wound the losing side's hero unless it is being captured."""
        if result.attacker_won:
            hero_id, side = defending_hero, "defender"
        else:
            hero_id, side = attacking_hero, "attacker"
        if not hero_id:
            return None
        if result.captured_hero is not None and result.captured_hero.hero_id == hero_id:
            return None
        city, fields, _ = sides[side]
        if hero_id not in (city.get("heroes") or {}):
            return None
        fields[f"heroes.{hero_id}.woundedUntil"] = now + self._cfg.hero_wound_hours * 3600
        return {"heroId": hero_id, "side": side}

    def _imprison_hero(self, result: CombatResult, ctx: MovementContext, sides: dict) -> None:
        """Move a captured hero into the captor's prison, or void the capture."""
        captured = result.captured_hero
        if captured is None:
            return
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        if captured.captured_by == "attacker":
            jail_city, jail_fields, _ = sides["attacker"]
            owner_city, owner_fields, _ = sides["defender"]
            prisoner_owner = movement.target_owner_id
            prisoner_username = movement.target_owner_username
            prisoner_city_name = movement.target_city_name
            prisoner_city_id = movement.target_city_id
        else:
            jail_city, jail_fields, _ = sides["defender"]
            owner_city, owner_fields, _ = sides["attacker"]
            prisoner_owner = movement.origin_owner_id
            prisoner_username = movement.origin_owner_username
            prisoner_city_name = movement.origin_city_name
            prisoner_city_id = movement.origin_city_id

        prisoners = list(jail_city.get("prisoners") or [])
        if len(prisoners) >= self._rules.prison_capacity(jail_city):
            log.info("No prison cell for hero %s; capture voided", captured.hero_id)
            result.captured_hero = None
            return

        prisoners.append({
            "captureId": str(uuid.uuid4()),
            "heroId": captured.hero_id,
            "capturedAt": ctx.now,
            "ownerId": prisoner_owner,
            "ownerUsername": prisoner_username,
            "originCityName": prisoner_city_name,
            "originCityId": prisoner_city_id,
        })
        jail_fields["prisoners"] = prisoners
        if captured.hero_id in (owner_city.get("heroes") or {}):
            owner_fields[f"heroes.{captured.hero_id}.cityId"] = None
            owner_fields[f"heroes.{captured.hero_id}.status"] = HERO_STATUS_CAPTURED
        log.info("[STATE] Hero %s captured by %s", captured.hero_id, captured.captured_by)

    # -- Reports ---------------------------------------------------------

    def _survived_in_force(self, units: dict[str, int], losses: dict[str, int]) -> bool:
        """True if any land or mythical unit lived to tell the tale."""
        for uid, count in units.items():
            unit = self._catalog.unit(uid)
            if unit is None:
                continue
            if (unit.type == UnitType.LAND or unit.mythical) and count - losses.get(uid, 0) > 0:
                return True
        return False

    def _write_reports(self, tx: Transaction, outcome: Outcome, ctx: MovementContext,
                       origin: dict, target: dict, defender_hero: Optional[str],
                       result: CombatResult, wounded_hero: Optional[dict[str, str]]) -> None:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        informed = self._survived_in_force(movement.units, result.attacker_losses)

        def attacker_section() -> dict[str, Any]:
            return self.party(
                origin, city_id=movement.origin_city_id, owner_id=movement.origin_owner_id,
                username=movement.origin_owner_username, alliance=ctx.origin_alliance,
                units=dict(movement.units), hero=movement.hero, losses=dict(result.attacker_losses),
            )

        def defender_section(full: bool) -> dict[str, Any]:
            return self.party(
                target, city_id=movement.target_city_id, owner_id=movement.target_owner_id,
                username=movement.target_owner_username, alliance=ctx.target_alliance,
                units=dict(target.get("units") or {}) if full else {},
                hero=defender_hero if full else None,
                losses=dict(result.defender_losses) if full else {},
            )

        attacker_outcome = result.to_dict()
        attacker_outcome["woundedHero"] = wounded_hero
        if not informed:
            attacker_outcome["message"] = ANNIHILATED_MESSAGE
        city_name = target.get("cityName", movement.target_city_name)
        self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
            ctx, "attack", f"Attack on {city_name}",
            outcome=attacker_outcome,
            attacker=attacker_section(),
            defender=defender_section(informed),
        ))

        defender_outcome = result.to_dict()
        defender_outcome.update({
            "defenderWon": not result.attacker_won,
            "plunder": {},
            "wounded": {},
            "woundedHero": wounded_hero,
        })
        self.add_report(tx, outcome, ctx, movement.target_owner_id, self.report(
            ctx, "attack", f"Defense of {city_name}",
            outcome=defender_outcome,
            attacker=attacker_section(),
            defender=defender_section(True),
        ))

    def _target_gone(self, tx: Transaction, outcome: Outcome, ctx: MovementContext) -> None:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
            ctx, "attack_failed", f"Attack on {movement.target_city_name} failed",
            outcome={"message": "The target city no longer exists. Your troops are returning home."},
        ))
        self.send_home(tx, outcome, ctx, units=dict(movement.units), hero=movement.hero,
                       resources=dict(movement.resources))
