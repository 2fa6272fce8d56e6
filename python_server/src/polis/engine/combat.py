"""Combat resolver — pure battle outcome between two troop rosters.

A combat is fought in one or two phases.  Cross-island attacks first
fight a naval phase (no roles, no heroes); only if the fleet wins do the
surviving land troops fight the land phase.  Each phase:

1. weighs every unit's attack (attacker) or defense (defender), adjusted
   for counters and the attacking hero's ``land_attack`` passive;
2. splits the power into phalanx / support / other roles and takes the
   front-loaded engagement power ``phalanx + 0.5 support + 0.2 other``;
3. derives a loss ratio per side from the opposing engagement power;
4. distributes the losses (phalanx first, then support, then the rest);
5. recomputes total power of the survivors to decide the winner.

Nothing here touches the store; processors apply the result.
"""

from __future__ import annotations

import math
from typing import Mapping, Optional

from polis.engine.catalog import Catalog
from polis.loaders.game_config_loader import GameConfig
from polis.models.catalog import UnitType
from polis.models.combat import CapturedHero, CombatResult, PhaseResult
from polis.util.constants import RESOURCE_KEYS, VILLAGE_TROOPS_BY_LEVEL


def village_troops(village: Mapping) -> dict[str, int]:
    """Garrison of a village: explicit ``troops`` or the level table."""
    troops = village.get("troops")
    if troops:
        return dict(troops)
    level = village.get("level") or 1
    return dict(VILLAGE_TROOPS_BY_LEVEL.get(level, VILLAGE_TROOPS_BY_LEVEL[1]))


class CombatResolver:
    """Computes battle outcomes from the unit catalog and combat constants."""

    def __init__(self, catalog: Catalog, config: GameConfig | None = None) -> None:
        self._catalog = catalog
        self._cfg = config or GameConfig()

    # -- Public API -------------------------------------------------------

    def resolve_combat(
        self,
        attacking_units: Mapping[str, int],
        defending_units: Mapping[str, int],
        defending_resources: Mapping[str, float] | None,
        is_naval_attack: bool,
        attacker_phalanx: Optional[str] = None,
        attacker_support: Optional[str] = None,
        defender_phalanx: Optional[str] = None,
        defender_support: Optional[str] = None,
        attacking_hero: Optional[str] = None,
        defending_hero: Optional[str] = None,
    ) -> CombatResult:
        attacking_units = dict(attacking_units or {})
        defending_units = dict(defending_units or {})
        resources = defending_resources or {}

        attacker_losses: dict[str, int] = {}
        defender_losses: dict[str, int] = {}
        plunder = {key: 0 for key in RESOURCE_KEYS}

        land_roles = dict(
            attacker_phalanx=attacker_phalanx,
            attacker_support=attacker_support,
            defender_phalanx=defender_phalanx,
            defender_support=defender_support,
            attacking_hero=attacking_hero,
            defending_hero=defending_hero,
        )

        if is_naval_attack:
            naval = self._resolve_phase(attacking_units, defending_units, UnitType.NAVAL)
            _add_losses(attacker_losses, naval.attacker_losses)
            _add_losses(defender_losses, naval.defender_losses)
            if naval.attacker_won:
                landed = {
                    uid: max(0, count - attacker_losses.get(uid, 0))
                    for uid, count in attacking_units.items()
                }
                land = self._resolve_phase(landed, defending_units, UnitType.LAND, **land_roles)
                _add_losses(attacker_losses, land.attacker_losses)
                _add_losses(defender_losses, land.defender_losses)
                attacker_won = land.attacker_won
            else:
                # The fleet is sunk: every land unit aboard goes down with it.
                for uid, count in attacking_units.items():
                    if self._catalog.is_type(uid, UnitType.LAND):
                        attacker_losses[uid] = attacker_losses.get(uid, 0) + count
                attacker_won = False
        else:
            land = self._resolve_phase(attacking_units, defending_units, UnitType.LAND, **land_roles)
            attacker_losses = dict(land.attacker_losses)
            defender_losses = dict(land.defender_losses)
            attacker_won = land.attacker_won

        if attacker_won:
            plunder = {
                key: math.floor((resources.get(key) or 0) * self._cfg.plunder_ratio)
                for key in RESOURCE_KEYS
            }

        captured = self._captured_hero(
            attacker_won, attacking_units, defending_units,
            attacker_losses, defender_losses, attacking_hero, defending_hero,
        )

        wounded: dict[str, int] = {}
        for uid, lost in list(attacker_losses.items()):
            if not self._catalog.is_type(uid, UnitType.LAND):
                continue
            count = math.floor(lost * self._cfg.wound_ratio)
            if count > 0:
                wounded[uid] = count
                attacker_losses[uid] = lost - count

        return CombatResult(
            attacker_won=attacker_won,
            attacker_losses=attacker_losses,
            defender_losses=defender_losses,
            plunder=plunder,
            wounded=wounded,
            attacker_battle_points=self._catalog.population_value(defender_losses),
            defender_battle_points=self._catalog.population_value(attacker_losses),
            captured_hero=captured,
        )

    # -- Phase ------------------------------------------------------------

    def _resolve_phase(
        self,
        attacking: Mapping[str, int],
        defending: Mapping[str, int],
        unit_type: UnitType,
        attacker_phalanx: Optional[str] = None,
        attacker_support: Optional[str] = None,
        defender_phalanx: Optional[str] = None,
        defender_support: Optional[str] = None,
        attacking_hero: Optional[str] = None,
        defending_hero: Optional[str] = None,
    ) -> PhaseResult:
        has_attackers = any(
            count > 0 and self._catalog.is_type(uid, unit_type)
            and self._catalog.unit(uid).attack > 0
            for uid, count in attacking.items()
        )
        has_defenders = any(
            count > 0 and self._catalog.is_type(uid, unit_type)
            for uid, count in defending.items()
        )
        if not has_defenders:
            return PhaseResult(attacker_won=True)
        if not has_attackers and not attacking_hero:
            return PhaseResult(attacker_won=False)

        att = self._power(attacking, defending, unit_type, True, attacker_phalanx,
                          attacker_support, attacking_hero)
        dfn = self._power(defending, attacking, unit_type, False, defender_phalanx,
                          defender_support, defending_hero)

        att_initial = self._engagement(att)
        def_initial = self._engagement(dfn)
        attacker_ratio = min(1.0, def_initial / (att_initial or 1))
        defender_ratio = min(1.0, att_initial / (def_initial or 1))

        attacker_losses = self._apply_losses(attacking, attacker_ratio, unit_type,
                                             attacker_phalanx, attacker_support)
        defender_losses = self._apply_losses(defending, defender_ratio, unit_type,
                                             defender_phalanx, defender_support)

        att_left = _subtract(attacking, attacker_losses)
        def_left = _subtract(defending, defender_losses)
        final_att = self._power(att_left, def_left, unit_type, True, None, None, attacking_hero)
        final_def = self._power(def_left, att_left, unit_type, False, None, None, defending_hero)

        # Ties (including 0 vs 0) go to the attacker.
        return PhaseResult(
            attacker_won=final_att["total"] >= final_def["total"],
            attacker_losses=attacker_losses,
            defender_losses=defender_losses,
        )

    def _power(
        self,
        units: Mapping[str, int],
        opponents: Mapping[str, int],
        unit_type: UnitType,
        attacking: bool,
        phalanx: Optional[str],
        support: Optional[str],
        hero_id: Optional[str],
    ) -> dict[str, float]:
        """Effective power of *units* against *opponents*, split by role."""
        power = {"total": 0.0, "phalanx": 0.0, "support": 0.0, "other": 0.0}
        hero = self._catalog.hero(hero_id)
        for uid, count in units.items():
            if not count:
                continue
            unit = self._catalog.unit(uid)
            if unit is None or unit.type != unit_type:
                continue
            attack = unit.attack
            defense = unit.defense
            if hero is not None and hero.passive_subtype == "land_attack" and unit.type == UnitType.LAND:
                attack *= 1 + hero.passive_value
            for opp_id, opp_count in opponents.items():
                if opp_count <= 0:
                    continue
                opp = self._catalog.unit(opp_id)
                if opp is None:
                    continue
                if opp_id in unit.counters:
                    attack *= self._cfg.counter_attack_bonus
                if uid in opp.counters:
                    defense *= self._cfg.counter_defense_penalty
            value = count * (attack if attacking else defense)
            if uid == phalanx:
                power["phalanx"] += value
            elif uid == support:
                power["support"] += value
            else:
                power["other"] += value
            power["total"] += value
        return power

    def _engagement(self, power: Mapping[str, float]) -> float:
        return (power["phalanx"]
                + power["support"] * self._cfg.support_engagement_weight
                + power["other"] * self._cfg.other_engagement_weight)

    def _apply_losses(
        self,
        units: Mapping[str, int],
        ratio: float,
        unit_type: UnitType,
        phalanx: Optional[str],
        support: Optional[str],
    ) -> dict[str, int]:
        """Distribute ``floor(total × ratio)`` losses over the roster.

        Only units of the phase's type count towards the total and can die.
        """
        in_phase = {
            uid: count for uid, count in units.items()
            if count > 0 and self._catalog.is_type(uid, unit_type)
        }
        total = sum(in_phase.values())
        if total == 0:
            return {}

        losses: dict[str, int] = {}
        remaining = math.floor(total * ratio)

        if phalanx and in_phase.get(phalanx) and remaining > 0:
            loss = min(in_phase[phalanx], math.ceil(remaining * self._cfg.phalanx_share))
            losses[phalanx] = loss
            remaining -= loss

        if support and in_phase.get(support) and remaining > 0:
            loss = min(in_phase[support], math.ceil(remaining * self._cfg.support_share))
            losses[support] = losses.get(support, 0) + loss
            remaining -= loss

        others = [uid for uid in in_phase if uid != phalanx and uid != support]
        if remaining > 0 and others:
            others_total = sum(in_phase[uid] - losses.get(uid, 0) for uid in others) or 1
            for uid in others:
                if remaining <= 0:
                    break
                alive = in_phase[uid] - losses.get(uid, 0)
                loss = min(alive, math.floor(remaining * (alive / others_total)))
                losses[uid] = losses.get(uid, 0) + loss
                remaining -= loss
            if remaining > 0:
                largest = others[0]
                for uid in others:
                    if in_phase[uid] - losses.get(uid, 0) > in_phase[largest] - losses.get(largest, 0):
                        largest = uid
                losses[largest] = losses.get(largest, 0) + remaining

        return {uid: min(loss, in_phase.get(uid, 0)) for uid, loss in losses.items()}

    # -- Heroes -----------------------------------------------------------

    def _captured_hero(
        self,
        attacker_won: bool,
        attacking_units: Mapping[str, int],
        defending_units: Mapping[str, int],
        attacker_losses: Mapping[str, int],
        defender_losses: Mapping[str, int],
        attacking_hero: Optional[str],
        defending_hero: Optional[str],
    ) -> Optional[CapturedHero]:
        """A hero is taken when its side lost every land unit it had."""
        if attacker_won and defending_hero and self._all_land_lost(defending_units, defender_losses):
            return CapturedHero(defending_hero, "attacker")
        if not attacker_won and attacking_hero and self._all_land_lost(attacking_units, attacker_losses):
            return CapturedHero(attacking_hero, "defender")
        return None

    def _all_land_lost(self, units: Mapping[str, int], losses: Mapping[str, int]) -> bool:
        return all(
            losses.get(uid, 0) >= count
            for uid, count in units.items()
            if self._catalog.is_type(uid, UnitType.LAND)
        )


def _add_losses(total: dict[str, int], losses: Mapping[str, int]) -> None:
    for uid, count in losses.items():
        total[uid] = total.get(uid, 0) + count


def _subtract(units: Mapping[str, int], losses: Mapping[str, int]) -> dict[str, int]:
    return {uid: max(0, count - losses.get(uid, 0)) for uid, count in units.items()}
