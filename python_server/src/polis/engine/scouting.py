"""Scouting resolver — spy mission outcome.

The attacker's silver competes with twice the silver stored in the
defender's cave.  The mission only succeeds if the odds are better than
even *and* the roll succeeds, so a spy sent with less silver than the
cave holds never gets through.
"""

from __future__ import annotations

import math
import random
from typing import Any, Mapping

from polis.loaders.game_config_loader import GameConfig
from polis.models.combat import ScoutResult

SUCCESS_MESSAGE = "Scouting successful! Detailed report obtained."
FAILURE_MESSAGE = "Scouting failed! Your spy was detected."


def scouting_chance(attacking_silver: float, cave_silver: float,
                    config: GameConfig | None = None) -> float:
    """Probability the spy goes unnoticed."""
    cfg = config or GameConfig()
    defender_bonus = cave_silver * cfg.scout_defender_silver_weight
    return (attacking_silver + 1) / (attacking_silver + defender_bonus + 1)


def resolve_scouting(
    target_city: Mapping[str, Any],
    attacking_silver: float,
    rng: random.Random | Any = random,
    config: GameConfig | None = None,
) -> ScoutResult:
    """Resolve a spy mission against *target_city*.

    Args:
        target_city: Current city document of the target.
        attacking_silver: Silver the spy carries.
        rng: Anything with a ``random()`` method (tests pass a stub).
        config: Scouting constants.
    """
    cfg = config or GameConfig()
    cave_silver = (target_city.get("cave") or {}).get("silver") or 0
    chance = scouting_chance(attacking_silver, cave_silver, cfg)
    success = rng.random() < chance and chance > cfg.scout_success_threshold

    if success:
        return ScoutResult(
            success=True,
            message=SUCCESS_MESSAGE,
            target_city_name=target_city.get("cityName", ""),
            target_owner_username=(target_city.get("playerInfo") or {}).get("username") or "Unknown",
            resources=dict(target_city.get("resources") or {}),
            units=dict(target_city.get("units") or {}),
            buildings=dict(target_city.get("buildings") or {}),
            god=target_city.get("god") or "None",
        )
    return ScoutResult(
        success=False,
        message=FAILURE_MESSAGE,
        silver_gained=math.floor(attacking_silver * cfg.scout_silver_refund_ratio),
    )
