"""Travel time between map positions.

Scouts and traders use a fixed per-tile time; armies move at the speed
of their slowest unit, modified by the world's season and weather.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional

from polis.loaders.game_config_loader import GameConfig

FAST_MODES = ("scout", "trade")


def distance(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    """Euclidean distance in map tiles between two ``{x, y}`` positions."""
    if not a or not b:
        return 0.0
    return math.hypot((a.get("x") or 0) - (b.get("x") or 0), (a.get("y") or 0) - (b.get("y") or 0))


def modified_speed(speed: float, world_state: Optional[Mapping[str, Any]],
                   unit_types: Iterable[str]) -> float:
    """Apply season, wind and weather to a base speed.

    *unit_types* holds any of ``"land"``, ``"naval"`` and ``"flying"``.
    Wind is read from ``world_state["windSpeed"]`` (0–10, 5 is calm).
    """
    if not world_state:
        return speed
    types = set(unit_types)
    land = "land" in types
    sea_or_air = "naval" in types or "flying" in types

    if land:
        season = world_state.get("season")
        if season == "Summer":
            speed *= 1.1
        elif season == "Winter":
            speed *= 0.8

    if sea_or_air:
        wind = world_state.get("windSpeed", 5)
        speed *= 1 + ((wind - 5) / 10) * 0.5

    weather = world_state.get("weather")
    if weather == "Rainy":
        if land:
            speed *= 0.9
    elif weather == "Stormy":
        if sea_or_air:
            speed *= 0.8
        if land:
            speed *= 0.8
    elif weather == "Foggy":
        speed *= 0.75
    return speed


def travel_seconds(
    dist: float,
    speed: float,
    mode: Optional[str] = None,
    world_state: Optional[Mapping[str, Any]] = None,
    unit_types: Iterable[str] = (),
    config: GameConfig | None = None,
) -> float:
    """Seconds needed to cover *dist* tiles.

    Returns ``math.inf`` when the modified speed is not positive.
    """
    cfg = config or GameConfig()
    if mode in FAST_MODES:
        return max(cfg.fast_travel_min_s,
                   min(cfg.fast_travel_max_s, dist * cfg.fast_travel_seconds_per_tile))
    speed = modified_speed(speed, world_state, unit_types)
    if speed <= 0:
        return math.inf
    hours = dist / (speed * cfg.world_speed_factor)
    return hours * 3600
