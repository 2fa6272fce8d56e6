"""Game configuration — loads tunable constants from config/game.yaml.

Provides a single ``GameConfig`` dataclass that is loaded once at startup
and then passed (or injected) wherever constants are needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import yaml

log = logging.getLogger(__name__)

DEFAULT_GAME_CONFIG_PATH = "config/game.yaml"


@dataclass
class DemandOption:
    """One choice offered when demanding resources from a conquered village."""
    name: str
    duration: int
    multiplier: float
    happiness_cost: int = 0


def _default_demand_options() -> List[DemandOption]:
    return [
        DemandOption("5 minutes", 300, 0.125, 0),
        DemandOption("40 minutes", 2400, 1.0, 2),
        DemandOption("2 hours", 7200, 3.0, 5),
        DemandOption("4 hours", 14400, 4.0, 10),
    ]


@dataclass
class GameConfig:
    """All tunable gameplay constants.

    Loaded from ``config/game.yaml``.  Every field has a sensible default
    so the server can start even without the file.
    """

    # -- Timing ------------------------------------------------------
    movement_poll_interval_s: float = 5.0
    city_tick_interval_s: float = 1.0
    queue_tick_interval_s: float = 1.0
    autosave_interval_s: float = 30.0
    cancel_window_s: float = 30.0
    default_founding_time_s: float = 3600.0
    transaction_attempts: int = 5

    # -- Combat ------------------------------------------------------
    plunder_ratio: float = 0.25
    wound_ratio: float = 0.15
    counter_attack_bonus: float = 1.2
    counter_defense_penalty: float = 0.8
    phalanx_share: float = 0.6
    support_share: float = 0.3
    support_engagement_weight: float = 0.5
    other_engagement_weight: float = 0.2
    hero_wound_hours: float = 12.0

    # -- Scouting ----------------------------------------------------
    scout_success_threshold: float = 0.5
    scout_defender_silver_weight: float = 2.0
    scout_silver_refund_ratio: float = 0.5

    # -- Villages ----------------------------------------------------
    village_revolt_happiness: float = 40.0
    village_retaliation_ratio: float = 0.05
    village_plunder_ratio: float = 0.5
    village_plunder_happiness_cost: float = 40.0
    village_plunder_cooldown_s: float = 3600.0
    village_happiness_regen_per_hour: float = 2.0
    village_island_bonus: float = 1.2
    demand_options: List[DemandOption] = field(default_factory=_default_demand_options)

    # -- Alliance ----------------------------------------------------
    shrine_wonder_bonus: float = 0.1
    alliance_wonder_points: int = 500

    # -- Ruins & god towns -------------------------------------------
    god_town_damage_per_point: float = 1.0
    war_points_per_battle_point: float = 0.1
    war_point_resource_value: int = 100

    # -- Travel ------------------------------------------------------
    world_speed_factor: float = 5.0
    fast_travel_seconds_per_tile: float = 15.0
    fast_travel_min_s: float = 15.0
    fast_travel_max_s: float = 300.0
    default_unit_speed: float = 10.0

    # -- Cache -------------------------------------------------------
    lookup_cache_ttl_s: float = 60.0

    # -- Storage & network -------------------------------------------
    db_path: str = "polis.db"
    rest_host: str = "0.0.0.0"
    rest_port: int = 8080
    worlds: List[str] = field(default_factory=lambda: ["world1"])

    # -- Starting values ---------------------------------------------
    founded_city_resources: Dict[str, int] = field(default_factory=lambda: {
        "wood": 1000, "stone": 1000, "silver": 500,
    })


def load_game_config(path: str = DEFAULT_GAME_CONFIG_PATH) -> GameConfig:
    """Load game configuration from a YAML file.

    Missing keys fall back to dataclass defaults.  If the file does not
    exist, a warning is logged and pure defaults are returned.
    """
    p = Path(path)
    if not p.exists():
        log.warning("Game config not found at %s — using defaults", p)
        return GameConfig()

    with p.open() as f:
        raw = yaml.safe_load(f) or {}

    log.info("Loaded game config from %s (%d keys)", p, len(raw))

    # Handle nested demand options
    demand_raw = raw.pop("demand_options", None)
    if isinstance(demand_raw, list):
        demand = [DemandOption(**opt) for opt in demand_raw if isinstance(opt, dict)]
    else:
        demand = _default_demand_options()

    cfg = GameConfig(demand_options=demand, **{
        k: v for k, v in raw.items()
        if k in GameConfig.__dataclass_fields__
    })
    return cfg
