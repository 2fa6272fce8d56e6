"""Game constants — seeded buildings, village garrisons, fixed values.

Tunable balance numbers live in ``config/game.yaml``; the values here
are structural and never tuned at runtime.
"""

# -- Resources -----------------------------------------------------------

RESOURCE_KEYS: tuple[str, ...] = ("wood", "stone", "silver")

# -- City founding -------------------------------------------------------

STARTER_BUILDINGS: tuple[str, ...] = (
    "senate", "farm", "warehouse", "timber_camp", "quarry", "silver_mine", "cave",
)
"""Buildings seeded at level 1 when a city is founded."""

FREE_LEVEL_ONE_BUILDINGS: tuple[str, ...] = STARTER_BUILDINGS + ("hospital",)
"""Buildings whose first level costs no population."""

PRODUCTION_BUILDINGS: dict[str, str] = {
    "timber_camp": "wood",
    "quarry": "stone",
    "silver_mine": "silver",
}

# -- Queues --------------------------------------------------------------

QUEUE_NAMES: tuple[str, ...] = (
    "buildQueue",
    "barracksQueue",
    "shipyardQueue",
    "divineTempleQueue",
    "researchQueue",
    "healQueue",
)
"""Queue processing order within one tick."""

UNIT_QUEUES: tuple[str, ...] = ("barracksQueue", "shipyardQueue", "divineTempleQueue")

# -- Villages ------------------------------------------------------------

VILLAGE_TROOPS_BY_LEVEL: dict[int, dict[str, int]] = {
    1: {"swordsman": 15, "archer": 10},
    2: {"swordsman": 25, "archer": 15, "slinger": 5},
    3: {"swordsman": 40, "archer": 25, "slinger": 10, "hoplite": 5},
    4: {"swordsman": 60, "archer": 40, "slinger": 20, "hoplite": 15, "cavalry": 5},
    5: {"swordsman": 100, "archer": 75, "slinger": 50, "hoplite": 40, "cavalry": 20},
}

# -- Heroes --------------------------------------------------------------

HERO_STATUS_CAPTURED = "captured"
PRISON_BASE_CAPACITY = 4
"""Prison holds ``level + PRISON_BASE_CAPACITY`` heroes once built."""

# -- Alliance research keys ----------------------------------------------

ALLIANCE_PRODUCTION_RESEARCH: dict[str, str] = {
    "wood": "forestry_experts",
    "stone": "masonry_techniques",
    "silver": "coinage_reform",
}
ALLIANCE_STORAGE_RESEARCH = "advanced_storage"
ALLIANCE_FAVOR_RESEARCH = "divine_devotion"
SHRINE_WONDER = "shrine_of_the_ancestors"
