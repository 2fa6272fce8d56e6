"""Static catalog models.

Units, heroes, buildings and research, loaded from the YAML files in
``config/`` via the catalog loader.  All instances are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class UnitType(Enum):
    """Which combat phase a unit fights in."""

    LAND = "land"
    NAVAL = "naval"


@dataclass(frozen=True)
class UnitDetails:
    """Definition of a trainable unit.

    Attributes:
        uid: Unit identifier (e.g. ``"hoplite"``).
        name: Display name.
        type: Combat phase the unit belongs to.
        attack: Attack value per unit.
        defense: Defense value per unit.
        speed: Map tiles per hour before world speed is applied.
        population: Population cost per unit; also its battle-point value.
        counters: Unit ids this unit is strong against.
        mythical: Mythical units survive the "annihilated" check.
        flying: Flying units carry land troops across islands.
        capacity: Land troops a naval or flying unit can transport.
        cost: Training cost. {resource_key: amount}
    """

    uid: str = ""
    name: str = ""
    type: UnitType = UnitType.LAND
    attack: float = 0.0
    defense: float = 0.0
    speed: float = 0.0
    population: int = 1
    counters: tuple[str, ...] = ()
    mythical: bool = False
    flying: bool = False
    capacity: int = 0
    cost: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class HeroDetails:
    """Definition of a hero and its passive bonus.

    ``passive_subtype`` is ``"land_attack"`` (combat multiplier) or
    ``"silver_production"`` (production multiplier); the bonus is
    ``1 + passive_value``.
    """

    hid: str = ""
    name: str = ""
    passive_subtype: str = ""
    passive_value: float = 0.0
    cost: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildingDetails:
    """Definition of a city building.

    Attributes:
        bid: Building identifier.
        name: Display name.
        points: City points per level step.
        population: Base population cost of the first level.
        max_level: Highest level the building can reach.
        base_cost: Cost of the first level. {resource_key: amount}
    """

    bid: str = ""
    name: str = ""
    points: int = 0
    population: int = 0
    max_level: int = 0
    base_cost: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ResearchDetails:
    """Definition of an academy research."""

    rid: str = ""
    name: str = ""
    academy_level: int = 0
    cost: dict[str, int] = field(default_factory=dict)
