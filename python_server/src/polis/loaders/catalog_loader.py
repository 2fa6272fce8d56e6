"""Catalog loader — parses units/heroes/buildings/research YAML files.

Each category lives in its own file under the config directory:
units.yaml, heroes.yaml, buildings.yaml, research.yaml and
ruin_research.yaml.  Missing files yield an empty section.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from polis.models.catalog import (
    BuildingDetails,
    HeroDetails,
    ResearchDetails,
    UnitDetails,
    UnitType,
)
from polis.util.errors import ConfigError

log = logging.getLogger(__name__)


def _read_section(path: Path) -> dict:
    if not path.exists():
        log.warning("Catalog file missing: %s", path)
        return {}
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at top level")
    return data


def _parse_units(section: dict) -> list[UnitDetails]:
    units: list[UnitDetails] = []
    for uid, attrs in section.items():
        if not isinstance(attrs, dict):
            continue
        try:
            unit_type = UnitType(attrs.get("type", "land"))
        except ValueError as exc:
            raise ConfigError(f"Unit {uid}: unknown type {attrs.get('type')!r}") from exc
        units.append(UnitDetails(
            uid=uid,
            name=attrs.get("name", uid),
            type=unit_type,
            attack=float(attrs.get("attack", 0)),
            defense=float(attrs.get("defense", 0)),
            speed=float(attrs.get("speed", 0)),
            population=int(attrs.get("population", 1)),
            counters=tuple(attrs.get("counters", []) or []),
            mythical=bool(attrs.get("mythical", False)),
            flying=bool(attrs.get("flying", False)),
            capacity=int(attrs.get("capacity", 0)),
            cost=dict(attrs.get("cost", {}) or {}),
        ))
    return units


def _parse_heroes(section: dict) -> list[HeroDetails]:
    heroes: list[HeroDetails] = []
    for hid, attrs in section.items():
        if not isinstance(attrs, dict):
            continue
        passive = attrs.get("passive", {}) or {}
        heroes.append(HeroDetails(
            hid=hid,
            name=attrs.get("name", hid),
            passive_subtype=passive.get("subtype", ""),
            passive_value=float(passive.get("value", 0)),
            cost=dict(attrs.get("cost", {}) or {}),
        ))
    return heroes


def _parse_buildings(section: dict) -> list[BuildingDetails]:
    return [
        BuildingDetails(
            bid=bid,
            name=attrs.get("name", bid),
            points=int(attrs.get("points", 0)),
            population=int(attrs.get("population", 0)),
            max_level=int(attrs.get("max_level", 0)),
            base_cost=dict(attrs.get("base_cost", {}) or {}),
        )
        for bid, attrs in section.items()
        if isinstance(attrs, dict)
    ]


def _parse_research(section: dict) -> list[ResearchDetails]:
    return [
        ResearchDetails(
            rid=rid,
            name=attrs.get("name", rid),
            academy_level=int(attrs.get("academy_level", 0)),
            cost=dict(attrs.get("cost", {}) or {}),
        )
        for rid, attrs in section.items()
        if isinstance(attrs, dict)
    ]


def load_catalog_data(path: str | Path = "config") -> dict[str, list]:
    """Load all catalog sections from *path*.

    Returns:
        ``{"units": [...], "heroes": [...], "buildings": [...],
        "research": [...]}`` — ruin research rewards are merged into
        ``research``.
    """
    path = Path(path)
    units = _parse_units(_read_section(path / "units.yaml"))
    heroes = _parse_heroes(_read_section(path / "heroes.yaml"))
    buildings = _parse_buildings(_read_section(path / "buildings.yaml"))
    research = _parse_research(_read_section(path / "research.yaml"))
    research += _parse_research(_read_section(path / "ruin_research.yaml"))
    log.info(
        "Loaded catalog from %s: %d units, %d heroes, %d buildings, %d research",
        path, len(units), len(heroes), len(buildings), len(research),
    )
    return {"units": units, "heroes": heroes, "buildings": buildings, "research": research}
