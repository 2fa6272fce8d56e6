"""Movement model — a time-delayed player action in flight.

A movement document is created by a send action with ``status=moving``
and is rewritten or deleted by the dispatcher when its arrival time has
passed:

    moving ──► returning ──► (deleted)
    moving ──► founding ──► (deleted | returning)     found_city only
    moving ──► (deleted)                              scout, reinforce, trade, assign_hero

Each movement type carries a different target; the concrete dataclass is
chosen from the ``type`` field by :func:`movement_from_dict`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional


class MovementType(Enum):
    """What a movement does on arrival."""

    ATTACK = "attack"
    ATTACK_VILLAGE = "attack_village"
    ATTACK_RUIN = "attack_ruin"
    ATTACK_GOD_TOWN = "attack_god_town"
    SCOUT = "scout"
    REINFORCE = "reinforce"
    TRADE = "trade"
    FOUND_CITY = "found_city"
    ASSIGN_HERO = "assign_hero"


class MovementStatus(Enum):
    """Lifecycle state of a movement."""

    MOVING = "moving"
    FOUNDING = "founding"
    RETURNING = "returning"


def _doc(key: str, default: Any = None, factory: Any = None) -> Any:
    """Dataclass field stored under *key* in the movement document."""
    if factory is not None:
        return field(default_factory=factory, metadata={"doc": key})
    return field(default=default, metadata={"doc": key})


@dataclass
class Movement:
    """Fields shared by every movement type.

    Attributes:
        id: Document id within ``worlds/{world}/movements``.
        type: Movement type (discriminator).
        status: Current lifecycle state.
        departure_time: Epoch seconds when the movement was sent.
        arrival_time: Epoch seconds when it is next due.
        cancellable_until: The owner may cancel until this moment.
        units: Unit id → count in transit (attackers outbound,
            survivors on the way back).
        hero: Hero id travelling with the movement, if any.
        agent: Agent id travelling with the movement, if any.
        resources: Resources in transit (trade goods, scout silver,
            plunder on the way back).
        wounded: Wounded units carried home for the hospital.
        attack_formation: ``{"front": unit_id, "mid": unit_id}`` roles.
        is_cross_island: Naval phase fought before the land phase.
        involved_parties: Account ids that can see the movement.
        extra: Document keys not modelled here, kept on round trip.
    """

    id: str = ""
    type: MovementType = _doc("type", MovementType.ATTACK)
    status: MovementStatus = _doc("status", MovementStatus.MOVING)
    departure_time: float = _doc("departureTime", 0.0)
    arrival_time: float = _doc("arrivalTime", 0.0)
    cancellable_until: Optional[float] = _doc("cancellableUntil")
    origin_owner_id: str = _doc("originOwnerId", "")
    origin_city_id: str = _doc("originCityId", "")
    origin_city_name: str = _doc("originCityName", "")
    origin_owner_username: str = _doc("originOwnerUsername", "")
    origin_coords: dict[str, float] = _doc("originCoords", factory=dict)
    target_coords: dict[str, float] = _doc("targetCoords", factory=dict)
    units: dict[str, int] = _doc("units", factory=dict)
    hero: Optional[str] = _doc("hero")
    agent: Optional[str] = _doc("agent")
    resources: dict[str, int] = _doc("resources", factory=dict)
    wounded: dict[str, int] = _doc("wounded", factory=dict)
    attack_formation: dict[str, str] = _doc("attackFormation", factory=dict)
    is_cross_island: bool = _doc("isCrossIsland", False)
    involved_parties: list[str] = _doc("involvedParties", factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def phalanx(self) -> Optional[str]:
        return self.attack_formation.get("front") or None

    @property
    def support(self) -> Optional[str]:
        return self.attack_formation.get("mid") or None

    @property
    def travel_duration(self) -> float:
        """Seconds between departure and arrival of the current leg."""
        return self.arrival_time - self.departure_time

    def return_arrival(self) -> float:
        """Arrival of the way home: it takes as long as the way out."""
        return self.arrival_time + self.travel_duration

    def is_due(self, now: float) -> bool:
        return self.arrival_time <= now

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a store document (the id is the document key)."""
        data: dict[str, Any] = copy.deepcopy(self.extra)
        for f in fields(self):
            key = f.metadata.get("doc")
            if key is None:
                continue
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            data[key] = copy.deepcopy(value)
        return data


@dataclass
class CityTargetMovement(Movement):
    """attack, scout, reinforce and trade against a player city."""

    target_owner_id: Optional[str] = _doc("targetOwnerId")
    target_city_id: Optional[str] = _doc("targetCityId")
    target_slot_id: Optional[str] = _doc("targetSlotId")
    target_city_name: str = _doc("targetCityName", "")
    target_owner_username: str = _doc("ownerUsername", "")


@dataclass
class VillageAttackMovement(Movement):
    target_village_id: str = _doc("targetVillageId", "")
    target_village_name: str = _doc("targetVillageName", "")


@dataclass
class RuinAttackMovement(Movement):
    target_ruin_id: str = _doc("targetRuinId", "")
    target_ruin_name: str = _doc("targetRuinName", "")


@dataclass
class GodTownAttackMovement(Movement):
    target_town_id: str = _doc("targetTownId", "")
    target_town_name: str = _doc("targetTownName", "")


@dataclass
class FoundCityMovement(Movement):
    """Settlers travelling to an empty slot.

    After arrival the movement switches to ``founding`` for
    ``founding_time_seconds`` before the slot is claimed.
    """

    target_slot_id: str = _doc("targetSlotId", "")
    new_city_name: str = _doc("newCityName", "")
    founding_time_seconds: Optional[float] = _doc("foundingTimeSeconds")


@dataclass
class AssignHeroMovement(Movement):
    target_owner_id: Optional[str] = _doc("targetOwnerId")
    target_city_id: Optional[str] = _doc("targetCityId")


_CLASS_BY_TYPE: dict[MovementType, type[Movement]] = {
    MovementType.ATTACK: CityTargetMovement,
    MovementType.SCOUT: CityTargetMovement,
    MovementType.REINFORCE: CityTargetMovement,
    MovementType.TRADE: CityTargetMovement,
    MovementType.ATTACK_VILLAGE: VillageAttackMovement,
    MovementType.ATTACK_RUIN: RuinAttackMovement,
    MovementType.ATTACK_GOD_TOWN: GodTownAttackMovement,
    MovementType.FOUND_CITY: FoundCityMovement,
    MovementType.ASSIGN_HERO: AssignHeroMovement,
}


def movement_from_dict(movement_id: str, data: dict[str, Any]) -> Movement:
    """Build the concrete movement for a store document.

    Raises:
        ValueError: If ``type`` or ``status`` is not a known value.
    """
    mtype = MovementType(data.get("type"))
    cls = _CLASS_BY_TYPE[mtype]
    kwargs: dict[str, Any] = {}
    known: set[str] = set()
    for f in fields(cls):
        key = f.metadata.get("doc")
        if key is None:
            continue
        known.add(key)
        if key in data and data[key] is not None:
            kwargs[f.name] = copy.deepcopy(data[key])
        elif key in data and f.default is None:
            kwargs[f.name] = None
    kwargs["type"] = mtype
    kwargs["status"] = MovementStatus(data.get("status", "moving"))
    # Zero counts are noise left by the client; drop them.
    for attr in ("units", "resources", "wounded"):
        kwargs[attr] = {k: v for k, v in (kwargs.get(attr) or {}).items() if v}
    extra = {k: copy.deepcopy(v) for k, v in data.items() if k not in known and k != "id"}
    return cls(id=movement_id, extra=extra, **kwargs)
