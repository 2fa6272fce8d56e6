"""Combat and scouting result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class CapturedHero:
    """A hero taken by the winning side.

    ``captured_by`` is the side that holds the hero: ``"attacker"`` when
    the defending hero was captured, ``"defender"`` otherwise.
    """

    hero_id: str
    captured_by: str

    def to_dict(self) -> dict[str, str]:
        return {"heroId": self.hero_id, "capturedBy": self.captured_by}


@dataclass
class CombatResult:
    """Outcome of :meth:`CombatResolver.resolve_combat`.

    Attributes:
        attacker_won: True if the attacker won (ties go to the attacker).
        attacker_losses: Units the attacker lost for good (wounded excluded).
        defender_losses: Units the defender lost.
        plunder: Resources taken from the defender (win only).
        wounded: Attacker land units that survive wounded.
        attacker_battle_points: Population value of defender losses.
        defender_battle_points: Population value of attacker losses.
        captured_hero: Provisional capture; the processor voids it when
            the capturing city has no free prison cell.
    """

    attacker_won: bool = False
    attacker_losses: dict[str, int] = field(default_factory=dict)
    defender_losses: dict[str, int] = field(default_factory=dict)
    plunder: dict[str, int] = field(default_factory=dict)
    wounded: dict[str, int] = field(default_factory=dict)
    attacker_battle_points: int = 0
    defender_battle_points: int = 0
    captured_hero: Optional[CapturedHero] = None

    def survivors(self, attacking_units: dict[str, int]) -> dict[str, int]:
        """Attacking units still standing (neither lost nor wounded)."""
        result: dict[str, int] = {}
        for uid, count in attacking_units.items():
            left = count - self.attacker_losses.get(uid, 0) - self.wounded.get(uid, 0)
            if left > 0:
                result[uid] = left
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "attackerWon": self.attacker_won,
            "attackerLosses": dict(self.attacker_losses),
            "defenderLosses": dict(self.defender_losses),
            "plunder": dict(self.plunder),
            "wounded": dict(self.wounded),
            "attackerBattlePoints": self.attacker_battle_points,
            "defenderBattlePoints": self.defender_battle_points,
            "capturedHero": self.captured_hero.to_dict() if self.captured_hero else None,
        }


@dataclass
class PhaseResult:
    """Outcome of one combat phase (land or naval)."""

    attacker_won: bool
    attacker_losses: dict[str, int] = field(default_factory=dict)
    defender_losses: dict[str, int] = field(default_factory=dict)


@dataclass
class ScoutResult:
    """Outcome of a spy mission."""

    success: bool
    message: str
    target_city_name: str = ""
    target_owner_username: str = ""
    resources: dict[str, Any] = field(default_factory=dict)
    units: dict[str, int] = field(default_factory=dict)
    buildings: dict[str, Any] = field(default_factory=dict)
    god: str = "None"
    silver_gained: int = 0

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "message": self.message,
                "silverGained": self.silver_gained,
            }
        return {
            "success": True,
            "message": self.message,
            "targetCityName": self.target_city_name,
            "targetOwnerUsername": self.target_owner_username,
            "resources": dict(self.resources),
            "units": dict(self.units),
            "buildings": dict(self.buildings),
            "god": self.god,
        }
