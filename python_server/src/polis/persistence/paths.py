"""Canonical document paths.

Per-world collections live under ``worlds/{world_id}``; per-account data
under ``users/{account_id}``.
"""

from __future__ import annotations


def world(world_id: str) -> str:
    return f"worlds/{world_id}"


def movements(world_id: str) -> str:
    return f"worlds/{world_id}/movements"


def movement(world_id: str, movement_id: str) -> str:
    return f"{movements(world_id)}/{movement_id}"


def city_slot(world_id: str, slot_id: str) -> str:
    return f"worlds/{world_id}/citySlots/{slot_id}"


def village(world_id: str, village_id: str) -> str:
    return f"worlds/{world_id}/villages/{village_id}"


def ruin(world_id: str, ruin_id: str) -> str:
    return f"worlds/{world_id}/ruins/{ruin_id}"


def god_town(world_id: str, town_id: str) -> str:
    return f"worlds/{world_id}/godTowns/{town_id}"


def alliance(world_id: str, alliance_id: str) -> str:
    return f"worlds/{world_id}/alliances/{alliance_id}"


def account(account_id: str) -> str:
    return f"users/{account_id}"


def account_game(account_id: str, world_id: str) -> str:
    """The per-world game document of an account (points, alliance, ...)."""
    return f"users/{account_id}/games/{world_id}"


def cities(account_id: str, world_id: str) -> str:
    return f"{account_game(account_id, world_id)}/cities"


def city(account_id: str, world_id: str, city_id: str) -> str:
    return f"{cities(account_id, world_id)}/{city_id}"


def conquered_villages(account_id: str, world_id: str) -> str:
    return f"{account_game(account_id, world_id)}/conqueredVillages"


def conquered_village(account_id: str, world_id: str, village_id: str) -> str:
    return f"{conquered_villages(account_id, world_id)}/{village_id}"


def reports(account_id: str, world_id: str) -> str:
    return f"users/{account_id}/worlds/{world_id}/reports"


def report(account_id: str, world_id: str, report_id: str) -> str:
    return f"{reports(account_id, world_id)}/{report_id}"
