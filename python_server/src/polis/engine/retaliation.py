"""Village retaliation — army losses when a village revolts."""

from __future__ import annotations

from typing import Mapping

from polis.engine.catalog import Catalog
from polis.models.catalog import UnitType


def resolve_village_retaliation(catalog: Catalog, player_units: Mapping[str, int] | None,
                                ratio: float = 0.05) -> dict[str, int]:
    """Losses inflicted on *player_units* by a revolting village.

    A flat *ratio* of the army's population value is lost, spread over
    the land units by their share of that value.  Each count is rounded
    and never exceeds what the player owns.
    """
    losses: dict[str, int] = {}
    if not player_units:
        return losses

    total = catalog.population_value(player_units)
    if total == 0:
        return losses

    to_lose = total * ratio
    for uid, count in player_units.items():
        unit = catalog.unit(uid)
        if unit is None or unit.type != UnitType.LAND or unit.population <= 0 or count <= 0:
            continue
        share = (unit.population * count) / total
        # half-up
        lost = int((to_lose / unit.population) * share + 0.5)
        losses[uid] = min(count, lost)
    return losses
