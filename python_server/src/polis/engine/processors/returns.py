"""Return processor — troops, agents, heroes and loot arriving home."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from polis.engine.processors.base import MovementContext, MovementHandler, Outcome, add_counts
from polis.models.movement import MovementType
from polis.persistence.document_store import DELETE_FIELD

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction


class ReturnProcessor(MovementHandler):
    """Credit a ``returning`` movement to its origin city and delete it.

    Resources beyond the warehouse are lost; wounded beyond the free
    hospital space are dropped.  A scout's silver goes back to the cave.
    """

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            origin = await tx.get(ctx.origin_city_path)
            if origin is None:
                self.finish(tx, outcome, ctx)
                return

            city = self._rules.accrue(origin, ctx.now, ctx.origin_alliance)
            resources = dict(movement.resources)
            fields: dict[str, Any] = {}
            if movement.type == MovementType.SCOUT:
                silver = resources.pop("silver", 0)
                if silver:
                    cave = dict(city.get("cave") or {})
                    cave["silver"] = cave.get("silver", 0) + silver
                    fields["cave"] = cave
            fields.update({
                "units": add_counts(city.get("units"), movement.units),
                "resources": self._rules.clamp_resources(
                    add_counts(city.get("resources"), resources), city, ctx.origin_alliance,
                ),
                "wounded": self._admit_wounded(city, movement.wounded),
                "lastUpdated": ctx.now,
            })
            if "worship" in city:
                fields["worship"] = city["worship"]
            if movement.agent:
                agents = dict(city.get("agents") or {})
                agents[movement.agent] = agents.get(movement.agent, 0) + 1
                fields["agents"] = agents
            if movement.hero and movement.hero in (city.get("heroes") or {}):
                fields[f"heroes.{movement.hero}.cityId"] = None
                fields[f"heroes.{movement.hero}.status"] = DELETE_FIELD
            tx.update(ctx.origin_city_path, fields)

            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "return", f"Troops returned to {city.get('cityName', movement.origin_city_name)}",
                units=dict(movement.units),
                hero=movement.hero,
                resources=dict(movement.resources),
                wounded=dict(movement.wounded),
            ))
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)

    def _admit_wounded(self, city: dict[str, Any], incoming: dict[str, int]) -> dict[str, int]:
        wounded = dict(city.get("wounded") or {})
        space = self._rules.free_hospital_space(city)
        for uid, count in incoming.items():
            if space <= 0:
                break
            admitted = min(space, count)
            wounded[uid] = wounded.get(uid, 0) + admitted
            space -= admitted
        return wounded
