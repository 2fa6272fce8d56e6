"""Reinforcement and trade processors — deliveries with no return leg."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from polis.engine.processors.base import MovementContext, MovementHandler, Outcome, add_counts
from polis.models.movement import CityTargetMovement
from polis.persistence import paths

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction


class _Delivery(MovementHandler):

    def _players(self, ctx: MovementContext, target: dict[str, Any]) -> dict[str, Any]:
        movement = ctx.movement
        origin = ctx.origin_city or {}
        return {
            "originCityName": origin.get("cityName", movement.origin_city_name),
            "targetCityName": target.get("cityName", movement.target_city_name),
            "originPlayer": {
                "username": movement.origin_owner_username,
                "id": movement.origin_owner_id,
                "cityId": movement.origin_city_id,
                "x": origin.get("x"),
                "y": origin.get("y"),
            },
            "targetPlayer": {
                "username": movement.target_owner_username,
                "id": movement.target_owner_id,
                "cityId": movement.target_city_id,
                "x": target.get("x"),
                "y": target.get("y"),
            },
        }

    def _undeliverable(self, tx: Transaction, outcome: Outcome, ctx: MovementContext,
                       report_type: str, what: str) -> None:
        movement = ctx.movement
        self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
            ctx, report_type, f"{what} to {movement.target_city_name} failed",
            outcome={"message": "The target city no longer exists. Your delivery is returning home."},
        ))
        self.send_home(tx, outcome, ctx, units=dict(movement.units), hero=movement.hero,
                       resources=dict(movement.resources))


class ReinforceProcessor(_Delivery):
    """Stations units in the target city, attributed to their origin city."""

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        target_path = paths.city(movement.target_owner_id, ctx.world_id, movement.target_city_id)
        slot_path = paths.city_slot(ctx.world_id, movement.target_slot_id) if movement.target_slot_id else None

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            target = await tx.get(target_path)
            slot = await tx.get(slot_path) if slot_path else None
            if target is None:
                self._undeliverable(tx, outcome, ctx, "reinforce", "Reinforcement")
                return

            reinforcements = dict(target.get("reinforcements") or {})
            entry = dict(reinforcements.get(movement.origin_city_id) or {
                "ownerId": movement.origin_owner_id,
                "originCityName": movement.origin_city_name,
                "units": {},
            })
            entry["units"] = add_counts(entry.get("units"), movement.units)
            reinforcements[movement.origin_city_id] = entry

            tx.update(target_path, {"reinforcements": reinforcements})
            if slot is not None:
                tx.update(slot_path, {"reinforcements": reinforcements})

            players = self._players(ctx, target)
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "reinforce", f"Reinforcement to {players['targetCityName']}",
                units=dict(movement.units), **players,
            ))
            self.add_report(tx, outcome, ctx, movement.target_owner_id, self.report(
                ctx, "reinforce", f"Reinforcements from {players['originCityName']}",
                units=dict(movement.units), **players,
            ))
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)


class TradeProcessor(_Delivery):
    """Credits the carried resources to the target city."""

    async def process(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, CityTargetMovement)
        target_path = paths.city(movement.target_owner_id, ctx.world_id, movement.target_city_id)

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            target = await tx.get(target_path)
            if target is None:
                self._undeliverable(tx, outcome, ctx, "trade", "Trade")
                return

            tx.update(target_path, {
                "resources": add_counts(target.get("resources"), movement.resources),
            })
            players = self._players(ctx, target)
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "trade", f"Trade to {players['targetCityName']}",
                resources=dict(movement.resources), **players,
            ))
            self.add_report(tx, outcome, ctx, movement.target_owner_id, self.report(
                ctx, "trade", f"Trade from {players['originCityName']}",
                resources=dict(movement.resources), **players,
            ))
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)
