"""City founding processor.

Settlers arriving at an empty slot first spend ``foundingTimeSeconds``
building the city (``moving → founding``).  When that time is up the slot
is claimed in one transaction: if somebody else got there first the
party turns back, otherwise the new city is created with the starter
buildings and the travelling units as its garrison.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from polis.engine.processors.base import (
    OUTCOME_FOUNDING,
    MovementContext,
    MovementHandler,
    Outcome,
)
from polis.models.movement import FoundCityMovement, MovementStatus
from polis.persistence import paths
from polis.util.constants import QUEUE_NAMES, STARTER_BUILDINGS

if TYPE_CHECKING:
    from polis.persistence.document_store import Transaction

log = logging.getLogger(__name__)


class FoundingProcessor(MovementHandler):

    async def process(self, ctx: MovementContext) -> str:
        if ctx.movement.status == MovementStatus.MOVING:
            return await self._start_founding(ctx)
        return await self._claim_slot(ctx)

    async def _start_founding(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, FoundCityMovement)
        seconds = movement.founding_time_seconds
        if seconds is None:
            seconds = self._cfg.default_founding_time_s
        arrival = ctx.now + seconds

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            tx.update(ctx.movement_path, {
                "status": MovementStatus.FOUNDING.value,
                "arrivalTime": arrival,
                "outboundSeconds": movement.travel_duration,
            })
            outcome.result = OUTCOME_FOUNDING
            log.info("[STATE] Movement %s: MOVING → FOUNDING (done %.0f)", movement.id, arrival)

        return await self.commit(ctx, apply)

    async def _claim_slot(self, ctx: MovementContext) -> str:
        movement = ctx.movement
        assert isinstance(movement, FoundCityMovement)
        slot_path = paths.city_slot(ctx.world_id, movement.target_slot_id)
        coords = movement.target_coords or {}

        async def apply(tx: Transaction, outcome: Outcome) -> None:
            slot = await tx.get(slot_path)
            origin = await tx.get(ctx.origin_city_path)
            if origin is None:
                self.finish(tx, outcome, ctx)
                return

            if slot is None or slot.get("ownerId") is not None:
                self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                    ctx, "found_city_failed", "Founding attempt failed",
                    outcome={"message": (
                        f"The plot at ({coords.get('x')}, {coords.get('y')}) was claimed by "
                        "another player before your party arrived."
                    )},
                ))
                outbound = movement.extra.get("outboundSeconds")
                if outbound is None:
                    outbound = movement.travel_duration
                self.send_home(tx, outcome, ctx, units=dict(movement.units),
                               arrival_time=ctx.now + outbound)
                return

            city_id = self._store.new_id()
            tx.update(slot_path, {
                "ownerId": movement.origin_owner_id,
                "ownerUsername": movement.origin_owner_username,
                "cityName": movement.new_city_name,
                "alliance": origin.get("alliance"),
                "allianceName": origin.get("allianceName"),
            })
            tx.set(paths.city(movement.origin_owner_id, ctx.world_id, city_id),
                   self.new_city(ctx, city_id, slot, origin))
            self.add_report(tx, outcome, ctx, movement.origin_owner_id, self.report(
                ctx, "found_city_success", "New city founded!",
                outcome={"message": (
                    f"You have successfully founded the city of {movement.new_city_name} at "
                    f"({coords.get('x')}, {coords.get('y')}). Your troops have garrisoned the new city."
                )},
            ))
            log.info("[STATE] City %s founded on slot %s by %s",
                     city_id, movement.target_slot_id, movement.origin_owner_id)
            self.finish(tx, outcome, ctx)

        return await self.commit(ctx, apply)

    def new_city(self, ctx: MovementContext, city_id: str, slot: dict[str, Any],
                 origin: dict[str, Any]) -> dict[str, Any]:
        """The document of a freshly founded city."""
        movement = ctx.movement
        assert isinstance(movement, FoundCityMovement)
        buildings = {bid: {"level": 0} for bid in self._catalog.buildings}
        for bid in STARTER_BUILDINGS:
            buildings[bid] = {"level": 1}
        coords = movement.target_coords or {}
        city: dict[str, Any] = {
            "id": city_id,
            "slotId": movement.target_slot_id,
            "x": coords.get("x", slot.get("x")),
            "y": coords.get("y", slot.get("y")),
            "islandId": slot.get("islandId"),
            "cityName": movement.new_city_name,
            "playerInfo": copy.deepcopy(origin.get("playerInfo")),
            "resources": dict(self._cfg.founded_city_resources),
            "buildings": buildings,
            "units": dict(movement.units),
            "wounded": {},
            "research": {},
            "worship": {},
            "cave": {"silver": 0},
            "lastUpdated": ctx.now,
        }
        for queue in QUEUE_NAMES:
            city[queue] = []
        return city
