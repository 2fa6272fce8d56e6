"""REST API — FastAPI application for player actions.

Movements, reports, cities, villages and war points are exposed per
world under ``/api/worlds/{world_id}``.  Every endpoint requires a
bearer token (see :mod:`polis.network.jwt_auth`).

Usage::

    from polis.network.rest_api import create_app

    app = create_app(services)
    # Start with uvicorn as an asyncio task alongside the game loops
"""

from __future__ import annotations

import logging
from typing import Any, TYPE_CHECKING

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from polis.engine.movement_service import SendOrder
from polis.network.jwt_auth import get_current_account
from polis.network.rest_models import (
    ActionResponse,
    CancelMovementResponse,
    DemandRequest,
    MovementListResponse,
    PlunderRequest,
    ReportListResponse,
    SendMovementRequest,
    SendMovementResponse,
    VillageListResponse,
    WarPointsRequest,
)
from polis.persistence import paths
from polis.util.errors import ActionRejected

if TYPE_CHECKING:
    from polis.main import Services

log = logging.getLogger(__name__)


def create_app(services: "Services") -> FastAPI:
    """Factory: create and return a configured FastAPI application.

    The ``services`` reference is captured by closure so every endpoint
    can access game logic without global state.
    """
    app = FastAPI(title="Polis Game Server", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = services.store

    # =================================================================
    # Health (unprotected)
    # =================================================================

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "serverTime": store.server_time()}

    # =================================================================
    # Movements
    # =================================================================

    @app.post("/api/worlds/{world_id}/movements", response_model=SendMovementResponse)
    async def send_movement(world_id: str, body: SendMovementRequest,
                            account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        order = SendOrder(
            mode=body.mode,
            target_kind=body.target_kind,
            target_id=body.target_id,
            units=dict(body.units),
            resources=dict(body.resources),
            hero=body.hero,
            agent=body.agent,
            attack_formation={k: v for k, v in body.attack_formation.model_dump().items() if v},
        )
        try:
            movement_id = await services.movement_service.send(
                world_id, account_id, body.origin_city_id, order,
            )
        except ActionRejected as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "movement_id": movement_id}

    @app.delete("/api/worlds/{world_id}/movements/{movement_id}", response_model=CancelMovementResponse)
    async def cancel_movement(world_id: str, movement_id: str,
                              account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        try:
            arrival = await services.movement_service.cancel(world_id, account_id, movement_id)
        except ActionRejected as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "arrival_time": arrival}

    @app.get("/api/worlds/{world_id}/movements", response_model=MovementListResponse)
    async def list_movements(world_id: str,
                             account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        rows = await services.movement_service.list_movements(world_id, account_id)
        return {"movements": [dict(data, id=doc_id) for doc_id, data in rows]}

    # =================================================================
    # Reports
    # =================================================================

    @app.get("/api/worlds/{world_id}/reports", response_model=ReportListResponse)
    async def list_reports(world_id: str,
                           account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        rows = await store.query(paths.reports(account_id, world_id))
        reports = [dict(data, id=doc_id) for doc_id, data in rows]
        reports.sort(key=lambda r: r.get("timestamp") or 0, reverse=True)
        unread = sum(1 for r in reports if not r.get("read"))
        return {"reports": reports, "unread": unread}

    @app.post("/api/worlds/{world_id}/reports/{report_id}/read")
    async def mark_read(world_id: str, report_id: str,
                        account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        path = paths.report(account_id, world_id, report_id)
        if await store.get(path) is None:
            raise HTTPException(status_code=404, detail="Report not found")
        await store.update(path, {"read": True})
        return {"success": True}

    # =================================================================
    # Cities
    # =================================================================

    @app.get("/api/worlds/{world_id}/cities/{city_id}")
    async def get_city(world_id: str, city_id: str,
                       account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        city = await store.get(paths.city(account_id, world_id, city_id))
        if city is None:
            raise HTTPException(status_code=404, detail="City not found")
        # Viewing a city makes it the account's open city for the queue loops
        active = services.city_service.active(world_id, account_id)
        if active is None or active.city_id != city_id:
            await services.city_service.activate(world_id, account_id, city_id)
        alliance = await services.accounts.alliance(world_id, account_id)
        city = await services.city_service.accrue(city, store.server_time(), alliance)
        city["id"] = city_id
        city["warehouseCapacity"] = services.rules.warehouse_capacity(city, alliance)
        city["points"] = services.rules.points(city, alliance)
        city["availablePopulation"] = services.rules.available_population(city, alliance)
        return city

    @app.post("/api/worlds/{world_id}/cities/{city_id}/war-points", response_model=ActionResponse)
    async def convert_war_points(world_id: str, city_id: str, body: WarPointsRequest,
                                 account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        try:
            resources = await services.city_service.convert_war_points(
                world_id, account_id, city_id, body.points, store.server_time(),
            )
        except ActionRejected as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "result": {"resources": resources}}

    # =================================================================
    # Conquered villages
    # =================================================================

    @app.get("/api/worlds/{world_id}/villages", response_model=VillageListResponse)
    async def list_villages(world_id: str,
                            account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        villages = await services.village_service.list_conquered(
            world_id, account_id, store.server_time(),
        )
        return {"villages": villages}

    @app.post("/api/worlds/{world_id}/villages/{village_id}/demand", response_model=ActionResponse)
    async def demand(world_id: str, village_id: str, body: DemandRequest,
                     account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        try:
            collected = await services.village_service.demand(
                world_id, account_id, body.city_id, village_id, body.option, store.server_time(),
            )
        except ActionRejected as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "result": {"collected": collected}}

    @app.post("/api/worlds/{world_id}/villages/{village_id}/plunder", response_model=ActionResponse)
    async def plunder(world_id: str, village_id: str, body: PlunderRequest,
                      account_id: str = Depends(get_current_account)) -> dict[str, Any]:
        try:
            result = await services.village_service.plunder(
                world_id, account_id, body.city_id, village_id, store.server_time(),
            )
        except ActionRejected as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "result": result}

    return app
