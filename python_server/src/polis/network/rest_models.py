"""Pydantic request/response models for the REST API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ===================================================================
# Movements
# ===================================================================


class AttackFormation(BaseModel):
    front: Optional[str] = None
    mid: Optional[str] = None


class SendMovementRequest(BaseModel):
    """Send troops, resources or a hero from one of the caller's cities."""

    origin_city_id: str
    mode: str
    target_kind: str = "city"
    target_id: str
    units: Dict[str, int] = Field(default_factory=dict)
    resources: Dict[str, int] = Field(default_factory=dict)
    hero: Optional[str] = None
    agent: Optional[str] = None
    attack_formation: AttackFormation = Field(default_factory=AttackFormation)


class SendMovementResponse(BaseModel):
    success: bool
    movement_id: str = ""
    error: str = ""


class CancelMovementResponse(BaseModel):
    success: bool
    arrival_time: float = 0.0
    error: str = ""


class MovementListResponse(BaseModel):
    movements: List[Dict[str, Any]]


# ===================================================================
# Reports
# ===================================================================


class ReportListResponse(BaseModel):
    reports: List[Dict[str, Any]]
    unread: int = 0


# ===================================================================
# Villages & war points
# ===================================================================


class DemandRequest(BaseModel):
    city_id: str
    option: str


class PlunderRequest(BaseModel):
    city_id: str


class WarPointsRequest(BaseModel):
    points: int = Field(gt=0)


class ActionResponse(BaseModel):
    success: bool
    error: str = ""
    result: Optional[Dict[str, Any]] = None


class VillageListResponse(BaseModel):
    villages: List[Dict[str, Any]]
