"""GET /api/weather and POST /api/refresh - consensus snapshot for a city."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..services.coordinator import Coordinator
from .dependencies import get_coordinator, rate_limit

router = APIRouter()


@router.get("/weather", dependencies=[Depends(rate_limit("api"))])
async def get_weather(
    city: Optional[str] = Query(None),
    coordinator: Coordinator = Depends(get_coordinator),
) -> dict:
    snapshot = await coordinator.get_snapshot(city)
    return snapshot.to_json_dict()


@router.post("/refresh", dependencies=[Depends(rate_limit("refresh"))])
async def refresh_weather(
    city: Optional[str] = Query(None),
    coordinator: Coordinator = Depends(get_coordinator),
) -> dict:
    """Force a new collection cycle (shared with any already running)."""
    snapshot = await coordinator.get_snapshot(city, force=True)
    return snapshot.to_json_dict()
