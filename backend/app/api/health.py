"""GET /health - liveness probe."""

from fastapi import APIRouter

router = APIRouter()

SERVICE_NAME = "weather-multi-source-dashboard"


@router.get("/health")
async def health() -> dict:
    return {"ok": True, "service": SERVICE_NAME}
