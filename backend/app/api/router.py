"""Top-level API router aggregation."""

from fastapi import APIRouter

from . import stream, weather

api_router = APIRouter(prefix="/api")

api_router.include_router(weather.router)
api_router.include_router(stream.router)
