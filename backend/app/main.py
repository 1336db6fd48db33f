"""FastAPI application factory and lifespan for the weather consensus service."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings as default_settings
from .exceptions import RateLimitExceeded
from .api.router import api_router
from .api import health
from .services.city import CityResolver, OpenMeteoGeocoder
from .services.collector import Collector
from .services.coordinator import Coordinator
from .services.forecast import ForecastBuilder
from .services.http_client import Fetcher, build_client
from .services.rate_limiter import RateLimiter
from .services.sources import build_sources

# Configure logging for our app (uvicorn only configures its own loggers)
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:     %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def build_coordinator(cfg: Settings, client: httpx.AsyncClient) -> Coordinator:
    """Wire resolver, sources, forecast and collector around one HTTP client."""
    fetcher = Fetcher(client, timeout=cfg.fetch_timeout_sec)
    resolver = CityResolver(
        OpenMeteoGeocoder(fetcher),
        default_city=cfg.default_city,
        max_length=cfg.city_query_max_length,
    )
    collector = Collector(
        build_sources(fetcher, resolver),
        ForecastBuilder(fetcher),
        update_interval_sec=cfg.update_interval_sec,
    )
    return Coordinator(
        resolver,
        collector,
        stale_after_sec=cfg.stale_after_sec,
        update_interval_sec=cfg.update_interval_sec,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: shared HTTP client, coordinator and rate limiter."""
    cfg: Settings = app.state.settings
    client = build_client(
        timeout=cfg.fetch_timeout_sec,
        user_agent=cfg.user_agent,
        accept_language=cfg.accept_language,
        transport=app.state.transport,
    )
    app.state.http_client = client
    app.state.coordinator = build_coordinator(cfg, client)
    app.state.rate_limiter = RateLimiter(cfg.rate_window_sec, cfg.rate_limits)
    logger.info(
        "Weather consensus service ready (default city %s, refresh every %ss)",
        cfg.default_city, cfg.update_interval_sec,
    )

    yield

    logger.info("Shutting down...")
    await app.state.coordinator.shutdown()
    await client.aclose()
    logger.info("Application shutdown complete")


def create_app(
    app_settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Weather Consensus",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings or default_settings
    app.state.transport = transport

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if response.headers.get("content-type", "").startswith("application/json"):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(RateLimitExceeded)
    async def rate_limited(request: Request, exc: RateLimitExceeded):
        response = error_response(429, "Too many requests", retryAfterSec=exc.retry_after_sec)
        response.headers["Retry-After"] = str(exc.retry_after_sec)
        return response

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        response = error_response(exc.status_code, str(exc.detail))
        for name, value in (exc.headers or {}).items():
            response.headers[name] = value
        return response

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
        return error_response(500, str(exc) or "Internal server error")

    app.include_router(api_router)
    app.include_router(health.router)

    return app


# Application instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.host, port=default_settings.port)
