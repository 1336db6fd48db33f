"""Request-scoped access to the application's shared components.

Everything lives on ``app.state`` (built by the lifespan in ``main``), so
tests can swap any component on a running app.
"""

from fastapi import Depends, Request

from ..config import Settings
from ..services.coordinator import Coordinator
from ..services.rate_limiter import RateLimiter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def client_identity(request: Request, settings: Settings = Depends(get_settings)) -> str:
    """First X-Forwarded-For hop when trusted, else the peer address."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def rate_limit(scope: str):
    """Dependency that counts the request against ``scope`` for this client."""

    def check(
        identity: str = Depends(client_identity),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        limiter.check(scope, identity)

    return check
