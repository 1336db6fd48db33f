"""Application exception classes."""


class UpstreamError(Exception):
    """Raised when an upstream HTTP fetch fails, times out, or returns junk."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SourceError(Exception):
    """Raised when a source adapter cannot produce a usable reading."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class RateLimitExceeded(Exception):
    """Raised when a client exceeds the request budget for a scope."""

    def __init__(self, scope: str, retry_after_sec: int) -> None:
        super().__init__(f"Rate limit exceeded for {scope}")
        self.scope = scope
        self.retry_after_sec = retry_after_sec
