"""Common behaviour of every weather source adapter.

An adapter turns a :class:`CityInfo` into exactly one
:class:`SourceReading`. Failures of any kind are folded into a reading
with ``ok=False`` and an error message; nothing raises past ``fetch``
except cancellation.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from ..exceptions import SourceError, UpstreamError
from ..schemas.weather import CityInfo, SourceKind, SourceReading
from .city import CityResolver
from .extractor import ParsedReading
from .http_client import Fetcher
from .units import round_or_none

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """fetch(CityInfo) -> SourceReading for one data source."""

    kind: SourceKind
    label: str
    # Shown on failed readings when no more specific URL is known.
    landing_url: Optional[str] = None

    def __init__(self, fetcher: Fetcher, resolver: CityResolver) -> None:
        self.fetcher = fetcher
        self.resolver = resolver

    async def fetch(self, city: CityInfo) -> SourceReading:
        fetched_at = datetime.now(timezone.utc)
        try:
            return await self._fetch(city, fetched_at)
        except (SourceError, UpstreamError) as exc:
            logger.warning("Source %s failed for %s: %s", self.kind.value, city.key, exc)
            return self.failed(fetched_at, str(exc), exc.url)
        except Exception as exc:
            # Unexpected markup/payload shapes must not take the cycle down.
            logger.warning(
                "Source %s raised for %s: %s", self.kind.value, city.key, exc,
                exc_info=True,
            )
            return self.failed(fetched_at, str(exc) or type(exc).__name__)

    @abstractmethod
    async def _fetch(self, city: CityInfo, fetched_at: datetime) -> SourceReading:
        ...

    def failed(
        self,
        fetched_at: datetime,
        error: str,
        url: Optional[str] = None,
    ) -> SourceReading:
        return SourceReading(
            source=self.kind,
            label=self.label,
            ok=False,
            url=url or self.landing_url,
            fetched_at=fetched_at,
            error=error or "Unknown source error",
        )

    def succeeded(
        self,
        fetched_at: datetime,
        parsed: ParsedReading,
        url: Optional[str],
    ) -> SourceReading:
        if parsed.temperature_c is None:
            raise SourceError("Cannot parse current temperature", url=url)
        return SourceReading(
            source=self.kind,
            label=self.label,
            ok=True,
            url=url,
            fetched_at=fetched_at,
            temperature_c=round_or_none(parsed.temperature_c, 1),
            feels_like_c=round_or_none(parsed.feels_like_c, 1),
            humidity_pct=round_or_none(parsed.humidity_pct, 1),
            wind_kph=round_or_none(parsed.wind_kph, 1),
            pressure_hpa=round_or_none(parsed.pressure_hpa, 1),
            condition=parsed.condition,
        )
