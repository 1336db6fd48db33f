"""One collection cycle: every source plus the forecast, concurrently."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Sequence

from ..schemas.weather import CityInfo, CitySnapshot, SourceReading
from .aggregator import build_aggregate
from .forecast import ForecastBuilder
from .source_base import SourceAdapter

logger = logging.getLogger(__name__)


class Collector:
    """Runs a full collection cycle for a resolved city."""

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        forecast_builder: ForecastBuilder,
        update_interval_sec: float = 30.0,
    ) -> None:
        self.sources = list(sources)
        self.forecast_builder = forecast_builder
        self.update_interval_sec = update_interval_sec

    async def collect(self, city: CityInfo) -> CitySnapshot:
        started = time.monotonic()
        # Adapters and the forecast builder never raise, so gather needs no
        # return_exceptions and readings stay in registry order.
        results = await asyncio.gather(
            *(source.fetch(city) for source in self.sources),
            self.forecast_builder.fetch(city),
        )
        readings: list[SourceReading] = list(results[:-1])
        forecast = results[-1]
        aggregate = build_aggregate(readings, expected=len(self.sources))

        fetched_at = datetime.now(timezone.utc)
        if forecast is None:
            logger.warning("Using synthetic forecast for %s", city.key)
            forecast = self.forecast_builder.synthesize(aggregate)

        duration_ms = int(round((time.monotonic() - started) * 1000))
        logger.info(
            "Collected %s: %d/%d sources ok in %d ms",
            city.key, aggregate.source_count, aggregate.expected_source_count, duration_ms,
        )
        return CitySnapshot(
            city_info=city,
            city=city.display_name,
            city_query=city.query,
            city_key=city.key,
            fetched_at=fetched_at,
            duration_ms=duration_ms,
            update_interval_ms=int(self.update_interval_sec * 1000),
            aggregate=aggregate,
            sources=readings,
            forecast=forecast,
        )
