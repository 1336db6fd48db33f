"""Ordered registry of the configured weather sources.

Registry order is the order readings appear in every snapshot and the
order condition-vote ties are broken in.
"""

from ..schemas.weather import SourceKind
from .api_sources import MetNoSource, OpenMeteoSource
from .city import CityResolver
from .http_client import Fetcher
from .scraped_sources import GismeteoSource, MeteoinfoSource, WeatherComSource, YandexSource
from .source_base import SourceAdapter

SOURCE_REGISTRY: dict[SourceKind, type[SourceAdapter]] = {
    SourceKind.METEOINFO: MeteoinfoSource,
    SourceKind.GISMETEO: GismeteoSource,
    SourceKind.YANDEX: YandexSource,
    SourceKind.WEATHERCOM: WeatherComSource,
    SourceKind.METEOBLUE: OpenMeteoSource,
    SourceKind.WUNDERGROUND: MetNoSource,
}


def build_sources(fetcher: Fetcher, resolver: CityResolver) -> list[SourceAdapter]:
    return [adapter(fetcher, resolver) for adapter in SOURCE_REGISTRY.values()]
