"""Sources backed by structured weather APIs (no scraping).

Both need coordinates: taken from the resolved city, or looked up with a
nested geocoding call when the city came back without them.
"""

from datetime import datetime
from typing import Any

from ..exceptions import SourceError
from ..schemas.weather import CityInfo, SourceKind, SourceReading
from .conditions import condition_from_metno_symbol, condition_from_wmo_code
from .extractor import ParsedReading
from .source_base import SourceAdapter
from .units import first_text, mps_to_kph, parse_numeric, to_kph


OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
MET_NO_URL = "https://api.met.no/weatherapi/locationforecast/2.0/compact"

OPEN_METEO_CURRENT_VARS = [
    "temperature_2m",
    "apparent_temperature",
    "relative_humidity_2m",
    "pressure_msl",
    "wind_speed_10m",
    "weather_code",
]


class ApiSource(SourceAdapter):
    """Adapter for a JSON forecast/observation API keyed by coordinates."""

    async def coordinates(self, city: CityInfo) -> tuple[float, float]:
        if city.has_coordinates:
            return city.lat, city.lon
        hit = await self.resolver.geocode(city.query)
        if hit is not None:
            return hit.lat, hit.lon
        raise SourceError("Coordinates are unavailable for this source")


class OpenMeteoSource(ApiSource):
    """Current conditions from Open-Meteo (shown as MeteoBlue)."""

    kind = SourceKind.METEOBLUE
    label = "MeteoBlue"
    landing_url = "https://www.meteoblue.com"

    async def _fetch(self, city: CityInfo, fetched_at: datetime) -> SourceReading:
        lat, lon = await self.coordinates(city)
        payload = await self.fetcher.fetch_json(OPEN_METEO_URL, params={
            "latitude": lat,
            "longitude": lon,
            "timezone": "auto",
            "current": ",".join(OPEN_METEO_CURRENT_VARS),
        })
        current = payload.get("current") if isinstance(payload, dict) else None
        if not isinstance(current, dict):
            raise SourceError("Response is missing current weather", url=self.landing_url)
        units: dict[str, Any] = payload.get("current_units") or {}

        temperature = parse_numeric(current.get("temperature_2m"))
        wind_unit = units.get("wind_speed_10m")
        parsed = ParsedReading(
            temperature_c=temperature,
            feels_like_c=parse_numeric(current.get("apparent_temperature")),
            humidity_pct=parse_numeric(current.get("relative_humidity_2m")),
            wind_kph=to_kph(
                parse_numeric(current.get("wind_speed_10m")),
                wind_unit if isinstance(wind_unit, str) else "km/h",
            ),
            pressure_hpa=parse_numeric(current.get("pressure_msl")),
            condition=condition_from_wmo_code(parse_numeric(current.get("weather_code")), temperature),
        )
        return self.succeeded(fetched_at, parsed, self.landing_url)


def _dig(node: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


class MetNoSource(ApiSource):
    """Nearest-hour values from MET Norway (shown as Weather Underground)."""

    kind = SourceKind.WUNDERGROUND
    label = "Weather Underground"
    landing_url = "https://www.wunderground.com"

    async def _fetch(self, city: CityInfo, fetched_at: datetime) -> SourceReading:
        lat, lon = await self.coordinates(city)
        payload = await self.fetcher.fetch_json(MET_NO_URL, params={"lat": lat, "lon": lon})
        timeseries = _dig(payload, "properties", "timeseries")
        if not isinstance(timeseries, list) or not timeseries:
            raise SourceError("Response is missing timeseries", url=self.landing_url)

        point = next(
            (entry for entry in timeseries if isinstance(_dig(entry, "data", "instant", "details"), dict)),
            None,
        )
        if point is None:
            raise SourceError("Response is missing instant details", url=self.landing_url)

        details = point["data"]["instant"]["details"]
        temperature = parse_numeric(details.get("air_temperature"))
        symbol = first_text([
            _dig(point, "data", window, "summary", "symbol_code")
            for window in ("next_1_hours", "next_6_hours", "next_12_hours")
        ])
        parsed = ParsedReading(
            temperature_c=temperature,
            humidity_pct=parse_numeric(details.get("relative_humidity")),
            wind_kph=mps_to_kph(parse_numeric(details.get("wind_speed"))),
            pressure_hpa=parse_numeric(details.get("air_pressure_at_sea_level")),
            condition=condition_from_metno_symbol(symbol, temperature),
        )
        return self.succeeded(fetched_at, parsed, self.landing_url)
