"""Pydantic models for city snapshots, source readings and forecasts.

These are both the in-process data model and the wire format: fields are
snake_case in Python and camelCase in JSON (``model_dump(by_alias=True)``).
Missing optional values serialize as ``null``.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Condition(str, Enum):
    CLEAR = "Clear"
    CLOUDY = "Cloudy"
    FOG = "Fog"
    RAIN = "Rain"
    SNOW = "Snow"
    THUNDERSTORM = "Thunderstorm"


class SourceKind(str, Enum):
    METEOINFO = "meteoinfo"
    GISMETEO = "gismeteo"
    YANDEX = "yandex"
    WEATHERCOM = "weathercom"
    METEOBLUE = "meteoblue"
    WUNDERGROUND = "wunderground"


class PeriodKey(str, Enum):
    NIGHT = "night"
    MORNING = "morning"
    DAY = "day"
    EVENING = "evening"


class ForecastProvider(str, Enum):
    API = "api"
    SYNTHETIC = "synthetic"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CityInfo(_CamelModel):
    model_config = ConfigDict(frozen=True)

    query: str
    key: str
    display_name: str
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None


class SourceReading(_CamelModel):
    """One source's reading for one collection cycle, in canonical units."""

    model_config = ConfigDict(frozen=True)

    source: SourceKind
    label: str
    ok: bool
    url: Optional[str] = None
    fetched_at: datetime
    temperature_c: Optional[float] = None
    feels_like_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    wind_kph: Optional[float] = None
    pressure_hpa: Optional[float] = None
    condition: Optional[Condition] = None
    error: Optional[str] = None


class AggregateSnapshot(_CamelModel):
    source_count: int
    expected_source_count: int
    confidence_pct: int
    temperature_c: Optional[float] = None
    feels_like_c: Optional[float] = None
    humidity_pct: Optional[int] = None
    wind_kph: Optional[float] = None
    pressure_hpa: Optional[int] = None
    condition: Optional[Condition] = None


class HourlyPoint(_CamelModel):
    time: str  # local "YYYY-MM-DDTHH:MM"
    date: str
    hour: Optional[int] = None
    temp_c: Optional[float] = None
    condition: Optional[Condition] = None
    precip_chance_pct: Optional[int] = None
    precip_mm: Optional[float] = None
    wind_kph: Optional[float] = None


class ForecastPeriod(_CamelModel):
    key: PeriodKey
    hour: int
    temp_c: Optional[float] = None
    precip_chance_pct: Optional[int] = None
    precip_mm: Optional[float] = None
    wind_kph: Optional[float] = None
    condition: Optional[Condition] = None


class ForecastDay(_CamelModel):
    date: str
    temp_min_c: Optional[float] = None
    temp_max_c: Optional[float] = None
    condition: Optional[Condition] = None
    precip_chance_pct: Optional[int] = None
    precip_mm: Optional[float] = None
    periods: list[ForecastPeriod]


class Forecast(_CamelModel):
    provider: ForecastProvider
    timezone: str
    generated_at: datetime
    days: list[ForecastDay]
    hourly: list[HourlyPoint]


class CitySnapshot(_CamelModel):
    """The unit of caching and broadcast for one city."""

    city_info: CityInfo
    city: str
    city_query: str
    city_key: str
    fetched_at: datetime
    duration_ms: int
    update_interval_ms: int
    aggregate: AggregateSnapshot
    sources: list[SourceReading]
    forecast: Forecast
