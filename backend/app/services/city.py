"""City resolution: free-text input -> canonical cache key and location.

The key is derived deterministically from the input (alias table,
Cyrillic transliteration, slug rules), so every spelling of the same
city lands on the same cache entry. Resolution never fails: when the
geocoding service is unavailable the city is returned without
coordinates and a title-cased display name.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..exceptions import UpstreamError
from ..schemas.weather import CityInfo, SourceKind
from .http_client import Fetcher
from .units import is_finite

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"

DEFAULT_CITY_KEY = "moscow"

CITY_ALIASES: dict[str, str] = {
    "moscow": "moscow",
    "moskva": "moscow",
    "москва": "moscow",
    "msk": "moscow",
    "saint-petersburg": "saint-petersburg",
    "st-petersburg": "saint-petersburg",
    "sankt-peterburg": "saint-petersburg",
    "санкт-петербург": "saint-petersburg",
    "питер": "saint-petersburg",
    "спб": "saint-petersburg",
    "novosibirsk": "novosibirsk",
    "новосибирск": "novosibirsk",
    "kazan": "kazan",
    "казань": "kazan",
}

TRANSLIT: dict[str, str] = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "e",
    "ж": "zh", "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "h", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "sch", "ъ": "",
    "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
}

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_DASH_RUN_RE = re.compile(r"-{2,}")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class CityPreset:
    display_name: str
    lat: float
    lon: float
    urls: dict[SourceKind, str] = field(default_factory=dict)


CITY_PRESETS: dict[str, CityPreset] = {
    "moscow": CityPreset(
        display_name="Москва, RU",
        lat=55.7558,
        lon=37.6176,
        urls={
            SourceKind.METEOINFO: "https://meteoinfo.ru/pogoda/russia/moscow-area/moscow",
            SourceKind.GISMETEO: "https://www.gismeteo.ru/weather-moscow-4368/",
            SourceKind.YANDEX: "https://yandex.ru/pogoda/moscow",
            SourceKind.WEATHERCOM: "https://weather.com/weather/today/l/55.7558,37.6176",
        },
    ),
    "saint-petersburg": CityPreset(
        display_name="Санкт-Петербург, RU",
        lat=59.9343,
        lon=30.3351,
        urls={
            SourceKind.METEOINFO: "https://meteoinfo.ru/pogoda/russia/leningrad-area/st-petersburg",
            SourceKind.GISMETEO: "https://www.gismeteo.ru/weather-sankt-peterburg-4079/",
            SourceKind.YANDEX: "https://yandex.ru/pogoda/saint-petersburg",
            SourceKind.WEATHERCOM: "https://weather.com/weather/today/l/59.9343,30.3351",
        },
    ),
    "novosibirsk": CityPreset(
        display_name="Новосибирск, RU",
        lat=55.0084,
        lon=82.9357,
        urls={
            SourceKind.METEOINFO: "https://meteoinfo.ru/pogoda/russia/novosibirsk-area/novosibirsk",
            SourceKind.GISMETEO: "https://www.gismeteo.ru/weather-novosibirsk-4690/",
            SourceKind.YANDEX: "https://yandex.ru/pogoda/novosibirsk",
            SourceKind.WEATHERCOM: "https://weather.com/weather/today/l/55.0084,82.9357",
        },
    ),
    "kazan": CityPreset(
        display_name="Казань, RU",
        lat=55.7961,
        lon=49.1064,
        urls={
            SourceKind.METEOINFO: "https://meteoinfo.ru/pogoda/russia/tatarstan/kazan",
            SourceKind.GISMETEO: "https://www.gismeteo.ru/weather-kazan-4364/",
            SourceKind.YANDEX: "https://yandex.ru/pogoda/kazan",
            SourceKind.WEATHERCOM: "https://weather.com/weather/today/l/55.7961,49.1064",
        },
    ),
}


@dataclass(frozen=True)
class GeocodeResult:
    name: str
    country: Optional[str]
    lat: float
    lon: float


class Geocoder(Protocol):
    async def geocode(self, name: str) -> Optional[GeocodeResult]:
        ...


class OpenMeteoGeocoder:
    """Name -> coordinates via the Open-Meteo geocoding API."""

    def __init__(self, fetcher: Fetcher, language: str = "ru") -> None:
        self.fetcher = fetcher
        self.language = language

    async def geocode(self, name: str) -> Optional[GeocodeResult]:
        """Return the best match, None if not found; raises UpstreamError."""
        data = await self.fetcher.fetch_json(
            GEOCODING_URL,
            params={"name": name, "count": 1, "language": self.language, "format": "json"},
        )
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None
        hit = results[0]
        lat, lon = hit.get("latitude"), hit.get("longitude")
        if not is_finite(lat) or not is_finite(lon):
            return None
        return GeocodeResult(
            name=hit.get("name") or name,
            country=hit.get("country_code"),
            lat=float(lat),
            lon=float(lon),
        )


def sanitize_city_query(raw: Optional[str], default_city: str, max_length: int = 80) -> str:
    cleaned = _WS_RE.sub(" ", str(raw or "")).strip()
    if not cleaned:
        return default_city
    return cleaned[:max_length]


def transliterate(text: str) -> str:
    return "".join(TRANSLIT.get(ch, ch) for ch in text.lower())


def slugify(text: str) -> str:
    slug = _NON_SLUG_RE.sub("-", text)
    slug = _DASH_RUN_RE.sub("-", slug)
    return slug.strip("-")


def normalize_city_key(query: str) -> str:
    """Canonical cache key for a city query, e.g. "Санкт-Петербург" -> "saint-petersburg"."""
    lowered = query.strip().lower()
    aliased = CITY_ALIASES.get(lowered, lowered)
    slug = slugify(transliterate(aliased))
    if not slug:
        return DEFAULT_CITY_KEY
    # Transliterated spellings ("moskva") fold onto the same root.
    return CITY_ALIASES.get(slug, slug)


def title_case(text: str) -> str:
    return " ".join(chunk[:1].upper() + chunk[1:].lower() for chunk in text.split())


class CityResolver:
    """Turns free-text city input into a :class:`CityInfo`."""

    def __init__(
        self,
        geocoder: Optional[Geocoder],
        default_city: str = "Москва",
        max_length: int = 80,
    ) -> None:
        self.geocoder = geocoder
        self.default_city = default_city
        self.max_length = max_length

    def key_for(self, raw: Optional[str]) -> str:
        return normalize_city_key(sanitize_city_query(raw, self.default_city, self.max_length))

    async def resolve(self, raw: Optional[str]) -> CityInfo:
        query = sanitize_city_query(raw, self.default_city, self.max_length)
        key = normalize_city_key(query)

        preset = CITY_PRESETS.get(key)
        if preset is not None:
            return CityInfo(
                query=query,
                key=key,
                display_name=preset.display_name,
                lat=preset.lat,
                lon=preset.lon,
            )

        hit = await self.geocode(query)
        if hit is not None:
            display = f"{hit.name}, {hit.country}" if hit.country else hit.name
            return CityInfo(query=query, key=key, display_name=display, lat=hit.lat, lon=hit.lon)

        return CityInfo(query=query, key=key, display_name=title_case(query))

    async def geocode(self, query: str) -> Optional[GeocodeResult]:
        """Geocode without raising; failures are logged and yield None."""
        if self.geocoder is None:
            return None
        try:
            return await self.geocoder.geocode(query)
        except UpstreamError as exc:
            logger.warning("Geocoding failed for %r: %s", query, exc)
            return None
