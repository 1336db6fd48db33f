"""Sources scraped from HTML weather pages.

Each page is parsed twice: a source-specific structured extractor that
knows where that site keeps its data, and the generic heuristic scanner.
Per metric the structured value wins and the heuristic one fills gaps.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from ..exceptions import SourceError, UpstreamError
from ..schemas.weather import CityInfo, SourceKind, SourceReading
from .city import CITY_PRESETS
from .extractor import (
    ParsedReading,
    clean_text,
    extract_json_object_after,
    merge_parsed,
    normalize_condition,
    parse_generic,
)
from .source_base import SourceAdapter
from .units import (
    first_finite,
    first_text,
    fahrenheit_to_celsius,
    inhg_to_hpa,
    is_finite,
    mmhg_to_hpa,
    mph_to_kph,
    mps_to_kph,
    parse_numeric,
)

logger = logging.getLogger(__name__)


def find_first_link(html: str, patterns: list[re.Pattern], base_url: Optional[str] = None) -> Optional[str]:
    """First ``href`` matched by the ordered ``patterns``, made absolute.

    Patterns are tried in order against every link; group 1 of the first
    match is the result.
    """
    hrefs = [a["href"] for a in BeautifulSoup(html, "html.parser").find_all("a", href=True)]
    for pattern in patterns:
        for href in hrefs:
            match = pattern.match(href)
            if match and match.group(1):
                return urljoin(base_url, match.group(1)) if base_url else match.group(1)
    return None


def safe_json_loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def first_in(value: Any) -> Any:
    """Gismeteo wraps most values in single-element arrays."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def cell_text(tag) -> str:
    return clean_text(tag.get_text(" "))


class ScrapedSource(SourceAdapter):
    """Adapter for a source whose data lives in an HTML page."""

    # Unit assumed for heuristic wind values with no unit next to them.
    default_wind_unit = "km/h"

    # Search-page fallback for cities without a preset or URL pattern.
    search_url_template: Optional[str] = None
    search_base_url: Optional[str] = None
    absolute_link_patterns: list[re.Pattern] = []
    relative_link_patterns: list[re.Pattern] = []

    async def _fetch(self, city: CityInfo, fetched_at: datetime) -> SourceReading:
        url = await self.resolve_url(city)
        if not url:
            raise SourceError("Cannot resolve source URL")
        logger.debug("Fetching %s for %s from %s", self.kind.value, city.key, url)
        try:
            html = await self.fetcher.fetch_text(url)
        except UpstreamError as exc:
            raise SourceError(str(exc), url=url) from exc
        return self.succeeded(fetched_at, self.parse(html), url)

    async def resolve_url(self, city: CityInfo) -> Optional[str]:
        preset = CITY_PRESETS.get(city.key)
        if preset is not None and self.kind in preset.urls:
            return preset.urls[self.kind]
        url = self.url_for(city)
        if url:
            return url
        return await self.search(city)

    def url_for(self, city: CityInfo) -> Optional[str]:
        """Deterministic landing URL, if the site has a predictable scheme."""
        return None

    async def search(self, city: CityInfo) -> Optional[str]:
        if not self.search_url_template:
            return None
        search_url = self.search_url_template.format(query=quote(city.query, safe=""))
        html = await self.fetcher.fetch_text(search_url)
        return (
            find_first_link(html, self.absolute_link_patterns)
            or find_first_link(html, self.relative_link_patterns, self.search_base_url)
            or search_url
        )

    def parse(self, html: str) -> ParsedReading:
        return merge_parsed(
            self.parse_structured(html),
            parse_generic(html, self.default_wind_unit),
        )

    def parse_structured(self, html: str) -> ParsedReading:
        return ParsedReading()


class MeteoinfoSource(ScrapedSource):
    kind = SourceKind.METEOINFO
    label = "Meteoinfo.ru"

    search_url_template = "https://meteoinfo.ru/search?searchword={query}"
    search_base_url = "https://meteoinfo.ru"
    absolute_link_patterns = [
        re.compile(r"(https?://(?:www\.)?meteoinfo\.ru/pogoda/[^?#]+)", re.I),
        re.compile(r"(https?://(?:www\.)?meteoinfo\.ru/prognoz/[^?#]+)", re.I),
    ]
    relative_link_patterns = [
        re.compile(r"(/pogoda/[^?#]+)", re.I),
        re.compile(r"(/prognoz/[^?#]+)", re.I),
    ]

    _LETTERS_RE = re.compile(r"[A-Za-z\u0400-\u04FF]")
    _NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")
    _DIGIT_RE = re.compile(r"\d")

    def parse_structured(self, html: str) -> ParsedReading:
        """Two-column observation table: label cell, value cell.

        The condition comes from a row with an empty label, or else from
        the row right after the weather icon.
        """
        parsed = ParsedReading()
        icon_condition = None
        rows = BeautifulSoup(html, "html.parser").find_all("tr")
        for index, row in enumerate(rows):
            cells = row.find_all("td")
            if icon_condition is None and row.find("img") is not None and index + 1 < len(rows):
                following = rows[index + 1].find("td")
                if following is not None:
                    icon_condition = normalize_condition(cell_text(following))
            if len(cells) != 2:
                continue

            left = cell_text(cells[0]).lower()
            right = cell_text(cells[1])
            if not left and not right:
                continue
            number = self._NUMBER_RE.search(right)
            value = parse_numeric(number.group(0)) if number else None

            if "температур" in left and value is not None:
                parsed.temperature_c = value
            elif "влажн" in left and value is not None:
                parsed.humidity_pct = value
            elif "давлен" in left and value is not None:
                parsed.pressure_hpa = mmhg_to_hpa(value)
            elif ("ветер" in left or "ветр" in left) and value is not None:
                parsed.wind_kph = mps_to_kph(value)
            elif not left and self._LETTERS_RE.search(right) and not self._DIGIT_RE.search(right):
                parsed.condition = normalize_condition(right)

        if parsed.condition is None:
            parsed.condition = icon_condition
        return parsed


class GismeteoSource(ScrapedSource):
    kind = SourceKind.GISMETEO
    label = "GISMETEO.ru"

    search_url_template = "https://www.gismeteo.ru/search/{query}/"
    search_base_url = "https://www.gismeteo.ru"
    absolute_link_patterns = [
        re.compile(r"(https?://www\.gismeteo\.ru/weather-[^?#]+/)", re.I),
        re.compile(r"(https?://gismeteo\.ru/weather-[^?#]+/)", re.I),
    ]
    relative_link_patterns = [re.compile(r"(/weather-[^?#]+/)", re.I)]

    STATE_MARKER = "window.M.state ="

    def parse_structured(self, html: str) -> ParsedReading:
        """Current weather from the page's embedded application state."""
        state = safe_json_loads(extract_json_object_after(html, self.STATE_MARKER))
        weather = state.get("weather") if isinstance(state, dict) else None
        cw = weather.get("cw") if isinstance(weather, dict) else None
        if not isinstance(cw, dict):
            return ParsedReading()

        description = first_in(cw.get("description"))
        return ParsedReading(
            temperature_c=parse_numeric(first_in(cw.get("temperatureAir"))),
            feels_like_c=parse_numeric(first_in(cw.get("temperatureFeelsLike"))),
            humidity_pct=parse_numeric(first_in(cw.get("humidity"))),
            wind_kph=mps_to_kph(parse_numeric(first_in(cw.get("windSpeed")))),
            pressure_hpa=mmhg_to_hpa(parse_numeric(first_in(cw.get("pressure")))),
            condition=normalize_condition(description if isinstance(description, str) else None),
        )


class YandexSource(ScrapedSource):
    kind = SourceKind.YANDEX
    label = "Яндекс Погода"

    # Yandex prints wind in m/s without always labelling it.
    default_wind_unit = "m/s"

    def url_for(self, city: CityInfo) -> Optional[str]:
        if city.has_coordinates:
            return f"https://yandex.ru/pogoda/?lat={city.lat}&lon={city.lon}"
        return f"https://yandex.ru/pogoda/{city.key}"


class WeatherComSource(ScrapedSource):
    kind = SourceKind.WEATHERCOM
    label = "Weather.com"

    OBSERVATION_MARKER = '"observation":'
    # How far around the observation blob to look for the units flag.
    UNITS_CONTEXT = 9000

    def url_for(self, city: CityInfo) -> Optional[str]:
        if city.has_coordinates:
            return f"https://weather.com/weather/today/l/{city.lat},{city.lon}"
        return "https://weather.com/weather/today"

    def parse_structured(self, html: str) -> ParsedReading:
        """Observation blob from the page's hydration data.

        The blob is in imperial units when the surrounding markup says
        ``units:e``, when the altimeter reads like inHg, or when the
        temperature is implausibly warm for Celsius.
        """
        index = html.find(self.OBSERVATION_MARKER)
        if index == -1:
            return ParsedReading()
        observation = safe_json_loads(extract_json_object_after(html, self.OBSERVATION_MARKER))
        if not isinstance(observation, dict):
            return ParsedReading()

        context = html[max(0, index - self.UNITS_CONTEXT):index + self.UNITS_CONTEXT].lower()
        altimeter = parse_numeric(observation.get("pressureAltimeter"))
        imperial = "units:e" in context or (is_finite(altimeter) and 10 < altimeter < 40)

        def celsius(raw: Any) -> Optional[float]:
            value = parse_numeric(raw)
            if value is not None and (imperial or value > 60):
                return fahrenheit_to_celsius(value)
            return value

        speed = parse_numeric(observation.get("windSpeed"))
        speed_mph = parse_numeric(observation.get("windSpeedMph"))
        speed_kph = parse_numeric(observation.get("windSpeedKph"))
        if imperial:
            wind_kph = mph_to_kph(first_finite([speed, speed_mph]))
        else:
            wind_kph = first_finite([speed_kph, speed, mph_to_kph(speed_mph)])

        pressure = first_finite([
            parse_numeric(observation.get("pressureMeanSeaLevel")),
            altimeter,
            parse_numeric(observation.get("pressure")),
        ])
        if pressure is not None and 10 < pressure < 40:
            pressure = inhg_to_hpa(pressure)

        return ParsedReading(
            temperature_c=celsius(observation.get("temperature")),
            feels_like_c=celsius(observation.get("temperatureFeelsLike")),
            humidity_pct=first_finite([
                parse_numeric(observation.get("relativeHumidity")),
                parse_numeric(observation.get("humidity")),
            ]),
            wind_kph=wind_kph,
            pressure_hpa=pressure,
            condition=normalize_condition(first_text([
                observation.get("wxPhraseLong"),
                observation.get("wxPhraseMedium"),
                observation.get("wxPhraseShort"),
                observation.get("cloudCoverPhrase"),
            ])),
        )
