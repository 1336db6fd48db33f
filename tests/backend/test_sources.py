"""Tests for the per-source fetch/parse adapters."""

import asyncio
import re
from typing import Optional

import httpx

from app.schemas.weather import Condition, SourceKind
from app.services.api_sources import MET_NO_URL, OPEN_METEO_URL, MetNoSource, OpenMeteoSource
from app.services.city import CityResolver, GeocodeResult
from app.services.http_client import Fetcher
from app.services.scraped_sources import (
    GismeteoSource,
    MeteoinfoSource,
    WeatherComSource,
    YandexSource,
    find_first_link,
)
from app.services.sources import SOURCE_REGISTRY, build_sources

from factories import make_city


class StubGeocoder:
    def __init__(self, result: Optional[GeocodeResult] = None):
        self.result = result

    async def geocode(self, name):
        return self.result


def run_source(source_cls, handler, city, geocode_result=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolver = CityResolver(StubGeocoder(geocode_result))
            return await source_cls(Fetcher(client), resolver).fetch(city)

    return asyncio.run(run())


def html_response(body: str):
    return lambda request: httpx.Response(200, text=body)


class TestRegistry:
    def test_order(self):
        assert list(SOURCE_REGISTRY) == [
            SourceKind.METEOINFO,
            SourceKind.GISMETEO,
            SourceKind.YANDEX,
            SourceKind.WEATHERCOM,
            SourceKind.METEOBLUE,
            SourceKind.WUNDERGROUND,
        ]

    def test_build_sources(self):
        sources = build_sources(Fetcher(httpx.AsyncClient()), CityResolver(None))
        assert [s.kind for s in sources] == list(SOURCE_REGISTRY)
        assert sources[2].label == "Яндекс Погода"


class TestMeteoinfo:
    PAGE = """
    <table>
    <tr><td><img src="/icons/cloudy.png"></td></tr>
    <tr><td>Облачно с прояснениями</td></tr>
    <tr><td>Температура воздуха, °C</td><td>-1.5</td></tr>
    <tr><td>Влажность, %</td><td>85</td></tr>
    <tr><td>Атмосферное давление, мм рт. ст.</td><td>750</td></tr>
    <tr><td>Ветер, м/с</td><td>Ю, 3</td></tr>
    </table>
    """

    def test_structured_table(self):
        reading = run_source(MeteoinfoSource, html_response(self.PAGE), make_city())
        assert reading.ok
        assert reading.url == "https://meteoinfo.ru/pogoda/russia/moscow-area/moscow"
        assert reading.temperature_c == -1.5
        assert reading.humidity_pct == 85
        assert reading.pressure_hpa == 999.9
        assert reading.wind_kph == 10.8
        assert reading.condition == Condition.CLOUDY

    def test_label_less_row_and_entities(self):
        page = """
        <table>
        <tr><td></td><td>Снег</td></tr>
        <tr><td>Температура воздуха</td><td>&minus;4&#46;5</td></tr>
        </table>
        """
        reading = run_source(MeteoinfoSource, html_response(page), make_city())
        assert reading.ok
        assert reading.temperature_c == -4.5
        assert reading.condition == Condition.SNOW

    def test_search_fallback_for_unknown_city(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            if "search" in request.url.path:
                return httpx.Response(200, text='<a href="/pogoda/germany/berlin">Берлин</a>')
            return httpx.Response(200, text=self.PAGE)

        reading = run_source(MeteoinfoSource, handler, make_city("berlin", lat=52.5, lon=13.4))
        assert reading.ok
        assert reading.url == "https://meteoinfo.ru/pogoda/germany/berlin"
        assert requested[0].startswith("https://meteoinfo.ru/search?searchword=berlin")

    def test_http_failure_is_a_failed_reading(self):
        reading = run_source(MeteoinfoSource, lambda request: httpx.Response(503), make_city())
        assert not reading.ok
        assert "503" in reading.error
        assert reading.url == "https://meteoinfo.ru/pogoda/russia/moscow-area/moscow"
        assert reading.temperature_c is None

    def test_page_without_temperature_fails(self):
        reading = run_source(MeteoinfoSource, html_response("<html>Нет данных</html>"), make_city())
        assert not reading.ok
        assert reading.error == "Cannot parse current temperature"


class TestGismeteo:
    def test_state_blob(self):
        page = (
            "<script>window.M.state = {\"weather\": {\"cw\": {"
            "\"temperatureAir\": [-3.2], \"temperatureFeelsLike\": [-8], \"humidity\": [80],"
            "\"windSpeed\": [4], \"pressure\": [745], \"description\": [\"Пасмурно, {снег}\"]"
            "}}};</script><div>Сейчас +25°C</div>"
        )
        reading = run_source(GismeteoSource, html_response(page), make_city())
        assert reading.ok
        assert reading.temperature_c == -3.2
        assert reading.feels_like_c == -8
        assert reading.humidity_pct == 80
        assert reading.wind_kph == 14.4
        assert reading.pressure_hpa == 993.2
        assert reading.condition == Condition.SNOW

    def test_heuristic_fills_gaps(self):
        page = "<p>Сейчас −4°C</p><p>Влажность 77%</p>"
        reading = run_source(GismeteoSource, html_response(page), make_city())
        assert reading.temperature_c == -4
        assert reading.humidity_pct == 77


class TestYandex:
    def test_unlabelled_wind_is_mps(self):
        page = "<div>Сейчас 3°</div><div>Ветер 5</div>"
        reading = run_source(YandexSource, html_response(page), make_city("kazan"))
        assert reading.url == "https://yandex.ru/pogoda/kazan"
        assert reading.wind_kph == 18.0

    def test_coordinate_url(self):
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, text="<div>Now 10°C</div>")

        run_source(YandexSource, handler, make_city("berlin", lat=52.5, lon=13.4))
        assert urls == ["https://yandex.ru/pogoda/?lat=52.5&lon=13.4"]


class TestWeatherCom:
    def test_imperial_observation(self):
        page = (
            '<script>window.__DATA__={"units:e":1,"observation":{"temperature":41,'
            '"temperatureFeelsLike":36,"relativeHumidity":70,"windSpeed":10,'
            '"pressureAltimeter":30.1,"wxPhraseLong":"Light Rain"}}</script>'
        )
        reading = run_source(WeatherComSource, html_response(page), make_city())
        assert reading.ok
        assert reading.temperature_c == 5.0
        assert reading.feels_like_c == 2.2
        assert reading.humidity_pct == 70
        assert reading.wind_kph == 16.1
        assert reading.pressure_hpa == 1019.3
        assert reading.condition == Condition.RAIN

    def test_metric_observation(self):
        page = (
            '<script>x={"observation":{"temperature":4,"windSpeedKph":12,'
            '"pressureMeanSeaLevel":1008,"wxPhraseLong":"Mostly Cloudy"}}</script>'
        )
        reading = run_source(WeatherComSource, html_response(page), make_city())
        assert reading.temperature_c == 4
        assert reading.wind_kph == 12
        assert reading.pressure_hpa == 1008
        assert reading.condition == Condition.CLOUDY


class TestOpenMeteoSource:
    def test_current_weather(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url.copy_with(query=None))
            seen.update(request.url.params)
            return httpx.Response(200, json={
                "current_units": {"wind_speed_10m": "km/h"},
                "current": {
                    "temperature_2m": -2.4,
                    "apparent_temperature": -6.1,
                    "relative_humidity_2m": 88,
                    "pressure_msl": 1012.3,
                    "wind_speed_10m": 15.5,
                    "weather_code": 61,
                },
            })

        reading = run_source(OpenMeteoSource, handler, make_city())
        assert seen["url"] == OPEN_METEO_URL
        assert "apparent_temperature" in seen["current"]
        assert reading.ok
        assert reading.url == "https://www.meteoblue.com"
        assert reading.temperature_c == -2.4
        assert reading.feels_like_c == -6.1
        assert reading.wind_kph == 15.5
        assert reading.condition == Condition.SNOW

    def test_wind_unit_conversion(self):
        payload = {
            "current_units": {"wind_speed_10m": "m/s"},
            "current": {"temperature_2m": 5, "wind_speed_10m": 5},
        }
        reading = run_source(OpenMeteoSource, lambda request: httpx.Response(200, json=payload), make_city())
        assert reading.wind_kph == 18.0

    def test_geocodes_when_coordinates_missing(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"current": {"temperature_2m": 20}})

        reading = run_source(
            OpenMeteoSource, handler, make_city("paris", lat=None, lon=None),
            geocode_result=GeocodeResult(name="Paris", country="FR", lat=48.85, lon=2.35),
        )
        assert reading.ok
        assert seen["latitude"] == "48.85"

    def test_no_coordinates_fails(self):
        reading = run_source(
            OpenMeteoSource, lambda request: httpx.Response(200, json={}),
            make_city("atlantis", lat=None, lon=None),
        )
        assert not reading.ok
        assert reading.error == "Coordinates are unavailable for this source"
        assert reading.url == "https://www.meteoblue.com"


class TestMetNoSource:
    def test_first_instant(self):
        payload = {"properties": {"timeseries": [
            {"time": "2026-01-15T10:00:00Z", "data": {
                "instant": {"details": {
                    "air_temperature": 3.0,
                    "relative_humidity": 75,
                    "wind_speed": 5,
                    "air_pressure_at_sea_level": 1005,
                }},
                "next_1_hours": {"summary": {"symbol_code": "lightrain"}},
            }},
        ]}}
        urls = []

        def handler(request):
            urls.append(str(request.url.copy_with(query=None)))
            return httpx.Response(200, json=payload)

        reading = run_source(MetNoSource, handler, make_city())
        assert urls == [MET_NO_URL]
        assert reading.ok
        assert reading.url == "https://www.wunderground.com"
        assert reading.temperature_c == 3.0
        assert reading.humidity_pct == 75
        assert reading.wind_kph == 18.0
        assert reading.pressure_hpa == 1005
        assert reading.condition == Condition.RAIN
        assert reading.feels_like_c is None

    def test_missing_timeseries(self):
        reading = run_source(MetNoSource, lambda request: httpx.Response(200, json={"properties": {}}), make_city())
        assert not reading.ok
        assert reading.error == "Response is missing timeseries"

    def test_timeout_is_a_failed_reading(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        reading = run_source(MetNoSource, handler, make_city())
        assert not reading.ok
        assert "Timed out" in reading.error


class TestFindFirstLink:
    def test_absolute_before_relative(self):
        html = '<a href="/x/1">a</a><a href="https://site.test/x/2">b</a>'
        absolute = [re.compile(r"(https://site\.test/x/[^?#]+)")]
        relative = [re.compile(r"(/x/[^?#]+)")]
        assert find_first_link(html, absolute) == "https://site.test/x/2"
        assert find_first_link(html, relative, "https://site.test") == "https://site.test/x/1"
        assert find_first_link("<p></p>", absolute) is None

    def test_query_string_dropped(self):
        html = '<a href="/pogoda/russia/kazan?utm=1&amp;x=2">Казань</a>'
        relative = [re.compile(r"(/pogoda/[^?#]+)")]
        assert find_first_link(html, relative, "https://meteoinfo.ru") == "https://meteoinfo.ru/pogoda/russia/kazan"
