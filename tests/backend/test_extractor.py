"""Tests for the heuristic HTML weather extractor."""

from app.schemas.weather import Condition
from app.services.extractor import (
    ParsedReading,
    extract_humidity,
    extract_json_object_after,
    extract_pressure,
    extract_signal_sections,
    extract_temperature,
    extract_wind,
    merge_parsed,
    normalize_text,
    parse_generic,
)


class TestTemperature:
    def test_prefers_current_over_forecast(self):
        assert extract_temperature("Сейчас -5°C, ночью -12°C") == -5.0

    def test_negative_keyword_loses(self):
        text = "Max 20°C today. " + "x" * 130 + " Now 14°C"
        assert extract_temperature(text) == 14.0

    def test_fahrenheit_converted(self):
        assert extract_temperature("Currently 50°F") == 10.0

    def test_json_key(self):
        assert extract_temperature('{"temp": "-3"}') == -3.0

    def test_out_of_range_discarded(self):
        assert extract_temperature("Now 120°C") is None

    def test_nothing_found(self):
        assert extract_temperature("no numbers here") is None

    def test_range_is_not_a_negative_value(self):
        assert extract_temperature("Днём 3-5°") == 5.0
        assert extract_temperature("Сейчас 10,-5°C") == -5.0


class TestOtherMetrics:
    def test_humidity(self):
        assert extract_humidity("Влажность: 78%") == 78.0

    def test_humidity_out_of_range(self):
        assert extract_humidity("humidity 150%") is None

    def test_wind_with_unit(self):
        assert extract_wind("Ветер 5 м/с") == 18.0

    def test_wind_default_unit(self):
        assert extract_wind("Wind 5", default_unit="m/s") == 18.0
        assert extract_wind("Wind 5") == 5.0

    def test_pressure_mmhg(self):
        assert extract_pressure("Давление 750 мм рт. ст.") == 1000.0

    def test_pressure_unitless_mmhg_range(self):
        assert extract_pressure("pressure 745") == 993.0

    def test_pressure_hpa(self):
        assert extract_pressure("Pressure 1013 hPa") == 1013.0


class TestParseGeneric:
    def test_page(self):
        html = """
        <html><head><title>Погода сейчас</title>
        <meta name="description" content="Сейчас +2°C, пасмурно">
        </head><body>
        <div>Ощущается как −3°</div>
        <div>Влажность 91%</div>
        <div>Ветер 4 м/с</div>
        <div>Давление 748 мм рт. ст.</div>
        </body></html>
        """
        parsed = parse_generic(html)
        assert parsed.temperature_c == 2.0
        assert parsed.feels_like_c == -3.0
        assert parsed.humidity_pct == 91.0
        assert parsed.wind_kph == 14.4
        assert parsed.pressure_hpa == 997.0
        assert parsed.condition == Condition.CLOUDY

    def test_empty_page(self):
        parsed = parse_generic("<html></html>")
        assert parsed == ParsedReading()

    def test_numeric_entities_decoded(self):
        parsed = parse_generic('<meta name="description" content="Сейчас &#x2212;5&deg;C, облачно">')
        assert parsed.temperature_c == -5.0
        assert parsed.condition == Condition.CLOUDY

    def test_hyphen_entity_in_feels_like(self):
        parsed = parse_generic("<div>Сейчас 7&#xb0;</div><div>Ощущается как &#8209;2&#x00B0;</div>")
        assert parsed.temperature_c == 7.0
        assert parsed.feels_like_c == -2.0

    def test_signal_sections(self):
        html = (
            "<html><head><title>Погода</title>"
            '<meta property="og:description" content="Ясно">'
            "<style>.a { color: red }</style></head>"
            "<body><script>var temp = 3;</script><script>var x = 1;</script>"
            "<p>Ветер 2 м/с</p></body></html>"
        )
        assert extract_signal_sections(html) == [
            "Погода",
            "Ясно",
            "var temp = 3;",
            "Погода Ветер 2 м/с",
        ]


class TestHelpers:
    def test_normalize_text(self):
        assert normalize_text("<b>5&deg;</b>&minus;3") == "5° -3"

    def test_normalize_numeric_entities(self):
        assert normalize_text("&#8209;2&#x00B0; &#x2212;3&nbsp;&#176;") == "-2° -3 °"

    def test_merge_prefers_primary(self):
        merged = merge_parsed(
            ParsedReading(temperature_c=1.0),
            ParsedReading(temperature_c=2.0, humidity_pct=50.0),
        )
        assert merged.temperature_c == 1.0
        assert merged.humidity_pct == 50.0


class TestJsonObjectScanner:
    def test_balanced_object(self):
        text = 'var x = 1; window.state = {"a": {"b": 2}, "c": 3}; more()'
        assert extract_json_object_after(text, "window.state =") == '{"a": {"b": 2}, "c": 3}'

    def test_braces_inside_strings(self):
        text = 'M = {"s": "}{", "t": "\\"}"}; tail'
        assert extract_json_object_after(text, "M =") == '{"s": "}{", "t": "\\"}"}'

    def test_missing_marker(self):
        assert extract_json_object_after("{}", "nope") is None

    def test_unclosed(self):
        assert extract_json_object_after('M = {"a": 1', "M =") is None
