"""Heuristic extraction of current-weather values from arbitrary pages.

Scraped weather pages have no stable schema, so instead of parsing a
known layout we scan the decoded page text for every plausible value of
each metric, score each candidate by the keywords that surround it, and
keep the best one. Scoring per candidate:

    +1 base, +3 for each positive keyword in the ~60 char context window,
    -2 for each negative keyword (min/max/forecast wording).

Values outside the metric's plausibility range are discarded; among the
rest the highest score wins and ties keep the first match found. When
nothing plausible is found the metric is absent (None), never a default.

Also provides the balanced-brace scanner used by source adapters to pull
embedded JSON state blobs out of HTML.
"""

import re
from dataclasses import dataclass, fields
from typing import Callable, Iterable, Optional

from bs4 import BeautifulSoup

from ..schemas.weather import Condition
from .conditions import match_condition
from .units import mmhg_to_hpa, inhg_to_hpa, parse_numeric, to_celsius, to_kph

CONTEXT_RADIUS = 60

TEMPERATURE_RANGE = (-90.0, 65.0)
HUMIDITY_RANGE = (0.0, 100.0)
WIND_RANGE = (0.0, 200.0)
PRESSURE_RANGE = (850.0, 1100.0)

MAX_SCRIPT_CHARS = 50_000
TRUNCATED_SCRIPT_CHARS = 25_000
MAX_BODY_CHARS = 90_000

# A leading sign only counts when it is not a range separator ("3-5°").
_NUMBER = r"(?<![\d.])(-?\d{1,3}(?:[.,]\d+)?)"
# Unit letter must not be the first letter of a following word ("5° cloudy").
_TEMP_UNIT = r"([cCfFсСфФ](?![A-Za-zА-Яа-яЁё]))?"

DESCRIPTION_META_NAMES = {"description", "og:description", "twitter:description"}

_WEATHER_SCRIPT_RE = re.compile(
    r"temp|temperature|weather|humidity|pressure|wind|погод|температур|влажност|давлен|ветер",
    re.I,
)
# Hyphen, non-breaking hyphen, figure dash, minus sign and their variants.
_DASHES_RE = re.compile("[\u2010\u2011\u2012\u2212\ufe63\uff0d]")
_ESCAPED_WS_RE = re.compile(r"\\[nrt]")
_WS_RE = re.compile(r"\s+")

TEMPERATURE_DEGREE_RE = re.compile(_NUMBER + r"\s*(?:°|º)\s*" + _TEMP_UNIT)
TEMPERATURE_KEY_RE = re.compile(
    r"\"(?:temp|temperature|temp_c|air_temperature|current_temp|fact_temp)\"\s*[:=]\s*\"?"
    + _NUMBER + r"\"?",
    re.I,
)
FEELS_LIKE_RE = re.compile(
    r"(?:feels[\s-]?like|realfeel|apparent|ощущается(?:\s+как)?)[^\d-]{0,25}"
    + _NUMBER + r"\s*(?:°|º)?\s*" + _TEMP_UNIT,
    re.I,
)
FEELS_LIKE_KEY_RE = re.compile(
    r"\"(?:feels_like|feelsLike|apparent_temperature)\"\s*[:=]\s*\"?" + _NUMBER + r"\"?",
    re.I,
)
HUMIDITY_RE = re.compile(r"(?:humidity|влажност[ьи]?)[^\d]{0,20}(\d{1,3})\s*%?", re.I)
WIND_RE = re.compile(
    r"(?:wind(?:\s*speed)?|wind_speed|ветер|ветр[аеу])[^\d-]{0,25}(\d{1,3}(?:[.,]\d+)?)\s*"
    r"(km/h|kph|m/s|mph|м/с|км/ч)?",
    re.I,
)
PRESSURE_RE = re.compile(
    r"(?:pressure_mm|pressure|давлени[еяи])[^\d]{0,20}(\d{2,4}(?:[.,]\d+)?)"
    r"(?:\s*(hpa|mbar|mb|mmhg|inhg|мм(?:\s*рт)?))?",
    re.I,
)

TEMPERATURE_POSITIVE = ["current", "now", "currently", "сейчас", "текущ"]
TEMPERATURE_NEGATIVE = ["low", "high", "min", "max", "мин", "макс", "forecast", "прогноз"]


@dataclass
class ParsedReading:
    """Per-metric values pulled from one page, already in canonical units."""
    temperature_c: Optional[float] = None
    feels_like_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    wind_kph: Optional[float] = None
    pressure_hpa: Optional[float] = None
    condition: Optional[Condition] = None


@dataclass
class Candidate:
    value: float
    score: int


def merge_parsed(primary: ParsedReading, fallback: ParsedReading) -> ParsedReading:
    """Per metric, prefer ``primary`` and fall back to ``fallback``."""
    merged = ParsedReading()
    for f in fields(ParsedReading):
        value = getattr(primary, f.name)
        if value is None:
            value = getattr(fallback, f.name)
        setattr(merged, f.name, value)
    return merged


# --- Text normalization ---

def clean_text(text: str) -> str:
    """Unescape JS escapes, fold minus-like dashes and collapse whitespace."""
    text = re.sub(r"\\u00b0", "°", text, flags=re.I)
    text = re.sub(r"\\u2212", "-", text, flags=re.I)
    text = _DASHES_RE.sub("-", text)
    text = _ESCAPED_WS_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def visible_text(soup: BeautifulSoup) -> str:
    """Text of ``soup`` without script and style content. Mutates ``soup``."""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(" ")


def normalize_text(raw: str) -> str:
    """Visible text of a markup fragment with every entity decoded."""
    return clean_text(visible_text(BeautifulSoup(str(raw), "html.parser")))


def extract_signal_sections(html: str) -> list[str]:
    """Collect the page parts most likely to mention the current weather.

    Title, description meta tags, inline scripts that mention weather
    keywords (long ones truncated) and the visible text body.
    """
    soup = BeautifulSoup(html, "html.parser")
    sections: list[str] = []

    if soup.title is not None:
        sections.append(soup.title.get_text(" "))

    for meta in soup.find_all("meta", attrs={"content": True}):
        name = (meta.get("name") or meta.get("property") or "").lower()
        if name in DESCRIPTION_META_NAMES:
            sections.append(meta["content"])

    for script in soup.find_all("script"):
        body = script.string
        if not body or not _WEATHER_SCRIPT_RE.search(body):
            continue
        if len(body) <= MAX_SCRIPT_CHARS:
            sections.append(str(body))
        else:
            sections.append(str(body)[:TRUNCATED_SCRIPT_CHARS])

    sections.append(clean_text(visible_text(soup))[:MAX_BODY_CHARS])
    return [clean_text(section) for section in sections if section]


# --- Candidate scoring ---

def slice_context(text: str, index: int, radius: int = CONTEXT_RADIUS) -> str:
    return text[max(0, index - radius):index + radius].lower()


def score_candidate(
    value: Optional[float],
    context: str,
    positive: Iterable[str],
    negative: Iterable[str],
) -> Optional[Candidate]:
    if value is None:
        return None
    score = 1
    for hint in positive:
        if hint.lower() in context:
            score += 3
    for hint in negative:
        if hint.lower() in context:
            score -= 2
    return Candidate(value=value, score=score)


def collect_candidates(
    text: str,
    pattern: re.Pattern,
    convert: Callable[[re.Match, str], Optional[float]],
    positive: Iterable[str],
    negative: Iterable[str],
) -> list[Candidate]:
    """Run ``pattern`` over ``text`` and score every converted match."""
    positive = list(positive)
    negative = list(negative)
    found: list[Candidate] = []
    for match in pattern.finditer(text):
        context = slice_context(text, match.start())
        candidate = score_candidate(convert(match, context), context, positive, negative)
        if candidate is not None:
            found.append(candidate)
    return found


def pick_best(candidates: list[Candidate], bounds: tuple[float, float]) -> Optional[float]:
    """Highest score within ``bounds``; ties keep the earliest candidate."""
    lower, upper = bounds
    plausible = [c for c in candidates if lower <= c.value <= upper]
    if not plausible:
        return None
    return max(plausible, key=lambda c: c.score).value


# --- Per-metric extractors ---

def _temperature_from_match(match: re.Match, _context: str) -> Optional[float]:
    return to_celsius(parse_numeric(match.group(1)), match.group(2) or "c")


def _plain_number(match: re.Match, _context: str) -> Optional[float]:
    return parse_numeric(match.group(1))


def extract_temperature(text: str) -> Optional[float]:
    candidates = collect_candidates(
        text, TEMPERATURE_DEGREE_RE, _temperature_from_match,
        TEMPERATURE_POSITIVE, TEMPERATURE_NEGATIVE,
    )
    candidates += collect_candidates(
        text, TEMPERATURE_KEY_RE, _plain_number,
        ["temp", "temperature", "темпер"], ["forecast", "day", "night"],
    )
    picked = pick_best(candidates, TEMPERATURE_RANGE)
    return None if picked is None else round(picked, 1)


def extract_feels_like(text: str) -> Optional[float]:
    candidates = collect_candidates(
        text, FEELS_LIKE_RE, _temperature_from_match,
        ["feels", "realfeel", "apparent", "ощущ"], ["min", "max"],
    )
    candidates += collect_candidates(
        text, FEELS_LIKE_KEY_RE, _plain_number,
        ["feels_like", "feelslike", "apparent"], [],
    )
    picked = pick_best(candidates, TEMPERATURE_RANGE)
    return None if picked is None else round(picked, 1)


def extract_humidity(text: str) -> Optional[float]:
    candidates = collect_candidates(
        text, HUMIDITY_RE, _plain_number, ["humidity", "влаж"], [],
    )
    picked = pick_best(candidates, HUMIDITY_RANGE)
    return None if picked is None else float(round(picked))


def extract_wind(text: str, default_unit: str = "km/h") -> Optional[float]:
    """Wind speed in km/h; ``default_unit`` applies when no unit follows."""

    def convert(match: re.Match, _context: str) -> Optional[float]:
        return to_kph(parse_numeric(match.group(1)), match.group(2) or default_unit)

    candidates = collect_candidates(text, WIND_RE, convert, ["wind", "ветер"], [])
    picked = pick_best(candidates, WIND_RANGE)
    return None if picked is None else round(picked, 1)


def _pressure_from_match(match: re.Match, context: str) -> Optional[float]:
    raw = parse_numeric(match.group(1))
    if raw is None:
        return None
    unit = (match.group(2) or "").lower()
    if "mm" in unit or "мм" in unit:
        return mmhg_to_hpa(raw)
    if "in" in unit:
        return inhg_to_hpa(raw)
    if unit:
        return raw
    if "pressure_mm" in context or 680 <= raw <= 820:
        return mmhg_to_hpa(raw)
    if 25 <= raw <= 32.5:
        return inhg_to_hpa(raw)
    return raw


def extract_pressure(text: str) -> Optional[float]:
    candidates = collect_candidates(
        text, PRESSURE_RE, _pressure_from_match, ["pressure", "давл"], [],
    )
    picked = pick_best(candidates, PRESSURE_RANGE)
    return None if picked is None else float(round(picked))


def extract_condition(text: str) -> Optional[Condition]:
    return match_condition(text)


def normalize_condition(raw: Optional[str]) -> Optional[Condition]:
    """Categorize a short condition phrase taken from structured data."""
    if not raw:
        return None
    return match_condition(normalize_text(raw))


def parse_generic(html: str, default_wind_unit: str = "km/h") -> ParsedReading:
    """Run every heuristic extractor over the signal sections of a page."""
    text = " ".join(extract_signal_sections(html))
    return ParsedReading(
        temperature_c=extract_temperature(text),
        feels_like_c=extract_feels_like(text),
        humidity_pct=extract_humidity(text),
        wind_kph=extract_wind(text, default_wind_unit),
        pressure_hpa=extract_pressure(text),
        condition=extract_condition(text),
    )


# --- Embedded JSON ---

def extract_json_object_after(text: str, marker: str) -> Optional[str]:
    """Return the first balanced ``{...}`` that starts after ``marker``.

    Brace depth is tracked outside of double-quoted strings only, and
    backslash escapes inside strings are honoured, so braces in string
    values do not end the object early. Returns None if the marker is
    missing or the object never closes.
    """
    if not text or not marker:
        return None
    marker_at = text.find(marker)
    if marker_at == -1:
        return None
    start = text.find("{", marker_at + len(marker))
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None
