"""Unit conversion and numeric helpers.

Every reading leaves a source adapter in canonical units: Celsius, km/h,
hPa and percent. The ``to_*`` functions take a value plus the unit it was
observed in; passing the canonical unit returns the value unchanged.
"""

import math
import re
from typing import Any, Iterable, Optional

KPH_PER_MPS = 3.6
KPH_PER_MPH = 1.60934
KPH_PER_KNOT = 1.852
HPA_PER_MMHG = 1.33322
HPA_PER_INHG = 33.8638866667

_WHITESPACE_RE = re.compile(r"\s+")


def parse_numeric(raw: Any) -> Optional[float]:
    """Parse a number from a JSON value or a text fragment.

    Accepts a decimal comma and ignores embedded whitespace. Returns None
    for anything that is not a finite number (booleans included).
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = _WHITESPACE_RE.sub("", str(raw).replace(",", ".", 1))
        # Typographic minus from scraped pages
        text = text.replace("−", "-")
        try:
            value = float(text)
        except ValueError:
            return None
    return value if math.isfinite(value) else None


def is_finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def round_or_none(value: Optional[float], digits: int = 1) -> Optional[float]:
    if not is_finite(value):
        return None
    return round(value, digits)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def first_finite(values: Iterable[Any]) -> Optional[float]:
    for value in values:
        if is_finite(value):
            return float(value)
    return None


def first_text(values: Iterable[Any]) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# --- Temperature ---

def fahrenheit_to_celsius(f: float) -> float:
    return (f - 32) * 5 / 9


def to_celsius(value: Optional[float], unit: str = "c") -> Optional[float]:
    """Convert a temperature to Celsius. Unit is "c"/"f" (Latin or Cyrillic)."""
    if not is_finite(value):
        return None
    if unit.strip().lower().lstrip("°") in ("f", "ф"):
        return fahrenheit_to_celsius(value)
    return float(value)


# --- Wind ---

def mps_to_kph(mps: Optional[float]) -> Optional[float]:
    if not is_finite(mps):
        return None
    return mps * KPH_PER_MPS


def mph_to_kph(mph: Optional[float]) -> Optional[float]:
    if not is_finite(mph):
        return None
    return mph * KPH_PER_MPH


_WIND_FACTORS = {
    "km/h": 1.0,
    "kph": 1.0,
    "kmh": 1.0,
    "км/ч": 1.0,
    "m/s": KPH_PER_MPS,
    "ms": KPH_PER_MPS,
    "м/с": KPH_PER_MPS,
    "mph": KPH_PER_MPH,
    "mp/h": KPH_PER_MPH,
    "kn": KPH_PER_KNOT,
    "kt": KPH_PER_KNOT,
    "knots": KPH_PER_KNOT,
}


def to_kph(value: Optional[float], unit: str = "km/h") -> Optional[float]:
    """Convert a wind speed to km/h. Unknown units are treated as km/h."""
    if not is_finite(value):
        return None
    return value * _WIND_FACTORS.get(unit.strip().lower(), 1.0)


# --- Pressure ---

def mmhg_to_hpa(mmhg: Optional[float]) -> Optional[float]:
    if not is_finite(mmhg):
        return None
    return mmhg * HPA_PER_MMHG


def inhg_to_hpa(inhg: Optional[float]) -> Optional[float]:
    if not is_finite(inhg):
        return None
    return inhg * HPA_PER_INHG


def to_hpa(value: Optional[float], unit: str = "hpa") -> Optional[float]:
    """Convert a pressure to hPa. Accepts hpa/mb/mbar, mmhg/мм рт, inhg."""
    if not is_finite(value):
        return None
    u = unit.strip().lower()
    if "mm" in u or "мм" in u:
        return mmhg_to_hpa(value)
    if "inhg" in u or u == "in":
        return inhg_to_hpa(value)
    return float(value)
