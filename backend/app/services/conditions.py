"""Weather condition vocabulary.

Maps free text (Russian and English), WMO weather codes (Open-Meteo) and
MET Norway symbol codes onto the closed :class:`Condition` category set.
"""

import re
from typing import Optional

from ..schemas.weather import Condition
from .units import is_finite

# Ordered: first matching rule wins.
CONDITION_RULES: list[tuple[re.Pattern, Condition]] = [
    (re.compile(r"thunder|storm|гроз", re.I), Condition.THUNDERSTORM),
    (re.compile(r"snow|sleet|blizzard|снег|метел|вьюг", re.I), Condition.SNOW),
    (re.compile(r"rain|drizzle|shower|дожд|ливн|морос", re.I), Condition.RAIN),
    (re.compile(r"fog|mist|haze|туман|дымк", re.I), Condition.FOG),
    (re.compile(r"overcast|cloud|пасмурн|облач", re.I), Condition.CLOUDY),
    (re.compile(r"clear|sunny|fair|ясно|солн", re.I), Condition.CLEAR),
]

WMO_DRIZZLE = {51, 53, 55, 56, 57}
WMO_RAIN = {61, 63, 65, 66, 67, 80, 81, 82}
WMO_SNOW = {71, 73, 75, 77, 85, 86}
WMO_THUNDER = {95, 96, 99}
WMO_FOG = {45, 48}
WMO_CLOUDY = {1, 2, 3}


def match_condition(text: Optional[str]) -> Optional[Condition]:
    """Return the first condition category whose keywords occur in ``text``."""
    if not text:
        return None
    for pattern, condition in CONDITION_RULES:
        if pattern.search(text):
            return condition
    return None


def _is_at_or_below(temperature_c: Optional[float], threshold: float) -> bool:
    return is_finite(temperature_c) and temperature_c <= threshold


def condition_from_wmo_code(
    code: Optional[float],
    temperature_c: Optional[float] = None,
) -> Optional[Condition]:
    """Map a WMO weather interpretation code to a condition.

    Drizzle at or below 0 C and rain at or below -1 C are reported as snow.
    Unknown codes fall back to Cloudy.
    """
    if not is_finite(code):
        return None
    code = int(code)
    if code == 0:
        return Condition.CLEAR
    if code in WMO_CLOUDY:
        return Condition.CLOUDY
    if code in WMO_FOG:
        return Condition.FOG
    if code in WMO_DRIZZLE:
        return Condition.SNOW if _is_at_or_below(temperature_c, 0) else Condition.RAIN
    if code in WMO_RAIN:
        return Condition.SNOW if _is_at_or_below(temperature_c, -1) else Condition.RAIN
    if code in WMO_SNOW:
        return Condition.SNOW
    if code in WMO_THUNDER:
        return Condition.THUNDERSTORM
    return Condition.CLOUDY


def condition_from_metno_symbol(
    symbol_code: Optional[str],
    temperature_c: Optional[float] = None,
) -> Optional[Condition]:
    """Map a MET Norway ``symbol_code`` (e.g. ``lightrainshowers_day``)."""
    if not symbol_code:
        return None
    symbol = symbol_code.lower()
    if "thunder" in symbol:
        return Condition.THUNDERSTORM
    if "snow" in symbol or "sleet" in symbol:
        return Condition.SNOW
    if "rain" in symbol or "drizzle" in symbol or "shower" in symbol:
        return Condition.SNOW if _is_at_or_below(temperature_c, -1) else Condition.RAIN
    if "fog" in symbol or "mist" in symbol or "haze" in symbol:
        return Condition.FOG
    if "cloud" in symbol or "overcast" in symbol:
        return Condition.CLOUDY
    if "clear" in symbol or "fair" in symbol or "sun" in symbol:
        return Condition.CLEAR
    return match_condition(symbol.replace("_", " "))


def derive_condition_from_chance(
    chance_pct: Optional[float],
    temperature_c: Optional[float] = None,
) -> Condition:
    """Guess a condition from precipitation probability alone."""
    chance = chance_pct if is_finite(chance_pct) else 0
    if chance >= 80:
        return Condition.SNOW if _is_at_or_below(temperature_c, 0) else Condition.RAIN
    if chance >= 55:
        return Condition.SNOW if _is_at_or_below(temperature_c, -2) else Condition.CLOUDY
    if chance >= 35:
        return Condition.CLOUDY
    return Condition.CLEAR


# Extra precipitation chance implied by the current condition.
CONDITION_CHANCE_BONUS: dict[Condition, float] = {
    Condition.THUNDERSTORM: 35,
    Condition.SNOW: 26,
    Condition.RAIN: 30,
    Condition.FOG: 15,
    Condition.CLOUDY: 8,
    Condition.CLEAR: 0,
}
