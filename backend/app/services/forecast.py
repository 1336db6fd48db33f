"""7-day forecast: Open-Meteo normalization and a synthetic fallback.

A live forecast needs coordinates and a usable API response. Anything
less yields ``None`` from :meth:`ForecastBuilder.fetch`, and the caller
then synthesizes one from the current consensus reading so that every
snapshot carries a structurally complete forecast.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from ..schemas.weather import (
    AggregateSnapshot,
    CityInfo,
    Condition,
    Forecast,
    ForecastDay,
    ForecastPeriod,
    ForecastProvider,
    HourlyPoint,
    PeriodKey,
)
from .conditions import CONDITION_CHANCE_BONUS, condition_from_wmo_code, derive_condition_from_chance
from .http_client import Fetcher
from .units import clamp, is_finite, parse_numeric, round_or_none

logger = logging.getLogger(__name__)

FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
FORECAST_DAYS = 7

HOURLY_VARS = [
    "temperature_2m",
    "precipitation_probability",
    "precipitation",
    "weather_code",
    "wind_speed_10m",
]
DAILY_VARS = [
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "precipitation_probability_max",
]

PERIOD_ANCHORS: list[tuple[PeriodKey, int]] = [
    (PeriodKey.NIGHT, 0),
    (PeriodKey.MORNING, 9),
    (PeriodKey.DAY, 14),
    (PeriodKey.EVENING, 19),
]

# Fraction of the min..max range used for periods without hourly data.
PERIOD_BLEND = {
    PeriodKey.NIGHT: 0.0,
    PeriodKey.MORNING: 0.35,
    PeriodKey.DAY: 1.0,
    PeriodKey.EVENING: 0.52,
}

MAX_PRECIP_MM = 999
MAX_WIND_KPH = 220
MIDDAY_HOUR = 14

# Synthetic seeds when the consensus reading is missing a value.
SYNTHETIC_BASE_TEMP_C = 8.0
SYNTHETIC_BASE_WIND_KPH = 14.0
SYNTHETIC_BASE_HUMIDITY_PCT = 55.0

_ISO_HOUR_RE = re.compile(r"T(\d{1,2})")


@dataclass
class DayFallback:
    """Day-level values borrowed by periods that have no hourly point."""

    temp_min_c: Optional[float]
    temp_max_c: Optional[float]
    condition: Optional[Condition]
    chance_pct: Optional[float]


def parse_iso_hour(time: str) -> Optional[int]:
    match = _ISO_HOUR_RE.search(time or "")
    return int(match.group(1)) if match else None


def _pick(node: dict, keys: Sequence[str], index: int) -> Optional[float]:
    """Numeric value at ``index`` of the first series among ``keys`` that has one."""
    for key in keys:
        series = node.get(key)
        if isinstance(series, list) and index < len(series):
            value = parse_numeric(series[index])
            if value is not None:
                return value
    return None


def _round_pct(value: Optional[float]) -> Optional[int]:
    if not is_finite(value):
        return None
    return int(round(clamp(value, 0, 100)))


def select_nearest_hour(rows: Sequence[HourlyPoint], target_hour: int) -> Optional[HourlyPoint]:
    """Row whose hour is closest to ``target_hour``; earliest wins ties."""
    winner = None
    best = math.inf
    for row in rows:
        hour = row.hour if row.hour is not None else parse_iso_hour(row.time)
        if hour is None:
            continue
        distance = abs(hour - target_hour)
        if distance < best:
            winner, best = row, distance
    return winner


def estimate_period_temperature(
    key: PeriodKey,
    temp_min_c: Optional[float],
    temp_max_c: Optional[float],
) -> Optional[float]:
    if not is_finite(temp_min_c):
        return temp_max_c if is_finite(temp_max_c) else None
    if not is_finite(temp_max_c):
        return temp_min_c
    return temp_min_c + (temp_max_c - temp_min_c) * PERIOD_BLEND[key]


def build_periods_for_day(rows: Sequence[HourlyPoint], fallback: DayFallback) -> list[ForecastPeriod]:
    periods = []
    for key, hour in PERIOD_ANCHORS:
        nearest = select_nearest_hour(rows, hour)
        if nearest is None:
            temp = estimate_period_temperature(key, fallback.temp_min_c, fallback.temp_max_c)
            periods.append(ForecastPeriod(
                key=key,
                hour=hour,
                temp_c=round_or_none(temp, 1),
                condition=fallback.condition or derive_condition_from_chance(fallback.chance_pct, temp),
                precip_chance_pct=_round_pct(fallback.chance_pct),
            ))
            continue
        periods.append(ForecastPeriod(
            key=key,
            hour=hour,
            temp_c=round_or_none(nearest.temp_c, 1),
            condition=nearest.condition or fallback.condition or Condition.CLOUDY,
            precip_chance_pct=_round_pct(nearest.precip_chance_pct),
            precip_mm=nearest.precip_mm,
            wind_kph=nearest.wind_kph,
        ))
    return periods


def _finite(values: Sequence[Any]) -> list[float]:
    return [v for v in values if is_finite(v)]


def normalize_open_meteo_forecast(payload: Any, now: Optional[datetime] = None) -> Optional[Forecast]:
    """Open-Meteo ``hourly``/``daily`` series -> :class:`Forecast`, or None if unusable."""
    if not isinstance(payload, dict):
        return None

    hourly_node = payload.get("hourly") if isinstance(payload.get("hourly"), dict) else {}
    times = hourly_node.get("time") if isinstance(hourly_node.get("time"), list) else []
    hourly: list[HourlyPoint] = []
    for index, raw_time in enumerate(times):
        time = str(raw_time or "")
        if not time:
            continue
        temp = _pick(hourly_node, ["temperature_2m"], index)
        code = _pick(hourly_node, ["weather_code", "weathercode"], index)
        chance = _pick(hourly_node, ["precipitation_probability"], index)
        precip = _pick(hourly_node, ["precipitation", "rain"], index)
        wind = _pick(hourly_node, ["wind_speed_10m", "windspeed_10m"], index)
        hourly.append(HourlyPoint(
            time=time,
            date=time[:10],
            hour=parse_iso_hour(time),
            temp_c=round_or_none(temp, 1),
            condition=condition_from_wmo_code(code, temp),
            precip_chance_pct=_round_pct(chance),
            precip_mm=round(clamp(precip or 0.0, 0, MAX_PRECIP_MM), 1),
            wind_kph=round(clamp(wind or 0.0, 0, MAX_WIND_KPH), 1),
        ))

    daily_node = payload.get("daily") if isinstance(payload.get("daily"), dict) else {}
    dates = daily_node.get("time") if isinstance(daily_node.get("time"), list) else []
    days: list[ForecastDay] = []
    for index, raw_date in enumerate(dates[:FORECAST_DAYS]):
        date = str(raw_date)
        temp_min = _pick(daily_node, ["temperature_2m_min"], index)
        temp_max = _pick(daily_node, ["temperature_2m_max"], index)
        chance = _pick(daily_node, ["precipitation_probability_max", "precipitation_probability_mean"], index)
        precip = _pick(daily_node, ["precipitation_sum"], index)
        code_condition = condition_from_wmo_code(
            _pick(daily_node, ["weather_code", "weathercode"], index), temp_max,
        )

        day_rows = [row for row in hourly if row.date == date]
        periods = build_periods_for_day(day_rows, DayFallback(temp_min, temp_max, code_condition, chance))

        if chance is None:
            hourly_chances = _finite([row.precip_chance_pct for row in day_rows])
            chance = max(hourly_chances) if hourly_chances else 0
        chance_pct = _round_pct(chance)
        if precip is None:
            precip = sum(_finite([row.precip_mm for row in day_rows]))

        days.append(ForecastDay(
            date=date,
            temp_min_c=round_or_none(temp_min, 1),
            temp_max_c=round_or_none(temp_max, 1),
            condition=code_condition or derive_condition_from_chance(chance_pct, temp_max),
            precip_chance_pct=chance_pct,
            precip_mm=round(precip, 1),
            periods=periods,
        ))

    if not days or not hourly:
        return None

    timezone_name = payload.get("timezone")
    return Forecast(
        provider=ForecastProvider.API,
        timezone=timezone_name if isinstance(timezone_name, str) else "auto",
        generated_at=now or datetime.now(timezone.utc),
        days=days,
        hourly=hourly,
    )


def infer_chance_from_aggregate(aggregate: AggregateSnapshot) -> int:
    """Precipitation chance implied by current humidity and condition."""
    humidity = aggregate.humidity_pct if is_finite(aggregate.humidity_pct) else SYNTHETIC_BASE_HUMIDITY_PCT
    bonus = CONDITION_CHANCE_BONUS.get(aggregate.condition, 0) if aggregate.condition else 0
    return int(round(clamp((humidity - 30) * 0.85 + bonus, 6, 92)))


def build_synthetic_forecast(aggregate: AggregateSnapshot, now: Optional[datetime] = None) -> Forecast:
    """Seven plausible days around the current reading.

    Temperature follows a diurnal cosine peaking at 14:00 plus a slow
    per-day drift; precipitation chance follows a sine wave around the
    chance inferred from humidity and condition. Deterministic for a
    given aggregate and start time.
    """
    generated_at = now or datetime.now().astimezone()
    start = generated_at.replace(minute=0, second=0, microsecond=0)

    base_temp = aggregate.temperature_c if is_finite(aggregate.temperature_c) else SYNTHETIC_BASE_TEMP_C
    base_wind = aggregate.wind_kph if is_finite(aggregate.wind_kph) else SYNTHETIC_BASE_WIND_KPH
    base_chance = infer_chance_from_aggregate(aggregate)

    hourly: list[HourlyPoint] = []
    days: list[ForecastDay] = []
    for day_index in range(FORECAST_DAYS):
        date = (start.date() + timedelta(days=day_index)).isoformat()
        drift = math.sin((day_index + 1) * 0.9) * 2 + math.cos((day_index + 2) * 0.35)
        rows: list[HourlyPoint] = []
        for hour in range(24):
            diurnal = math.cos(math.pi * (hour - 14) / 12)
            temp = round(base_temp + drift + diurnal * 4.2, 1)
            wave = math.sin((hour + day_index * 3) / 3.2) * 16
            chance = int(round(clamp(base_chance + wave - day_index * 1.2, 5, 95)))
            condition = derive_condition_from_chance(chance, temp)
            if chance >= 40:
                precip = round(chance / 100 * (1.6 if condition == Condition.RAIN else 1), 1)
            else:
                precip = 0.0
            wind = round(clamp(base_wind + math.sin((hour + day_index) / 4) * 4, 0, 160), 1)
            rows.append(HourlyPoint(
                time=f"{date}T{hour:02d}:00",
                date=date,
                hour=hour,
                temp_c=temp,
                condition=condition,
                precip_chance_pct=chance,
                precip_mm=precip,
                wind_kph=wind,
            ))
        hourly.extend(rows)

        temp_min = min(row.temp_c for row in rows)
        temp_max = max(row.temp_c for row in rows)
        chance_max = max(row.precip_chance_pct for row in rows)
        midday = select_nearest_hour(rows, MIDDAY_HOUR)
        midday_condition = midday.condition if midday else None
        days.append(ForecastDay(
            date=date,
            temp_min_c=round(temp_min, 1),
            temp_max_c=round(temp_max, 1),
            condition=midday_condition or derive_condition_from_chance(chance_max, temp_max),
            precip_chance_pct=chance_max,
            precip_mm=round(sum(row.precip_mm for row in rows), 1),
            periods=build_periods_for_day(rows, DayFallback(
                temp_min,
                temp_max,
                midday_condition or aggregate.condition or Condition.CLOUDY,
                chance_max,
            )),
        ))

    return Forecast(
        provider=ForecastProvider.SYNTHETIC,
        timezone="local",
        generated_at=generated_at,
        days=days,
        hourly=hourly,
    )


class ForecastBuilder:
    """Fetches the live forecast for a city; never raises."""

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    async def fetch(self, city: CityInfo) -> Optional[Forecast]:
        if not city.has_coordinates:
            logger.debug("No coordinates for %s, forecast will be synthetic", city.key)
            return None
        try:
            payload = await self.fetcher.fetch_json(FORECAST_URL, params={
                "latitude": city.lat,
                "longitude": city.lon,
                "timezone": "auto",
                "forecast_days": FORECAST_DAYS,
                "hourly": ",".join(HOURLY_VARS),
                "daily": ",".join(DAILY_VARS),
            })
            forecast = normalize_open_meteo_forecast(payload)
        except Exception as exc:
            logger.warning("Forecast fetch failed for %s: %s", city.key, exc)
            return None
        if forecast is None:
            logger.warning("Forecast response for %s was unusable", city.key)
        return forecast

    @staticmethod
    def synthesize(aggregate: AggregateSnapshot, now: Optional[datetime] = None) -> Forecast:
        return build_synthetic_forecast(aggregate, now)
