"""Fuse one cycle's source readings into a consensus snapshot.

Each metric is a robust mean: with enough values, readings too far from
the median are dropped before averaging, unless dropping them would
discard most of the data (then the sources genuinely disagree and the
plain mean is the honest answer).
"""

import math
import statistics
from typing import Optional, Sequence

from ..schemas.weather import AggregateSnapshot, Condition, SourceReading
from .units import is_finite, round_or_none

# Max distance from the median (canonical units) before a value is an outlier.
OUTLIER_TOLERANCE: dict[str, float] = {
    "temperature_c": 15,
    "feels_like_c": 15,
    "wind_kph": 45,
    "pressure_hpa": 35,
}

MIN_VALUES_FOR_FILTERING = 3


def robust_average(values: Sequence[float], tolerance: Optional[float] = None) -> Optional[float]:
    finite = [float(v) for v in values if is_finite(v)]
    if not finite:
        return None
    kept = finite
    if tolerance is not None and len(finite) >= MIN_VALUES_FOR_FILTERING:
        median = statistics.median(finite)
        filtered = [v for v in finite if abs(v - median) <= tolerance]
        if len(filtered) >= max(2, math.ceil(len(finite) / 2)):
            kept = filtered
    return sum(kept) / len(kept)


def summarize_condition(readings: Sequence[SourceReading]) -> Optional[Condition]:
    """Majority vote; ties go to the condition seen first."""
    counts: dict[Condition, int] = {}
    for reading in readings:
        if reading.ok and reading.condition is not None:
            counts[reading.condition] = counts.get(reading.condition, 0) + 1
    if not counts:
        return None
    # max() keeps the first of equal counts, and dicts keep insertion order.
    return max(counts, key=counts.__getitem__)


def _metric(readings: Sequence[SourceReading], field: str) -> Optional[float]:
    values = [getattr(r, field) for r in readings if r.ok]
    return robust_average(values, OUTLIER_TOLERANCE.get(field))


def _round_int(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(round(value))


def build_aggregate(readings: Sequence[SourceReading], expected: Optional[int] = None) -> AggregateSnapshot:
    expected_count = expected if expected is not None else len(readings)
    source_count = sum(1 for r in readings if r.ok)
    confidence = round(source_count / expected_count * 100) if expected_count else 0

    return AggregateSnapshot(
        source_count=source_count,
        expected_source_count=expected_count,
        confidence_pct=confidence,
        temperature_c=round_or_none(_metric(readings, "temperature_c"), 1),
        feels_like_c=round_or_none(_metric(readings, "feels_like_c"), 1),
        humidity_pct=_round_int(_metric(readings, "humidity_pct")),
        wind_kph=round_or_none(_metric(readings, "wind_kph"), 1),
        pressure_hpa=_round_int(_metric(readings, "pressure_hpa")),
        condition=summarize_condition(readings),
    )
