"""Generation of simulated insulin history and glucose readings."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Iterable, Sequence

__all__ = [
    "BasalSegment",
    "HistoricalBolus",
    "basal_segments",
    "meal_boluses",
    "merge_insulin_history",
    "time_of_day_glucose_base",
    "simulated_glucose_value",
]

_SEGMENT_LENGTH = timedelta(hours=4)
_SAMPLE_STEP = timedelta(hours=1)

# (time, label, base units, spread)
_MEALS = (
    (time(7, 15), "Breakfast", 4.0, 1.0),
    (time(12, 30), "Lunch", 5.0, 1.5),
    (time(18, 45), "Dinner", 6.0, 2.0),
)

# (first hour, end hour, base glucose in mmol/L)
_GLUCOSE_BY_HOUR = (
    (3, 7, 7.0),
    (7, 10, 8.5),
    (10, 12, 6.0),
    (12, 15, 9.0),
    (15, 18, 5.5),
    (18, 21, 8.0),
)
_NIGHT_GLUCOSE = 6.5


@dataclass(frozen=True)
class BasalSegment:
    start_time: datetime
    end_time: datetime
    rate: float
    profile_name: str
    automatic: bool = False


@dataclass(frozen=True)
class HistoricalBolus:
    timestamp: datetime
    units: float
    label: str
    extended: bool = False
    duration: int = 0


def basal_segments(
    start: datetime,
    end: datetime,
    basal_rate: float,
    profile_name: str,
    rng: random.Random,
) -> list[BasalSegment]:
    """Contiguous four-hour basal segments; about 70% are automatic with a varied rate."""
    segments = []
    segment_start = start
    while segment_start < end:
        segment_end = min(segment_start + _SEGMENT_LENGTH, end)
        automatic = rng.randrange(100) < 70
        rate = basal_rate
        if automatic:
            rate = max(0.1, basal_rate + (rng.random() - 0.5) * 0.6)
        segments.append(BasalSegment(segment_start, segment_end, rate, profile_name, automatic))
        segment_start = segment_end
    return segments


def meal_boluses(start: datetime, end: datetime, rng: random.Random) -> list[HistoricalBolus]:
    """Daily meal boluses and occasional afternoon corrections between ``start`` and ``end``."""
    boluses = []
    day = start
    while day < end:
        for meal_time, label, base, spread in _MEALS:
            when = datetime.combine(day.date(), meal_time, tzinfo=day.tzinfo)
            if not start <= when <= end:
                continue
            units = base + (rng.random() - 0.5) * spread
            extended = False
            duration = 0
            if label == "Dinner":
                extended = rng.randrange(100) < 30
                duration = rng.randrange(1, 4) * 30 if extended else 0
            boluses.append(HistoricalBolus(when, units, label, extended, duration))

        if rng.randrange(100) < 40:
            hour = rng.randrange(14, 22)
            minute = rng.randrange(60)
            when = datetime.combine(day.date(), time(hour, minute), tzinfo=day.tzinfo)
            if start <= when <= end:
                units = 1.5 + rng.random() * 1.5
                boluses.append(HistoricalBolus(when, units, "Correction"))
        day += timedelta(days=1)
    return boluses


def merge_insulin_history(
    boluses: Iterable[object], basals: Iterable[object]
) -> list[tuple[datetime, float]]:
    """Bolus amounts and hourly basal-rate samples as (time, value) pairs in time order."""
    entries = [(bolus.timestamp, bolus.units) for bolus in boluses]
    for basal in basals:
        sample = basal.start_time
        while sample <= basal.end_time:
            entries.append((sample, basal.rate))
            sample += _SAMPLE_STEP
    entries.sort(key=lambda entry: entry[0])
    return entries


def time_of_day_glucose_base(hour: int) -> float:
    """Typical glucose (mmol/L) for the hour of day, following meals and dawn rise."""
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be between 0 and 23, got {hour}")
    for first, last, value in _GLUCOSE_BY_HOUR:
        if first <= hour < last:
            return value
    return _NIGHT_GLUCOSE


def simulated_glucose_value(
    recent_values: Sequence[float], now: datetime, rng: random.Random
) -> float:
    """Next reading: near the last one, or near the time-of-day base when there is none."""
    if not recent_values:
        return time_of_day_glucose_base(now.hour) + (rng.random() - 0.5)
    return recent_values[-1] + (rng.random() - 0.5) * 0.3