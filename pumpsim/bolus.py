"""Bolus calculation, safety limits and delivery requests."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from .signals import Signal

__all__ = [
    "MaxBolusExceededError",
    "calculate_carb_bolus",
    "calculate_correction_bolus",
    "BolusController",
]

_DEFAULT_MAX_BOLUS = 25.0
_ABSOLUTE_MAX_BOLUS = 50.0
_HISTORY_WINDOW = timedelta(days=7)


class MaxBolusExceededError(ValueError):
    """A bolus larger than the configured maximum was requested."""

    def __init__(self, requested: float, maximum: float) -> None:
        super().__init__(f"bolus of {requested} u exceeds the maximum of {maximum} u")
        self.requested = requested
        self.maximum = maximum


def calculate_carb_bolus(carb_amount: float, carb_ratio: float) -> float:
    """Units needed to cover ``carb_amount`` grams at ``carb_ratio`` grams per unit."""
    if carb_ratio <= 0.0:
        return 0.0
    return carb_amount / carb_ratio


def calculate_correction_bolus(
    glucose_value: float, target_glucose: float, correction_factor: float
) -> float:
    """Units needed to bring glucose down to target; zero at or below target."""
    if correction_factor <= 0.0 or glucose_value <= target_glucose:
        return 0.0
    return (glucose_value - target_glucose) / correction_factor


class BolusController:
    """Suggests and requests boluses against an insulin, glucose and profile model.

    The insulin model provides ``insulin_on_board``, ``is_bolus_active``,
    ``deliver_bolus(units, source, extended, duration)``, ``cancel_bolus()`` and
    ``bolus_history(start, end)``, and may expose ``bolus_started``,
    ``bolus_completed`` and ``bolus_cancelled`` signals. The profile model
    provides ``active_profile`` with ``carb_ratio``, ``target_glucose`` and
    ``correction_factor``.
    """

    def __init__(self, insulin_model: Any, glucose_model: Any, profile_model: Any) -> None:
        self.insulin_model = insulin_model
        self.glucose_model = glucose_model
        self.profile_model = profile_model
        self._max_bolus = _DEFAULT_MAX_BOLUS

        self.bolus_delivery_started = Signal()
        self.bolus_delivery_completed = Signal()
        self.bolus_delivery_cancelled = Signal()
        self.bolus_calculated = Signal()
        self.max_bolus_exceeded = Signal()

        for source_name, target in (
            ("bolus_started", self.bolus_delivery_started),
            ("bolus_completed", self.bolus_delivery_completed),
            ("bolus_cancelled", self.bolus_delivery_cancelled),
        ):
            source = getattr(insulin_model, source_name, None)
            if isinstance(source, Signal):
                source.connect(target.emit)

    def calculate_suggested_bolus(self, glucose_value: float, carb_amount: float) -> float:
        """Suggest a bolus for the meal and current glucose, net of insulin on board."""
        profile = self.profile_model.active_profile
        carb_bolus = calculate_carb_bolus(carb_amount, profile.carb_ratio)
        correction = calculate_correction_bolus(
            glucose_value, profile.target_glucose, profile.correction_factor
        )
        total = carb_bolus + correction

        # Insulin on board only offsets the correction part.
        iob = self.insulin_model.insulin_on_board
        if iob > 0 and correction > 0:
            total = carb_bolus + max(correction - iob, 0.0)

        total = min(max(total, 0.0), self._max_bolus)
        self.bolus_calculated.emit(total)
        return total

    def deliver_bolus(self, units: float, extended: bool = False, duration: int = 0) -> bool:
        """Request a manual bolus; return False if one is already running or the model refuses."""
        if units > self._max_bolus:
            self.max_bolus_exceeded.emit(units, self._max_bolus)
            raise MaxBolusExceededError(units, self._max_bolus)
        if self.is_delivery_in_progress():
            return False
        return self.insulin_model.deliver_bolus(units, "Manual", extended, duration)

    def is_delivery_in_progress(self) -> bool:
        return bool(self.insulin_model.is_bolus_active)

    def cancel_delivery(self) -> bool:
        return self.insulin_model.cancel_bolus()

    def is_bolus_safe(
        self, units: float, current_glucose: float, insulin_on_board: float
    ) -> bool:
        """Whether a bolus passes the maximum, stacking and low-glucose checks."""
        if units > self._max_bolus:
            return False
        if insulin_on_board > 10.0 and units > 5.0:
            return False
        if current_glucose < 4.0 and units > 0.0:
            return False
        return True

    @property
    def max_bolus(self) -> float:
        return self._max_bolus

    @max_bolus.setter
    def max_bolus(self, value: float) -> None:
        if not 0.0 < value <= _ABSOLUTE_MAX_BOLUS:
            raise ValueError(
                f"maximum bolus must be above 0 and at most {_ABSOLUTE_MAX_BOLUS} units"
            )
        self._max_bolus = value

    def recent_boluses(self, count: int) -> list[Any]:
        """Boluses from the last seven days, newest first, at most ``count`` if positive."""
        now = datetime.now()
        history = self.insulin_model.bolus_history(now - _HISTORY_WINDOW, now)
        ordered = sorted(history, key=lambda bolus: bolus.timestamp, reverse=True)
        if count > 0:
            return ordered[:count]
        return ordered