"""Alert raising, tracking and acknowledgement for the pump."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .signals import Scheduler, Signal

__all__ = ["AlertLevel", "TrendDirection", "Alert", "AlertController"]

_MONITOR_INTERVAL = 60.0
_AUTO_ACKNOWLEDGE_DELAY = 5.0
_CGM_GAP_SECONDS = 600


class AlertLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class TrendDirection(Enum):
    RISING_QUICKLY = "rising_quickly"
    RISING = "rising"
    STEADY = "steady"
    FALLING = "falling"
    FALLING_QUICKLY = "falling_quickly"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Alert:
    message: str
    level: AlertLevel
    raised_at: datetime


class AlertController:
    """Watches pump, glucose and insulin state and keeps the list of active alerts.

    The models are read through these attributes:
    pump model: ``insulin_remaining``, ``battery_level`` and optionally an
    ``alert_added`` signal; glucose model: ``current_glucose``,
    ``trend_direction``, ``last_reading_time`` and optionally a ``new_reading``
    signal; insulin model: ``is_bolus_active`` and ``current_bolus`` (with
    ``timestamp``, ``extended`` and ``duration`` in minutes).
    """

    def __init__(
        self,
        pump_model: Any = None,
        glucose_model: Any = None,
        insulin_model: Any = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._pump = pump_model
        self._glucose = glucose_model
        self._insulin = insulin_model
        self._scheduler = scheduler if scheduler is not None else Scheduler()
        self._alerts: list[Alert] = []

        self.low_glucose_threshold = 3.9
        self.high_glucose_threshold = 10.0
        self.urgent_low_glucose_threshold = 3.1
        self.urgent_high_glucose_threshold = 13.9
        self.low_insulin_threshold = 50.0
        self.critical_low_insulin_threshold = 10.0
        self.low_battery_threshold = 20
        self.critical_low_battery_threshold = 5
        self.alerts_enabled = True

        self.alert_added = Signal()
        self.alert_acknowledged = Signal()
        self.all_alerts_acknowledged = Signal()
        self.critical_alert_active = Signal()

        self._monitor = self._scheduler.timer(_MONITOR_INTERVAL, self.check_all)

        model_alerts = getattr(pump_model, "alert_added", None)
        if isinstance(model_alerts, Signal):
            model_alerts.connect(lambda message, level: self.add_alert(message, level))
        readings = getattr(glucose_model, "new_reading", None)
        if isinstance(readings, Signal):
            readings.connect(lambda value, timestamp: self.check_glucose_alerts())

    def add_alert(
        self, message: str, level: AlertLevel, auto_acknowledge: bool = False
    ) -> bool:
        """Raise an alert unless one with the same message is active; return whether it was added."""
        if any(alert.message == message for alert in self._alerts):
            return False
        self._alerts.append(Alert(message, level, self._scheduler.now()))
        self.alert_added.emit(message, level)
        if level is AlertLevel.CRITICAL:
            self.critical_alert_active.emit(message)
        if auto_acknowledge and level is AlertLevel.INFO:
            self._scheduler.single_shot(
                _AUTO_ACKNOWLEDGE_DELAY, lambda: self._acknowledge_message(message)
            )
        return True

    def acknowledge_alert(self, index: int) -> Alert:
        """Remove and return the active alert at ``index``."""
        if not 0 <= index < len(self._alerts):
            raise IndexError(f"no active alert at index {index}")
        alert = self._alerts.pop(index)
        self.alert_acknowledged.emit(index)
        return alert

    def acknowledge_all_alerts(self) -> None:
        self._alerts.clear()
        self.all_alerts_acknowledged.emit()

    @property
    def active_alerts(self) -> list[Alert]:
        return list(self._alerts)

    @property
    def has_active_alerts(self) -> bool:
        return bool(self._alerts)

    @property
    def has_critical_alerts(self) -> bool:
        return any(alert.level is AlertLevel.CRITICAL for alert in self._alerts)

    def set_glucose_alert_thresholds(
        self, low: float, high: float, urgent_low: float, urgent_high: float
    ) -> None:
        self.low_glucose_threshold = low
        self.high_glucose_threshold = high
        self.urgent_low_glucose_threshold = urgent_low
        self.urgent_high_glucose_threshold = urgent_high

    def set_insulin_alert_thresholds(self, low: float, critical_low: float) -> None:
        self.low_insulin_threshold = low
        self.critical_low_insulin_threshold = critical_low

    def set_battery_alert_thresholds(self, low: int, critical_low: int) -> None:
        self.low_battery_threshold = low
        self.critical_low_battery_threshold = critical_low

    def start_monitoring(self) -> None:
        """Run every check once a minute."""
        self._monitor.start()

    def stop_monitoring(self) -> None:
        self._monitor.stop()

    def check_all(self) -> None:
        if not self.alerts_enabled:
            return
        self.check_glucose_alerts()
        self.check_insulin_alerts()
        self.check_battery_alerts()
        self.check_misc_alerts()

    def check_glucose_alerts(self) -> None:
        if self._glucose is None or not self.alerts_enabled:
            return
        glucose = self._glucose.current_glucose
        if glucose <= self.urgent_low_glucose_threshold:
            self.add_alert(f"URGENT LOW GLUCOSE: {glucose:.1f} mmol/L", AlertLevel.CRITICAL)
        elif glucose < self.low_glucose_threshold:
            self.add_alert(f"Low glucose: {glucose:.1f} mmol/L", AlertLevel.WARNING)
        elif glucose >= self.urgent_high_glucose_threshold:
            self.add_alert(f"URGENT HIGH GLUCOSE: {glucose:.1f} mmol/L", AlertLevel.CRITICAL)
        elif glucose > self.high_glucose_threshold:
            self.add_alert(f"High glucose: {glucose:.1f} mmol/L", AlertLevel.WARNING)

        trend = self._glucose.trend_direction
        if trend is TrendDirection.RISING_QUICKLY:
            self.add_alert("Glucose rising quickly", AlertLevel.WARNING)
        elif trend is TrendDirection.FALLING_QUICKLY:
            self.add_alert("Glucose falling quickly", AlertLevel.WARNING)

    def check_insulin_alerts(self) -> None:
        if self._pump is None or not self.alerts_enabled:
            return
        remaining = self._pump.insulin_remaining
        if remaining <= self.critical_low_insulin_threshold:
            self.add_alert(
                f"INSULIN CRITICALLY LOW: {remaining:.1f} units remaining", AlertLevel.CRITICAL
            )
        elif remaining <= self.low_insulin_threshold:
            self.add_alert(f"Insulin low: {remaining:.1f} units remaining", AlertLevel.WARNING)

    def check_battery_alerts(self) -> None:
        if self._pump is None or not self.alerts_enabled:
            return
        level = self._pump.battery_level
        if level <= self.critical_low_battery_threshold:
            self.add_alert(f"BATTERY CRITICALLY LOW: {level}% remaining", AlertLevel.CRITICAL)
        elif level <= self.low_battery_threshold:
            self.add_alert(f"Battery low: {level}% remaining", AlertLevel.WARNING)

    def check_misc_alerts(self) -> None:
        if (
            self._pump is None
            or self._glucose is None
            or self._insulin is None
            or not self.alerts_enabled
        ):
            return
        now = self._scheduler.now()

        last_reading = self._glucose.last_reading_time
        if last_reading is not None:
            gap = int((now - last_reading).total_seconds())
            if gap > _CGM_GAP_SECONDS:
                self.add_alert(
                    f"CGM data gap: No readings for {gap // 60} minutes", AlertLevel.WARNING
                )

        if self._insulin.is_bolus_active:
            bolus = self._insulin.current_bolus
            expected_minutes = bolus.duration if bolus.extended else 1
            running = int((now - bolus.timestamp).total_seconds())
            if running > (expected_minutes + 2) * 60:
                self.add_alert(
                    "Bolus delivery taking longer than expected", AlertLevel.WARNING
                )

    def _acknowledge_message(self, message: str) -> None:
        for index, alert in enumerate(self._alerts):
            if alert.message == message:
                self.acknowledge_alert(index)
                return