"""The pump controller: runs the simulation and ties the pump models together."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from .alerts import AlertController, AlertLevel, TrendDirection
from .history import (
    basal_segments,
    meal_boluses,
    merge_insulin_history,
    simulated_glucose_value,
)
from .signals import Scheduler, Signal, Timer

__all__ = ["Reminder", "PumpController"]

_SPEED_FACTOR = 30
_CHARGE_STEP_SECONDS = 3.0
_SHUTDOWN_DELAY = 3.0
_CONTROL_IQ_FIRST_RUN_DELAY = 2.0
_CGM_GAP_SECONDS = 600
_STANDARD_BOLUS_UNITS_PER_SECOND = 1.0 / 60.0
_CONSUMPTION_PERIOD_SECONDS = 5.0

_PUMP_STATE_FILE = "pump_state.json"
_PROFILES_FILE = "profiles.json"
_GLUCOSE_FILE = "glucose_readings.json"
_INSULIN_FILE = "insulin_data.json"


def _sim_interval(milliseconds: int) -> float:
    """A simulated-time interval in seconds, run faster by the speed factor."""
    return (milliseconds // _SPEED_FACTOR) / 1000.0


@dataclass
class Reminder:
    """A reminder that raises a warning once it falls due."""

    type: str
    time: datetime
    acknowledged: bool = False


class PumpController:
    """Owns the simulation timers and exposes the pump's state and actions.

    The collaborating models are used through these members.

    Pump model: ``battery_level``, ``is_charging``, ``insulin_remaining``,
    ``insulin_on_board``, ``powered_on`` (assigned), ``update_battery_level``,
    ``update_insulin_remaining``, ``reduce_insulin``, ``start_charging``,
    ``stop_charging``, ``update_insulin_on_board``, ``add_glucose_reading``,
    ``update_control_iq_delivery``, ``add_alert``, ``save_state``, ``load_state``.

    Glucose model: ``current_glucose``, ``last_reading_time``,
    ``trend_direction``, ``readings(start, end)``, ``add_reading``,
    ``force_trend``, ``generate_fixed_pattern(hours)``, ``save_readings``,
    ``load_readings``.

    Insulin model: ``current_basal_rate``, ``is_bolus_active``,
    ``current_bolus``, ``last_control_iq_adjustment``, ``start_basal``,
    ``stop_basal``, ``suspend_basal``, ``resume_basal``,
    ``adjust_basal_rate(rate, automatic)``, ``deliver_bolus``, ``cancel_bolus``,
    ``bolus_history``, ``basal_history``, ``add_basal_to_history``,
    ``add_bolus_to_history``, ``update_iob``, ``save_insulin_data``,
    ``load_insulin_data``.

    Profile model: ``active_profile``, ``active_profile_name``,
    ``all_profiles``, ``get_profile``, ``set_active_profile``,
    ``create_profile``, ``update_profile``, ``delete_profile``,
    ``save_profiles``, ``load_profiles``.

    Control-IQ: ``calculate_basal_adjustment(glucose, trend, basal_rate,
    target_glucose, insulin_on_board)``.

    Error handler: ``log_error(message, source, level)``,
    ``low_battery_alert``, ``low_insulin_alert``, ``low_glucose_alert``,
    ``high_glucose_alert``, ``cgm_disconnected_alert``, ``occlusion_alert``.

    Models may expose :class:`Signal` attributes, which are forwarded.
    """

    def __init__(
        self,
        pump_model: Any,
        profile_model: Any,
        glucose_model: Any,
        insulin_model: Any,
        control_iq: Any,
        error_handler: Any,
        alert_controller: AlertController | None = None,
        scheduler: Scheduler | None = None,
        data_dir: str | Path | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.pump_model = pump_model
        self.profile_model = profile_model
        self.glucose_model = glucose_model
        self.insulin_model = insulin_model
        self.control_iq = control_iq
        self.error_handler = error_handler
        self.scheduler = scheduler if scheduler is not None else Scheduler()
        self.data_dir = (
            Path(data_dir) if data_dir is not None else Path.home() / ".tslimx2simulator"
        )
        self._rng = rng if rng is not None else random.Random()
        self._running = False
        self.control_iq_enabled = True
        self.reminders: list[Reminder] = []
        self._charge_timer: Timer | None = None

        self.pump_started = Signal()
        self.pump_stopped = Signal()
        self.battery_level_changed = Signal()
        self.charging_state_changed = Signal()
        self.insulin_remaining_changed = Signal()
        self.basal_rate_changed = Signal()
        self.insulin_on_board_changed = Signal()
        self.glucose_level_changed = Signal()
        self.glucose_trend_changed = Signal()
        self.control_iq_action_changed = Signal()
        self.profile_changed = Signal()
        self.bolus_delivery_started = Signal()
        self.bolus_delivery_completed = Signal()
        self.bolus_delivery_cancelled = Signal()
        self.alert_triggered = Signal()
        self.graph_data_changed = Signal()
        self.shutdown_requested = Signal()

        if alert_controller is None:
            alert_controller = AlertController(
                pump_model, glucose_model, insulin_model, self.scheduler
            )
        self.alert_controller = alert_controller
        self.alert_controller.start_monitoring()
        self.alert_controller.critical_alert_active.connect(
            lambda message: self.alert_triggered.emit(message, AlertLevel.CRITICAL)
        )

        timer = self.scheduler.timer
        self._timers: dict[str, Timer] = {
            "battery": timer(_sim_interval(300_000), self.simulate_battery_drain),
            "glucose": timer(_sim_interval(300_000), self.simulate_glucose_reading),
            "iob": timer(_sim_interval(60_000), self.update_insulin_on_board),
            "control_iq": timer(_sim_interval(300_000), self.run_control_iq),
            "reminders": timer(60.0, self.check_reminders),
            "occlusion": timer(60.0, self.check_for_occlusion),
            "basal": timer(_sim_interval(5_000), self.update_basal_consumption),
        }

        self._connect_model_signals()
        self.load_pump_state()
        self.initialize_simulator()

    def __enter__(self) -> PumpController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.save_pump_state()
        self._stop_timers()

    # -- setup -------------------------------------------------------------

    def _connect_model_signals(self) -> None:
        def forward(model: Any, name: str, slot: Callable[..., Any]) -> None:
            source = getattr(model, name, None)
            if isinstance(source, Signal):
                source.connect(slot)

        forward(self.pump_model, "battery_level_changed", self.battery_level_changed.emit)
        forward(
            self.pump_model, "insulin_remaining_changed", self.insulin_remaining_changed.emit
        )
        forward(
            self.pump_model, "insulin_on_board_changed", self.insulin_on_board_changed.emit
        )
        forward(self.pump_model, "alert_added", self.alert_triggered.emit)

        forward(self.glucose_model, "new_reading", self.process_glucose_reading)
        forward(
            self.glucose_model, "trend_direction_changed", self.glucose_trend_changed.emit
        )

        forward(self.insulin_model, "basal_rate_changed", self.basal_rate_changed.emit)
        forward(self.insulin_model, "bolus_started", self.bolus_delivery_started.emit)
        forward(self.insulin_model, "bolus_completed", self.bolus_delivery_completed.emit)
        forward(self.insulin_model, "bolus_cancelled", self.bolus_delivery_cancelled.emit)
        forward(
            self.insulin_model,
            "insulin_on_board_changed",
            self.pump_model.update_insulin_on_board,
        )
        forward(
            self.insulin_model,
            "control_iq_adjustment_changed",
            self.control_iq_action_changed.emit,
        )

        forward(self.profile_model, "active_profile_changed", self._on_active_profile_changed)

    def _on_active_profile_changed(self, name: str) -> None:
        self.profile_changed.emit(name)
        if self._running:
            profile = self.profile_model.get_profile(name)
            self.insulin_model.start_basal(profile.basal_rate, name)

    def initialize_simulator(self) -> None:
        """Fill in two days of glucose and insulin history and start the pump."""
        self.glucose_model.generate_fixed_pattern(48)
        self.generate_historical_insulin_data(48)
        if not self._running:
            self.start_pump()

    def generate_historical_insulin_data(self, hours_back: int = 48) -> None:
        """Record simulated basal segments and boluses for the past ``hours_back`` hours."""
        now = self.scheduler.now()
        start = now - timedelta(hours=hours_back)
        profile = self.profile_model.active_profile
        for segment in basal_segments(start, now, profile.basal_rate, profile.name, self._rng):
            self.insulin_model.add_basal_to_history(segment)
        for bolus in meal_boluses(start, now, self._rng):
            self.insulin_model.add_bolus_to_history(
                bolus.timestamp, bolus.units, bolus.label, bolus.extended, bolus.duration, True
            )
        self.insulin_model.update_iob()

    # -- pump state --------------------------------------------------------

    def start_pump(self) -> None:
        if self._running:
            return
        self._running = True
        self.pump_model.powered_on = True
        profile = self.profile_model.active_profile
        self.insulin_model.start_basal(profile.basal_rate, profile.name)
        self._start_simulation()
        self.pump_started.emit()

    def stop_pump(self) -> None:
        if not self._running:
            return
        self._running = False
        self.pump_model.powered_on = False
        self.insulin_model.stop_basal()
        self._stop_timers()
        self.pump_stopped.emit()

    @property
    def running(self) -> bool:
        return self._running

    # -- battery -----------------------------------------------------------

    @property
    def battery_level(self) -> int:
        return self.pump_model.battery_level

    @property
    def is_charging(self) -> bool:
        return bool(self.pump_model.is_charging)

    def start_charging(self) -> None:
        """Charge one percent every three seconds until the battery is full."""
        self.pump_model.start_charging()
        if self._charge_timer is not None:
            self._charge_timer.stop()

        def step() -> None:
            level = self.pump_model.battery_level
            if level < 100:
                self.pump_model.update_battery_level(level + 1)
            else:
                charge_timer.stop()
                self.pump_model.stop_charging()

        charge_timer = self.scheduler.timer(_CHARGE_STEP_SECONDS, step)
        self._charge_timer = charge_timer
        charge_timer.start()
        self.charging_state_changed.emit(True)

    def stop_charging(self) -> None:
        self.pump_model.stop_charging()
        self.charging_state_changed.emit(False)

    # -- insulin and glucose -----------------------------------------------

    @property
    def insulin_remaining(self) -> float:
        return self.pump_model.insulin_remaining

    @property
    def current_basal_rate(self) -> float:
        return self.insulin_model.current_basal_rate

    @property
    def insulin_on_board(self) -> float:
        return self.pump_model.insulin_on_board

    @property
    def current_glucose(self) -> float:
        return self.glucose_model.current_glucose

    @property
    def last_glucose_reading(self) -> datetime | None:
        return self.glucose_model.last_reading_time

    @property
    def glucose_trend(self) -> TrendDirection:
        return self.glucose_model.trend_direction

    @property
    def control_iq_delivery(self) -> float:
        return self.insulin_model.last_control_iq_adjustment

    # -- profiles ----------------------------------------------------------

    def set_active_profile(self, name: str) -> Any:
        return self.profile_model.set_active_profile(name)

    @property
    def active_profile(self) -> Any:
        return self.profile_model.active_profile

    @property
    def active_profile_name(self) -> str:
        return self.profile_model.active_profile_name

    def all_profiles(self) -> list[Any]:
        return list(self.profile_model.all_profiles)

    def create_profile(self, profile: Any) -> bool:
        return bool(self.profile_model.create_profile(profile))

    def update_profile(self, name: str, profile: Any) -> bool:
        return bool(self.profile_model.update_profile(name, profile))

    def delete_profile(self, name: str) -> bool:
        return bool(self.profile_model.delete_profile(name))

    # -- history -----------------------------------------------------------

    def glucose_history(self, start: datetime, end: datetime) -> list[tuple[datetime, float]]:
        return list(self.glucose_model.readings(start, end))

    def insulin_history(self, start: datetime, end: datetime) -> list[tuple[datetime, float]]:
        """Boluses and hourly basal-rate samples in time order."""
        return merge_insulin_history(
            self.insulin_model.bolus_history(start, end),
            self.insulin_model.basal_history(start, end),
        )

    def _recent_glucose(self, hours: int) -> list[tuple[datetime, float]]:
        now = self.scheduler.now()
        return self.glucose_history(now - timedelta(hours=hours), now)

    # -- bolus -------------------------------------------------------------

    def deliver_bolus(self, units: float, extended: bool = False, duration: int = 0) -> bool:
        """Start a manual bolus; False if the pump is off, short of insulin or refuses."""
        if not self._running:
            return False
        if units > self.pump_model.insulin_remaining:
            self.error_handler.log_error(
                "Not enough insulin remaining for bolus", "InsulinModel", AlertLevel.WARNING
            )
            return False
        success = bool(self.insulin_model.deliver_bolus(units, "Manual", extended, duration))
        if success:
            self.pump_model.reduce_insulin(units)
        return success

    def cancel_bolus(self) -> bool:
        if not self._running:
            return False
        return bool(self.insulin_model.cancel_bolus())

    @property
    def is_bolus_active(self) -> bool:
        return bool(self.insulin_model.is_bolus_active)

    # -- persistence -------------------------------------------------------

    def save_data(self, directory: str | Path) -> bool:
        """Save every model into ``directory``; True only if all of them succeed."""
        folder = Path(directory)
        folder.mkdir(parents=True, exist_ok=True)
        results = [
            self.pump_model.save_state(folder / _PUMP_STATE_FILE),
            self.profile_model.save_profiles(folder / _PROFILES_FILE),
            self.glucose_model.save_readings(folder / _GLUCOSE_FILE),
            self.insulin_model.save_insulin_data(folder / _INSULIN_FILE),
        ]
        return all(results)

    def load_data(self, directory: str | Path) -> bool:
        """Load each model whose file exists in ``directory``."""
        folder = Path(directory)
        loaders = (
            (_PUMP_STATE_FILE, self.pump_model.load_state),
            (_PROFILES_FILE, self.profile_model.load_profiles),
            (_GLUCOSE_FILE, self.glucose_model.load_readings),
            (_INSULIN_FILE, self.insulin_model.load_insulin_data),
        )
        results = [load(folder / name) for name, load in loaders if (folder / name).exists()]
        return all(results)

    def save_pump_state(self) -> bool:
        return self.save_data(self.data_dir)

    def load_pump_state(self) -> None:
        """Load saved state if present; the battery always starts full."""
        if self.data_dir.is_dir():
            self.load_data(self.data_dir)
        self.pump_model.update_battery_level(100)

    # -- test controls -----------------------------------------------------

    def update_battery_level(self, level: int) -> None:
        self.pump_model.update_battery_level(level)

    def update_insulin_remaining(self, units: float) -> None:
        self.pump_model.update_insulin_remaining(units)

    def update_glucose_level(self, value: float) -> None:
        self.glucose_model.add_reading(value)
        self.glucose_level_changed.emit(value)
        self.graph_data_changed.emit(self._recent_glucose(3))

    def update_glucose_trend(self, trend: TrendDirection) -> None:
        self.glucose_model.force_trend(trend)
        self.glucose_trend_changed.emit(trend)
        self.graph_data_changed.emit(self._recent_glucose(3))

    def generate_test_alert(self, message: str, level: AlertLevel) -> None:
        self.error_handler.log_error(message, "TestPanel", level)
        self.pump_model.add_alert(message, level)

    # -- simulation steps --------------------------------------------------

    def simulate_battery_drain(self) -> None:
        if self.pump_model.is_charging:
            return
        level = self.pump_model.battery_level
        if level > 0:
            self.pump_model.update_battery_level(level - 1)
        self._check_low_battery()

    def process_glucose_reading(self, value: float, timestamp: datetime) -> None:
        self.pump_model.add_glucose_reading(timestamp, value)
        self.glucose_level_changed.emit(value)
        self.graph_data_changed.emit(self._recent_glucose(6))
        self._check_glucose_alerts()

    def update_insulin_on_board(self) -> None:
        if self._running:
            self.insulin_model.update_iob()

    def update_basal_consumption(self) -> None:
        """Draw five seconds' worth of basal and bolus insulin from the reservoir."""
        if not self._running:
            return
        basal_rate = self.insulin_model.current_basal_rate
        if self.insulin_model.is_bolus_active:
            bolus = self.insulin_model.current_bolus
            if bolus.extended:
                per_second = bolus.units / (bolus.duration * 60)
            else:
                per_second = _STANDARD_BOLUS_UNITS_PER_SECOND
            self.pump_model.reduce_insulin(per_second * _CONSUMPTION_PERIOD_SECONDS)
        self.pump_model.reduce_insulin(basal_rate / 3600.0 * _CONSUMPTION_PERIOD_SECONDS)

    def simulate_glucose_reading(self) -> None:
        if not self._running:
            return
        now = self.scheduler.now()
        recent = [value for _, value in self.glucose_model.readings(now - timedelta(hours=1), now)]
        self.glucose_model.add_reading(simulated_glucose_value(recent, now, self._rng))

    def run_control_iq(self) -> None:
        """Adjust basal from glucose and trend; suspend on lows and resume on recovery."""
        if not self._running or not self.control_iq_enabled:
            return
        glucose = self.glucose_model.current_glucose
        trend = self.glucose_model.trend_direction
        profile = self.profile_model.active_profile
        adjustment = self.control_iq.calculate_basal_adjustment(
            glucose,
            trend,
            profile.basal_rate,
            profile.target_glucose,
            self.pump_model.insulin_on_board,
        )

        if abs(adjustment) > 0.01:
            new_rate = max(0.0, profile.basal_rate + adjustment)
            self.insulin_model.adjust_basal_rate(new_rate, True)
            self.pump_model.update_control_iq_delivery(adjustment)
            self.control_iq_action_changed.emit(adjustment)
            direction = "increased" if adjustment > 0 else "decreased"
            self.error_handler.log_error(
                f"Control-IQ {direction} basal rate to {new_rate:.2f} u/hr",
                "ControlIQ",
                AlertLevel.INFO,
            )

        if glucose < 3.9:
            self.insulin_model.suspend_basal()
            self.error_handler.log_error(
                "Basal delivery suspended - Low glucose", "ControlIQ", AlertLevel.WARNING
            )
        elif self.insulin_model.current_basal_rate == 0.0 and glucose >= 4.4:
            self.insulin_model.resume_basal()
            self.error_handler.log_error("Basal delivery resumed", "ControlIQ", AlertLevel.INFO)

    def check_reminders(self, reminders: list[Reminder] | None = None) -> None:
        """Warn once for each due reminder and mark it acknowledged."""
        if not self._running:
            return
        now = self.scheduler.now()
        for reminder in self.reminders if reminders is None else reminders:
            if not reminder.acknowledged and reminder.time <= now:
                self.error_handler.log_error(
                    f"Reminder: {reminder.type}", "ReminderSystem", AlertLevel.WARNING
                )
                reminder.acknowledged = True

    def check_for_occlusion(self) -> None:
        """Raise an occlusion one time in a thousand and suspend basal."""
        if self._running and self._rng.randrange(1000) == 0:
            self.error_handler.occlusion_alert()
            self.insulin_model.suspend_basal()

    # -- internals ---------------------------------------------------------

    def _start_simulation(self) -> None:
        for timer in self._timers.values():
            timer.start()
        self._check_low_battery()
        self._check_low_insulin()
        if self.control_iq_enabled:
            self.scheduler.single_shot(_CONTROL_IQ_FIRST_RUN_DELAY, self.run_control_iq)

    def _stop_timers(self) -> None:
        for timer in self._timers.values():
            timer.stop()

    def _check_low_battery(self) -> None:
        level = self.pump_model.battery_level
        self.error_handler.low_battery_alert(level)
        if level <= 1:
            self.scheduler.single_shot(_SHUTDOWN_DELAY, self.shutdown_requested.emit)

    def _check_low_insulin(self) -> None:
        self.error_handler.low_insulin_alert(self.pump_model.insulin_remaining)

    def _check_glucose_alerts(self) -> None:
        glucose = self.glucose_model.current_glucose
        trend = self.glucose_model.trend_direction
        self.error_handler.low_glucose_alert(glucose)
        self.error_handler.high_glucose_alert(glucose)
        if trend is TrendDirection.RISING_QUICKLY:
            self.error_handler.log_error(
                "Glucose rising quickly", "GlucoseModel", AlertLevel.WARNING
            )
        elif trend is TrendDirection.FALLING_QUICKLY:
            self.error_handler.log_error(
                "Glucose falling quickly", "GlucoseModel", AlertLevel.WARNING
            )
        last_reading = self.glucose_model.last_reading_time
        if last_reading is not None:
            gap = int((self.scheduler.now() - last_reading).total_seconds())
            if gap > _CGM_GAP_SECONDS:
                self.error_handler.cgm_disconnected_alert(gap // 60)