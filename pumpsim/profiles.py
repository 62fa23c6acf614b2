"""Profile management and time-of-day basal adjustments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Any

from .signals import Signal

__all__ = ["TimeAdjustment", "ProfileController"]


@dataclass(frozen=True)
class TimeAdjustment:
    """A basal percentage applied between two times of day; may wrap past midnight."""

    start: time
    end: time
    basal_percentage: float = 100.0

    def covers(self, time_of_day: time) -> bool:
        """Whether ``time_of_day`` falls inside this adjustment's window."""
        if self.start <= time_of_day < self.end:
            return True
        if self.start > self.end:
            return time_of_day >= self.start or time_of_day < self.end
        return False


class ProfileController:
    """Manages personal profiles and applies the active one to basal delivery.

    The profile model provides ``all_profiles``, ``get_profile(name)``,
    ``active_profile_name``, ``active_profile``, ``create_profile(profile)``,
    ``update_profile(name, profile)``, ``delete_profile(name)`` and
    ``set_active_profile(name)``, and may expose ``profile_created``,
    ``profile_updated``, ``profile_deleted`` and ``active_profile_changed``
    signals. Profiles carry ``name``, ``basal_rate``, ``carb_ratio``,
    ``correction_factor`` and ``target_glucose``. The insulin model provides
    ``start_basal(rate, profile_name)``.
    """

    def __init__(self, profile_model: Any, insulin_model: Any = None) -> None:
        self.profile_model = profile_model
        self.insulin_model = insulin_model
        self._adjustments: dict[str, list[TimeAdjustment]] = {}

        self.profile_created = Signal()
        self.profile_updated = Signal()
        self.profile_deleted = Signal()
        self.profile_activated = Signal()
        self.insulin_delivery_changed = Signal()

        for source_name, target in (
            ("profile_created", self.profile_created),
            ("profile_updated", self.profile_updated),
            ("profile_deleted", self.profile_deleted),
        ):
            source = getattr(profile_model, source_name, None)
            if isinstance(source, Signal):
                source.connect(target.emit)
        changed = getattr(profile_model, "active_profile_changed", None)
        if isinstance(changed, Signal):
            changed.connect(self._on_active_profile_changed)

    def all_profiles(self) -> list[Any]:
        return list(self.profile_model.all_profiles)

    def get_profile(self, name: str) -> Any:
        """The profile called ``name``; raise KeyError if there is none."""
        profile = self.profile_model.get_profile(name)
        if profile is None:
            raise KeyError(f"no profile named {name!r}")
        return profile

    @property
    def active_profile_name(self) -> str:
        return self.profile_model.active_profile_name

    @property
    def active_profile(self) -> Any:
        return self.profile_model.active_profile

    def create_profile(self, profile: Any) -> bool:
        return bool(self.profile_model.create_profile(profile))

    def update_profile(self, name: str, profile: Any) -> bool:
        """Update a profile and reapply it if it is the active one."""
        success = bool(self.profile_model.update_profile(name, profile))
        if success and name == self.profile_model.active_profile_name:
            self._apply_profile(profile)
        return success

    def delete_profile(self, name: str) -> bool:
        return bool(self.profile_model.delete_profile(name))

    def activate_profile(self, name: str) -> bool:
        return bool(self.profile_model.set_active_profile(name))

    def basal_rate_at(self, profile_name: str, when: datetime) -> float:
        """The profile's basal rate scaled by the first adjustment covering ``when``."""
        rate = self.get_profile(profile_name).basal_rate
        time_of_day = when.time()
        for adjustment in self._adjustments.get(profile_name, ()):
            if adjustment.covers(time_of_day):
                return rate * (adjustment.basal_percentage / 100.0)
        return rate

    def carb_ratio_at(self, profile_name: str, when: datetime) -> float:
        return self.get_profile(profile_name).carb_ratio

    def correction_factor_at(self, profile_name: str, when: datetime) -> float:
        return self.get_profile(profile_name).correction_factor

    def target_glucose_at(self, profile_name: str, when: datetime) -> float:
        return self.get_profile(profile_name).target_glucose

    def set_time_based_adjustment(
        self,
        profile_name: str,
        start: time,
        end: time,
        basal_percentage: float = 100.0,
    ) -> TimeAdjustment:
        """Add an adjustment window for a profile, reapplying it if active."""
        adjustment = TimeAdjustment(start, end, basal_percentage)
        self._adjustments.setdefault(profile_name, []).append(adjustment)
        if profile_name == self.profile_model.active_profile_name:
            self._apply_profile(self.profile_model.active_profile)
        return adjustment

    def clear_time_based_adjustments(self, profile_name: str) -> None:
        if self._adjustments.pop(profile_name, None) is None:
            return
        if profile_name == self.profile_model.active_profile_name:
            self._apply_profile(self.profile_model.active_profile)

    def adjustments(self, profile_name: str) -> list[TimeAdjustment]:
        return list(self._adjustments.get(profile_name, ()))

    def _on_active_profile_changed(self, name: str) -> None:
        profile = self.profile_model.get_profile(name)
        if profile is not None:
            self._apply_profile(profile)
        self.profile_activated.emit(name)

    def _apply_profile(self, profile: Any) -> bool:
        if self.insulin_model is None:
            return False
        rate = self.basal_rate_at(profile.name, datetime.now())
        self.insulin_model.start_basal(rate, profile.name)
        self.insulin_delivery_changed.emit()
        return True