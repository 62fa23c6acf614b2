from dataclasses import dataclass
from datetime import datetime, time

import pytest

from pumpsim.profiles import ProfileController, TimeAdjustment
from pumpsim.signals import Signal


@dataclass
class FakeProfile:
    name: str
    basal_rate: float = 1.0
    carb_ratio: float = 10.0
    correction_factor: float = 2.0
    target_glucose: float = 6.0


class FakeProfileModel:
    def __init__(self, *profiles):
        self.profiles = {p.name: p for p in profiles}
        self.active_profile_name = profiles[0].name
        self.profile_created = Signal()
        self.profile_updated = Signal()
        self.profile_deleted = Signal()
        self.active_profile_changed = Signal()

    @property
    def all_profiles(self):
        return list(self.profiles.values())

    @property
    def active_profile(self):
        return self.profiles[self.active_profile_name]

    def get_profile(self, name):
        return self.profiles.get(name)

    def create_profile(self, profile):
        if profile.name in self.profiles:
            return False
        self.profiles[profile.name] = profile
        self.profile_created.emit(profile.name)
        return True

    def update_profile(self, name, profile):
        if name not in self.profiles:
            return False
        self.profiles[name] = profile
        self.profile_updated.emit(name)
        return True

    def delete_profile(self, name):
        if name not in self.profiles or name == self.active_profile_name:
            return False
        del self.profiles[name]
        self.profile_deleted.emit(name)
        return True

    def set_active_profile(self, name):
        if name not in self.profiles:
            return False
        self.active_profile_name = name
        self.active_profile_changed.emit(name)
        return True


class FakeInsulinModel:
    def __init__(self):
        self.started = []

    def start_basal(self, rate, profile_name):
        self.started.append((rate, profile_name))


@pytest.fixture
def setup():
    model = FakeProfileModel(FakeProfile("Default", basal_rate=2.0), FakeProfile("Night", basal_rate=0.8))
    insulin = FakeInsulinModel()
    return ProfileController(model, insulin), model, insulin


def test_covers_daytime_window():
    adj = TimeAdjustment(time(8), time(12), 50)
    assert adj.covers(time(8))
    assert adj.covers(time(11, 59))
    assert not adj.covers(time(12))
    assert not adj.covers(time(7, 59))


def test_covers_overnight_window():
    adj = TimeAdjustment(time(22), time(6), 80)
    assert adj.covers(time(23, 30))
    assert adj.covers(time(2))
    assert not adj.covers(time(6))
    assert not adj.covers(time(12))


def test_basal_rate_without_adjustment(setup):
    controller, _, _ = setup
    assert controller.basal_rate_at("Default", datetime(2024, 1, 1, 9)) == 2.0


def test_basal_rate_with_adjustment(setup):
    controller, _, _ = setup
    controller.set_time_based_adjustment("Default", time(8), time(12), 50)
    assert controller.basal_rate_at("Default", datetime(2024, 1, 1, 9)) == pytest.approx(1.0)
    assert controller.basal_rate_at("Default", datetime(2024, 1, 1, 13)) == 2.0


def test_first_matching_adjustment_wins(setup):
    controller, _, _ = setup
    controller.set_time_based_adjustment("Night", time(0), time(12), 50)
    controller.set_time_based_adjustment("Night", time(6), time(12), 200)
    assert controller.basal_rate_at("Night", datetime(2024, 1, 1, 7)) == pytest.approx(0.4)


def test_clear_adjustments(setup):
    controller, _, _ = setup
    controller.set_time_based_adjustment("Night", time(8), time(12), 50)
    controller.clear_time_based_adjustments("Night")
    assert controller.adjustments("Night") == []
    assert controller.basal_rate_at("Night", datetime(2024, 1, 1, 9)) == 0.8


def test_adjustment_on_active_profile_reapplies(setup):
    controller, _, insulin = setup
    controller.set_time_based_adjustment("Default", time(8), time(12), 50)
    assert len(insulin.started) == 1
    assert insulin.started[0][1] == "Default"


def test_adjustment_on_inactive_profile_does_not_reapply(setup):
    controller, _, insulin = setup
    controller.set_time_based_adjustment("Night", time(8), time(12), 50)
    assert insulin.started == []


def test_activation_starts_basal_and_emits(setup):
    controller, model, insulin = setup
    activated = []
    controller.profile_activated.connect(activated.append)
    assert controller.activate_profile("Night")
    assert activated == ["Night"]
    assert insulin.started == [(0.8, "Night")]
    assert controller.active_profile_name == "Night"
    assert controller.active_profile is model.profiles["Night"]


def test_activate_unknown_profile_fails(setup):
    controller, _, insulin = setup
    assert controller.activate_profile("Missing") is False
    assert insulin.started == []


def test_update_active_profile_reapplies(setup):
    controller, _, insulin = setup
    assert controller.update_profile("Default", FakeProfile("Default", basal_rate=1.5))
    assert insulin.started == [(1.5, "Default")]


def test_update_inactive_profile_does_not_reapply(setup):
    controller, _, insulin = setup
    assert controller.update_profile("Night", FakeProfile("Night", basal_rate=0.5))
    assert insulin.started == []
    assert controller.get_profile("Night").basal_rate == 0.5


def test_create_and_delete_emit(setup):
    controller, _, _ = setup
    created, deleted = [], []
    controller.profile_created.connect(created.append)
    controller.profile_deleted.connect(deleted.append)
    assert controller.create_profile(FakeProfile("Sport"))
    assert not controller.create_profile(FakeProfile("Sport"))
    assert controller.delete_profile("Sport")
    assert created == ["Sport"]
    assert deleted == ["Sport"]
    assert [p.name for p in controller.all_profiles()] == ["Default", "Night"]


def test_other_settings_read_from_profile(setup):
    controller, _, _ = setup
    when = datetime(2024, 1, 1, 9)
    assert controller.carb_ratio_at("Default", when) == 10.0
    assert controller.correction_factor_at("Default", when) == 2.0
    assert controller.target_glucose_at("Default", when) == 6.0


def test_unknown_profile_raises(setup):
    controller, _, _ = setup
    with pytest.raises(KeyError):
        controller.get_profile("Missing")
    with pytest.raises(KeyError):
        controller.basal_rate_at("Missing", datetime(2024, 1, 1))


def test_no_insulin_model_does_not_fail_activation():
    model = FakeProfileModel(FakeProfile("A"), FakeProfile("B"))
    controller = ProfileController(model, None)
    activated = []
    controller.profile_activated.connect(activated.append)
    assert controller.activate_profile("B")
    assert activated == ["B"]