from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytest

from pumpsim.bolus import (
    BolusController,
    MaxBolusExceededError,
    calculate_carb_bolus,
    calculate_correction_bolus,
)
from pumpsim.signals import Signal


@dataclass
class FakeProfile:
    carb_ratio: float = 10.0
    target_glucose: float = 6.0
    correction_factor: float = 2.0


@dataclass
class FakeProfileModel:
    active_profile: FakeProfile = field(default_factory=FakeProfile)


@dataclass
class FakeBolus:
    timestamp: datetime
    units: float


class FakeInsulin:
    def __init__(self, iob=0.0, active=False, history=()):
        self.insulin_on_board = iob
        self.is_bolus_active = active
        self.history = list(history)
        self.delivered = []
        self.queries = []
        self.cancelled = False
        self.bolus_started = Signal()
        self.bolus_completed = Signal()
        self.bolus_cancelled = Signal()

    def deliver_bolus(self, units, source, extended, duration):
        self.delivered.append((units, source, extended, duration))
        return True

    def cancel_bolus(self):
        self.cancelled = True
        return True

    def bolus_history(self, start, end):
        self.queries.append((start, end))
        return list(self.history)


def make_controller(insulin=None, profile=None):
    return BolusController(
        insulin if insulin is not None else FakeInsulin(),
        object(),
        FakeProfileModel(profile if profile is not None else FakeProfile()),
    )


@pytest.mark.parametrize("carbs, ratio", [(60.0, 10.0), (45.0, 12.0), (0.0, 8.0)])
def test_carb_bolus_covers_carbs(carbs, ratio):
    assert calculate_carb_bolus(carbs, ratio) * ratio == pytest.approx(carbs)


@pytest.mark.parametrize("ratio", [0.0, -5.0])
def test_carb_bolus_with_invalid_ratio_is_zero(ratio):
    assert calculate_carb_bolus(50.0, ratio) == 0.0


def test_correction_bolus_returns_to_target():
    units = calculate_correction_bolus(12.0, 6.0, 2.0)
    assert 12.0 - units * 2.0 == pytest.approx(6.0)


@pytest.mark.parametrize(
    "glucose, target, factor", [(5.0, 6.0, 2.0), (6.0, 6.0, 2.0), (12.0, 6.0, 0.0)]
)
def test_correction_bolus_zero_cases(glucose, target, factor):
    assert calculate_correction_bolus(glucose, target, factor) == 0.0


def test_suggested_bolus_without_iob_sums_components():
    controller = make_controller()
    calculated = []
    controller.bolus_calculated.connect(calculated.append)
    result = controller.calculate_suggested_bolus(10.0, 30.0)
    expected = calculate_carb_bolus(30.0, 10.0) + calculate_correction_bolus(10.0, 6.0, 2.0)
    assert result == pytest.approx(expected)
    assert calculated == [result]


def test_iob_larger_than_correction_leaves_carb_bolus():
    controller = make_controller(FakeInsulin(iob=5.0))
    result = controller.calculate_suggested_bolus(10.0, 30.0)
    assert result == pytest.approx(calculate_carb_bolus(30.0, 10.0))


def test_iob_reduces_correction_only():
    controller = make_controller(FakeInsulin(iob=0.5))
    result = controller.calculate_suggested_bolus(10.0, 30.0)
    expected = (
        calculate_carb_bolus(30.0, 10.0) + calculate_correction_bolus(10.0, 6.0, 2.0) - 0.5
    )
    assert result == pytest.approx(expected)


def test_iob_does_not_reduce_pure_carb_bolus():
    controller = make_controller(FakeInsulin(iob=3.0))
    result = controller.calculate_suggested_bolus(5.0, 40.0)
    assert result == pytest.approx(calculate_carb_bolus(40.0, 10.0))


def test_suggested_bolus_capped_at_max():
    controller = make_controller()
    assert controller.calculate_suggested_bolus(6.0, 1000.0) == 25.0


def test_deliver_bolus_passes_manual_request():
    insulin = FakeInsulin()
    controller = make_controller(insulin)
    assert controller.deliver_bolus(3.0, True, 60) is True
    assert insulin.delivered == [(3.0, "Manual", True, 60)]


def test_deliver_over_max_raises_and_signals():
    insulin = FakeInsulin()
    controller = make_controller(insulin)
    exceeded = []
    controller.max_bolus_exceeded.connect(lambda r, m: exceeded.append((r, m)))
    with pytest.raises(MaxBolusExceededError) as info:
        controller.deliver_bolus(30.0)
    assert (info.value.requested, info.value.maximum) == (30.0, 25.0)
    assert exceeded == [(30.0, 25.0)]
    assert insulin.delivered == []


def test_deliver_while_in_progress_is_refused():
    insulin = FakeInsulin(active=True)
    controller = make_controller(insulin)
    assert controller.is_delivery_in_progress() is True
    assert controller.deliver_bolus(2.0) is False
    assert insulin.delivered == []


def test_cancel_delivery_delegates():
    insulin = FakeInsulin(active=True)
    controller = make_controller(insulin)
    assert controller.cancel_delivery() is True
    assert insulin.cancelled is True


@pytest.mark.parametrize(
    "units, glucose, iob, safe",
    [
        (30.0, 6.0, 0.0, False),
        (6.0, 6.0, 11.0, False),
        (5.0, 6.0, 11.0, True),
        (1.0, 3.5, 0.0, False),
        (0.0, 3.5, 0.0, True),
        (3.0, 6.0, 0.0, True),
    ],
)
def test_is_bolus_safe(units, glucose, iob, safe):
    assert make_controller().is_bolus_safe(units, glucose, iob) is safe


def test_max_bolus_setter():
    controller = make_controller()
    assert controller.max_bolus == 25.0
    controller.max_bolus = 50.0
    assert controller.max_bolus == 50.0
    assert controller.is_bolus_safe(40.0, 6.0, 0.0) is True


@pytest.mark.parametrize("value", [0.0, -1.0, 50.5])
def test_invalid_max_bolus_rejected(value):
    controller = make_controller()
    with pytest.raises(ValueError):
        controller.max_bolus = value
    assert controller.max_bolus == 25.0


def test_recent_boluses_newest_first_and_limited():
    base = datetime(2024, 5, 1, 8, 0)
    oldest = FakeBolus(base, 1.0)
    middle = FakeBolus(base + timedelta(hours=4), 2.0)
    newest = FakeBolus(base + timedelta(hours=9), 3.0)
    insulin = FakeInsulin(history=[middle, oldest, newest])
    controller = make_controller(insulin)
    assert controller.recent_boluses(2) == [newest, middle]
    assert controller.recent_boluses(0) == [newest, middle, oldest]
    start, end = insulin.queries[0]
    assert end - start == timedelta(days=7)


def test_insulin_model_signals_are_forwarded():
    insulin = FakeInsulin()
    controller = make_controller(insulin)
    events = []
    controller.bolus_delivery_started.connect(lambda u: events.append(("start", u)))
    controller.bolus_delivery_cancelled.connect(lambda d, r: events.append(("cancel", d, r)))
    insulin.bolus_started.emit(4.0)
    insulin.bolus_cancelled.emit(1.5, 4.0)
    assert events == [("start", 4.0), ("cancel", 1.5, 4.0)]