# pumpsim

Controller logic for a simulated insulin pump, for teaching and
experimentation. It is not meant for any real medical use.

## Modules

- `pumpsim.signals` – `Signal` (connect, disconnect and emit callbacks in
  connection order), and a deterministic `Scheduler` with a simulated clock.
  `Scheduler.timer(interval, callback)` makes a stopped repeating `Timer`,
  `Scheduler.single_shot(delay, callback)` runs a callback once, and
  `Scheduler.advance(seconds)` moves the clock forward and runs everything
  that falls due, in order. `Scheduler.now()` gives the simulated time.
- `pumpsim.alerts` – `AlertController` checks glucose, reservoir insulin
  and battery levels against configurable thresholds, watches for fast
  glucose trends, CGM data gaps and overlong boluses, and keeps a list of
  active `Alert`s (one per message) at `AlertLevel.INFO`, `WARNING` or
  `CRITICAL`. `start_monitoring()` runs all checks once a simulated minute.
- `pumpsim.bolus` – `calculate_carb_bolus`, `calculate_correction_bolus` and
  `BolusController`, which suggests a bolus from carbs, glucose and insulin on
  board (insulin on board only offsets the correction part), caps it at
  `max_bolus` (25 units by default, settable up to 50), checks safety with
  `is_bolus_safe`, and raises `MaxBolusExceededError` when a delivery request
  is larger than the maximum.
- `pumpsim.profiles` – `ProfileController` for creating, updating,
  deleting and activating profiles, with time-of-day basal adjustments
  (`TimeAdjustment`, including windows that cross midnight).
- `pumpsim.history` – generators for four-hour basal segments and daily
  meal and correction boluses, `merge_insulin_history`, and the time-of-day
  glucose values used for simulated readings.
- `pumpsim.pump` – `PumpController`, which ties the pieces together:
  battery drain and charging, reservoir consumption, simulated CGM readings,
  Control-IQ basal adjustments with low-glucose suspend and resume,
  occlusion checks, `Reminder`s, and saving and loading model state to a
  directory. Creating one loads any saved state, sets the battery to full,
  fills in 48 hours of history and starts the pump. Used as a context
  manager, it saves its state and stops its timers on exit.

## Install

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from pumpsim.bolus import calculate_carb_bolus, calculate_correction_bolus

calculate_carb_bolus(60, 10)             # 6.0 units for 60 g at 1:10
calculate_correction_bolus(10.0, 6.0, 2) # 2.0 units to bring 10.0 down to 6.0
```

The controllers read their models through plain attributes, so any object
with the right members will do:

```python
from types import SimpleNamespace
from pumpsim.alerts import AlertController, AlertLevel

pump = SimpleNamespace(insulin_remaining=8.0, battery_level=50)
alerts = AlertController(pump_model=pump)
alerts.check_insulin_alerts()
alerts.active_alerts[0].message  # "INSULIN CRITICALLY LOW: 8.0 units remaining"
alerts.has_critical_alerts       # True
```

Timers never run on their own: everything time-driven is scheduled on a
`Scheduler`, so a test or a driver loop decides how fast simulated time
passes.

```python
from pumpsim.signals import Scheduler

scheduler = Scheduler()
ticks = []
timer = scheduler.timer(60, lambda: ticks.append(scheduler.now()))
timer.start()
scheduler.advance(180)   # fires three times
```

## What this package does not do

- It has no pump, glucose, insulin or profile models, no Control-IQ
  algorithm and no error handler. `AlertController`, `BolusController`,
  `ProfileController` and `PumpController` take these as arguments and use
  the members listed in their docstrings; you supply them.
- It does not define the file format of saved state: `PumpController.save_data`
  and `load_data` only hand file paths to the models' own save and load
  methods.
- It has no user interface and no command-line program.