"""Controller logic for a simulated insulin pump: signals and a simulated clock,
alerts, bolus calculation, profiles, history generation and the pump controller."""

__version__ = "0.1.0"
__all__ = ["signals", "alerts", "bolus", "profiles", "history", "pump"]