"""Pump.fun sniper bot: acquisition scanner and position lifecycle engine."""

__version__ = "1.0.0"
