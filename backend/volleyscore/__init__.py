"""Event-sourced volleyball scouting engine."""

__version__ = "0.1.0"
