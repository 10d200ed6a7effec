"""Scoring engine for volleyball scouting."""

from . import completion, libero, rotation, volleyball

__all__ = [
    "completion",
    "libero",
    "rotation",
    "volleyball",
]
