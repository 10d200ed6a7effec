"""Match services (pure helpers, no I/O).

Storage lives in :mod:`volleyscore.services.persistence` and is imported
explicitly.
"""

from .substitutions import (
    SubstitutionCheck,
    apply_substitution,
    validate_substitution,
)
from .stats import (
    match_duration,
    points_by_type,
    max_streaks,
    reception_stats,
    player_stats,
    game_flow,
    plot_game_flow,
    substitution_history,
    timeout_history,
    match_result_string,
)

__all__ = [
    "SubstitutionCheck",
    "apply_substitution",
    "validate_substitution",
    "match_duration",
    "points_by_type",
    "max_streaks",
    "reception_stats",
    "player_stats",
    "game_flow",
    "plot_game_flow",
    "substitution_history",
    "timeout_history",
    "match_result_string",
]
