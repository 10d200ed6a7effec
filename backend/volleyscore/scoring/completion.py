"""Set and match completion.

After every point the caller asks whether the active set is over; if so,
the synthetic ``SET_END`` (and, unless the match is over, ``SET_START``)
events are appended to the log like any other event, so undo removes them
the same way.
"""

from datetime import datetime
from typing import Dict, List, Optional

from ..schemas import DerivedMatchState, SetEnded, SetStarted, build_event
from ..time_utils import utc_now
from .volleyball import deciding_set, resolve_config


def set_target(set_number: int, config: Optional[Dict] = None) -> int:
    """Points needed to win ``set_number`` (before the two-point margin)."""
    cfg = resolve_config(config)
    if set_number == deciding_set(cfg):
        return cfg["tiebreakPointsTo"]
    return cfg["pointsTo"]


def set_winner(
    set_number: int, home: int, away: int, config: Optional[Dict] = None
) -> Optional[str]:
    """Return ``"home"``/``"away"`` if the score ends the set, else ``None``."""
    cfg = resolve_config(config)
    target = set_target(set_number, cfg)
    if home >= target and home - away >= cfg["winBy"]:
        return "home"
    if away >= target and away - home >= cfg["winBy"]:
        return "away"
    return None


def completion_events(
    state: DerivedMatchState,
    match_id: str,
    now: Optional[datetime] = None,
    config: Optional[Dict] = None,
) -> List:
    """Synthetic events closing the active set, or ``[]`` if it goes on."""
    if state.is_set_finished or state.is_match_finished:
        return []

    cfg = resolve_config(config)
    winner = set_winner(state.current_set, state.home_score, state.away_score, cfg)
    if winner is None:
        return []

    now = now or utc_now()
    events: List = [
        build_event(
            "SET_END",
            {
                "setNumber": state.current_set,
                "winner": winner,
                "score": {"home": state.home_score, "away": state.away_score},
            },
            match_id=match_id,
            timestamp=now,
        )
    ]

    sets_won = state.sets_won_home if winner == "home" else state.sets_won_away
    if sets_won + 1 < cfg["setsToWin"]:
        events.append(
            build_event(
                "SET_START",
                {"setNumber": state.current_set + 1},
                match_id=match_id,
                timestamp=now,
            )
        )
    return events


def is_set_ended(event) -> bool:
    return isinstance(event, SetEnded)


def is_set_started(event) -> bool:
    return isinstance(event, SetStarted)
