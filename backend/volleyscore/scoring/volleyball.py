"""Volleyball scoring engine.

Folds the match event log into the current match state. Rally scoring to
25 points (15 in the deciding set) with a two-point margin, best of five
sets. Only our own lineup is tracked: it rotates when we win back the serve.
The fold is pure: ``init_state`` always builds fresh state, so replaying the
same events yields the same result and undo is just "fold one event less".
"""

from collections import Counter
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..schemas import (
    CourtSlot,
    DerivedMatchState,
    ScorePair,
    SetScoreOut,
    SetSubstitutionRecord,
    SetSummary,
    parse_events,
)
from ..services.substitutions import apply_substitution, validate_substitution
from .libero import effective_on_court
from .rotation import rotate

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, int] = {
    "pointsTo": 25,
    "tiebreakPointsTo": 15,
    "winBy": 2,
    "setsToWin": 3,
    "maxSubstitutions": 6,
    "maxPairUses": 2,
    "maxTimeouts": 2,
}


def resolve_config(config: Optional[Dict] = None) -> Dict[str, int]:
    cfg = dict(DEFAULT_CONFIG)
    for key, value in (config or {}).items():
        if key in DEFAULT_CONFIG and value is not None:
            cfg[key] = value
    return cfg


def _other(side: str) -> str:
    return {"home": "away", "away": "home", "our": "opponent", "opponent": "our"}[side]


def init_state(config: Optional[Dict] = None, our_side: str = "home") -> Dict[str, Any]:
    """Initialise the scoreboard state.

    Set 1 is active from the start; later sets begin with a ``SET_START``
    event. ``our_side`` maps the logical "our"/"opponent" sides to
    home/away.
    """
    if our_side not in ("home", "away"):
        raise ValueError("our_side must be 'home' or 'away'")
    return {
        "config": resolve_config(config),
        "match_id": None,
        "our_side": our_side,
        "current_set": 1,
        "score": {"home": 0, "away": 0},
        "sets_won": {"home": 0, "away": 0},
        "serving_side": "our",
        "first_server": {},
        "lineup": [],
        "libero_id": None,
        "players": {},
        "has_lineup": False,
        "set_scores": [],
        "set_finished": False,
        "match_finished": False,
        "match_winner": None,
        "substitutions": SetSubstitutionRecord(set_number=1),
        "timeouts": {"home": 0, "away": 0},
        "point_types": {"our": Counter(), "opponent": Counter()},
        "run": {"team": None, "length": 0},
        "longest_run": {"home": 0, "away": 0},
        "score_history": [],
        "summaries": {},
    }


def team_for(state: Dict, logical_side: str) -> str:
    """Map "our"/"opponent" to "home"/"away"."""
    return state["our_side"] if logical_side == "our" else _other(state["our_side"])


def deciding_set(config: Dict) -> int:
    return config["setsToWin"] * 2 - 1


def initial_server(state: Dict, set_number: int) -> str:
    """Logical side serving first in ``set_number``.

    Sets 1 and 5 use the coin-toss choice. Sets 2-4 alternate from set 1:
    set 3 repeats set 1's server, sets 2 and 4 use the other side. Until the
    deciding set's toss is recorded it falls back to set 1's server.
    """
    choices = state["first_server"]
    first = choices.get(1, "our")
    if set_number == deciding_set(state["config"]):
        return choices.get(set_number, first)
    if set_number % 2 == 1:
        return first
    return _other(first)


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------
def _scoring_locked(state: Dict) -> bool:
    return state["set_finished"] or state["match_finished"]


def _score_point(state: Dict, scorer: str, reason: Optional[str]) -> None:
    if _scoring_locked(state):
        logger.debug("Ignoring point for %s after set %d ended", scorer, state["current_set"])
        return

    team = team_for(state, scorer)
    state["score"][team] += 1

    if state["serving_side"] != scorer:
        # Side-out: we only track our own rotation.
        if scorer == "our" and len(state["lineup"]) == 6:
            state["lineup"] = rotate(state["lineup"])
        state["serving_side"] = scorer

    state["point_types"][scorer][reason or "unspecified"] += 1

    run = state["run"]
    if run["team"] == team:
        run["length"] += 1
    else:
        run["team"], run["length"] = team, 1
    state["longest_run"][team] = max(state["longest_run"][team], run["length"])
    state["score_history"].append(ScorePair(**state["score"]))


def _apply_point_us(event, state: Dict) -> None:
    _score_point(state, "our", event.payload.reason)


def _apply_point_opponent(event, state: Dict) -> None:
    _score_point(state, "opponent", event.payload.reason)


def _apply_reception(event, state: Dict) -> None:
    # A zero rating is an ace against us; 1-4 only grade the reception.
    if event.payload.reception.value == 0:
        _score_point(state, "opponent", "reception_error")


def _apply_service_choice(event, state: Dict) -> None:
    payload = event.payload
    state["first_server"][payload.set_number] = payload.initial_serving_side
    if payload.set_number == state["current_set"]:
        state["serving_side"] = initial_server(state, payload.set_number)


def _apply_lineup(event, state: Dict) -> None:
    payload = event.payload
    slots = sorted(payload.lineup, key=lambda slot: slot.position)
    state["lineup"] = [slot.player for slot in slots]
    for player in state["lineup"]:
        state["players"][player.id] = player
    if payload.libero is not None:
        state["players"][payload.libero.id] = payload.libero
    state["libero_id"] = payload.libero_id
    state["has_lineup"] = True


def _apply_set_start(event, state: Dict) -> None:
    if state["match_finished"]:
        logger.warning("Ignoring SET_START %s after the match ended", event.id)
        return
    set_number = event.payload.set_number
    state["current_set"] = set_number
    state["score"] = {"home": 0, "away": 0}
    state["set_finished"] = False
    state["lineup"] = []
    state["libero_id"] = None
    state["has_lineup"] = False
    state["substitutions"] = SetSubstitutionRecord(set_number=set_number)
    state["timeouts"] = {"home": 0, "away": 0}
    state["point_types"] = {"our": Counter(), "opponent": Counter()}
    state["run"] = {"team": None, "length": 0}
    state["score_history"] = []
    state["longest_run"] = {"home": 0, "away": 0}
    state["serving_side"] = initial_server(state, set_number)


def _apply_set_end(event, state: Dict) -> None:
    if _scoring_locked(state):
        logger.warning("Ignoring duplicate SET_END %s", event.id)
        return
    payload = event.payload
    winner = payload.winner
    cfg = state["config"]

    state["sets_won"][winner] += 1
    state["set_finished"] = True
    state["set_scores"].append(
        SetScoreOut(
            set_number=payload.set_number,
            home=payload.score.home,
            away=payload.score.away,
            winner=winner,
        )
    )
    state["summaries"][payload.set_number] = SetSummary(
        set_number=payload.set_number,
        home=payload.score.home,
        away=payload.score.away,
        winner=winner,
        points_by_type={
            side: dict(counts) for side, counts in state["point_types"].items()
        },
        score_history=tuple(state["score_history"]),
        longest_run=dict(state["longest_run"]),
    )

    if state["sets_won"][winner] >= cfg["setsToWin"]:
        state["match_finished"] = True
        state["match_winner"] = winner


def _apply_substitution(event, state: Dict) -> None:
    sub = event.payload.substitution
    state["players"][sub.player_in_id] = sub.player_in

    if sub.is_libero_swap:
        state["libero_id"] = sub.player_in_id
        return

    cfg = state["config"]
    on_court_ids = [player.id for player in state["lineup"]]
    check = validate_substitution(
        state["substitutions"],
        sub.player_out_id,
        sub.player_in_id,
        on_court_ids,
        max_substitutions=cfg["maxSubstitutions"],
        max_pair_uses=cfg["maxPairUses"],
    )
    if not check.valid:
        logger.warning("Skipping illegal substitution %s: %s", event.id, check.reason)
        return

    index = on_court_ids.index(sub.player_out_id)
    lineup = list(state["lineup"])
    lineup[index] = sub.player_in
    state["lineup"] = lineup
    state["substitutions"] = apply_substitution(
        state["substitutions"], sub.player_out_id, sub.player_in_id
    )


def _apply_timeout(event, state: Dict) -> None:
    team = event.payload.team
    state["timeouts"][team] = min(
        state["timeouts"][team] + 1, state["config"]["maxTimeouts"]
    )


def _record_only(event, state: Dict) -> None:
    return None


_HANDLERS = {
    "POINT_US": _apply_point_us,
    "POINT_OPPONENT": _apply_point_opponent,
    "RECEPTION_EVAL": _apply_reception,
    "SUBSTITUTION": _apply_substitution,
    "SET_LINEUP": _apply_lineup,
    "SET_SERVICE_CHOICE": _apply_service_choice,
    "SET_START": _apply_set_start,
    "SET_END": _apply_set_end,
    "TIMEOUT": _apply_timeout,
    "FREEBALL_SENT": _record_only,
    "FREEBALL_RECEIVED": _record_only,
}


def apply(event, state: Dict) -> Dict:
    """Apply one event to ``state`` and return it.

    ``event`` may be a typed event or its wire dict.
    """
    if isinstance(event, dict):
        event = parse_events([event])[0]
    handler = _HANDLERS.get(getattr(event, "type", None))
    if handler is None:
        raise ValueError("invalid volleyball event")
    if state["match_id"] is None:
        state["match_id"] = event.match_id
    handler(event, state)
    return state


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
def pending_set_summary(
    state: Dict, dismissed: Iterable[int] = ()
) -> Optional[SetSummary]:
    """Latest finished set whose summary the scorer has not acknowledged."""
    dismissed = set(dismissed)
    pending = [n for n in state["summaries"] if n not in dismissed]
    if not pending:
        return None
    return state["summaries"][max(pending)]


def summary(state: Dict, dismissed: Iterable[int] = ()) -> DerivedMatchState:
    """Build the immutable ``DerivedMatchState`` snapshot for ``state``."""
    on_court = [
        CourtSlot(position=index + 1, player=player)
        for index, player in enumerate(state["lineup"])
    ]
    is_serving = state["serving_side"] == "our"
    set_summary = pending_set_summary(state, dismissed)

    return DerivedMatchState(
        match_id=state["match_id"],
        current_set=state["current_set"],
        home_score=state["score"]["home"],
        away_score=state["score"]["away"],
        sets_won_home=state["sets_won"]["home"],
        sets_won_away=state["sets_won"]["away"],
        our_side=state["our_side"],
        opponent_side=_other(state["our_side"]),
        serving_side=state["serving_side"],
        serving_team=team_for(state, state["serving_side"]),
        on_court=on_court,
        effective_on_court=effective_on_court(
            on_court, state["libero_id"], is_serving, state["players"].values()
        ),
        current_libero_id=state["libero_id"],
        has_lineup_for_current_set=state["has_lineup"],
        sets_scores=list(state["set_scores"]),
        is_set_finished=state["set_finished"],
        is_match_finished=state["match_finished"],
        match_winner=state["match_winner"],
        set_summary=set_summary,
        set_summary_open=set_summary is not None,
        current_set_substitutions=state["substitutions"],
        timeouts_home=state["timeouts"]["home"],
        timeouts_away=state["timeouts"]["away"],
    )


def dedupe_events(events: Iterable) -> List:
    """Drop repeated event ids, keeping the first occurrence.

    Entries may be typed events or wire dicts; callers report the drop.
    """
    seen = set()
    unique = []
    for event in events:
        event_id = event["id"] if isinstance(event, dict) else event.id
        if event_id in seen:
            continue
        seen.add(event_id)
        unique.append(event)
    return unique


def fold(events: Iterable, our_side: str = "home", config: Optional[Dict] = None) -> Dict:
    """Fold ``events`` (deduplicated by id) into fresh engine state.

    ``events`` may mix typed events and wire dicts as persisted.
    """
    events = [parse_events([e])[0] if isinstance(e, dict) else e for e in events]
    unique = dedupe_events(events)
    dropped = len(events) - len(unique)
    if dropped:
        logger.warning("Dropped %d duplicate event(s) while replaying", dropped)
    state = init_state(config, our_side)
    for event in unique:
        state = apply(event, state)
    return state


def derive_state(
    events: Iterable,
    our_side: str = "home",
    dismissed_set_summaries: Iterable[int] = (),
    config: Optional[Dict] = None,
) -> DerivedMatchState:
    """Compute the current ``DerivedMatchState`` from the full event log."""
    return summary(fold(events, our_side, config), dismissed_set_summaries)
