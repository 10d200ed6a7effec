from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..schemas import DerivedMatchState
from ..time_utils import format_duration

try:
    import matplotlib.pyplot as plt  # type: ignore
except Exception:  # pragma: no cover - matplotlib is optional
    plt = None

POINT_CATEGORIES = {
    "attack_point": "attack",
    "block_point": "block",
    "serve_point": "serve",
}
RECEPTION_POSITIVE = 3


def point_team(event, our_side: str) -> Optional[str]:
    """Return ``"home"``/``"away"`` for the side an event scores for, else ``None``."""
    other = "away" if our_side == "home" else "home"
    if event.type == "POINT_US":
        return our_side
    if event.type == "POINT_OPPONENT":
        return other
    if event.type == "RECEPTION_EVAL" and event.payload.reception.value == 0:
        return other
    return None


def point_reason(event) -> Optional[str]:
    if event.type == "RECEPTION_EVAL":
        return "reception_error"
    return getattr(event.payload, "reason", None)


def running_scores(
    events: Iterable, our_side: str
) -> Iterator[Tuple[object, int, int, int, Optional[str]]]:
    """Yield ``(event, set_number, home, away, scorer)`` after each event.

    Scores reset at every ``SET_START``; points after a ``SET_END`` and before
    the next set are not counted.
    """
    set_number, home, away = 1, 0, 0
    closed = False
    for event in events:
        scorer = None
        if event.type == "SET_START":
            set_number, home, away = event.payload.set_number, 0, 0
            closed = False
        elif event.type == "SET_END":
            closed = True
        elif not closed:
            scorer = point_team(event, our_side)
            if scorer == "home":
                home += 1
            elif scorer == "away":
                away += 1
        yield event, set_number, home, away, scorer


def match_duration(events: Sequence) -> str:
    """Elapsed time between the first and the last event."""
    if len(events) < 2:
        return "0m"
    return format_duration(events[0].timestamp, events[-1].timestamp)


def points_by_type(events: Iterable, our_side: str) -> Dict[str, Dict[str, int]]:
    """Count points per side by how they were won.

    Attack, block and serve points are their own categories; every error,
    fault or unclassified point counts as ``opponentError``.
    """
    stats = {
        side: {"attack": 0, "block": 0, "serve": 0, "opponentError": 0}
        for side in ("home", "away")
    }
    for event, _set, _home, _away, scorer in running_scores(events, our_side):
        if scorer is None:
            continue
        category = POINT_CATEGORIES.get(point_reason(event) or "", "opponentError")
        stats[scorer][category] += 1
    return stats


def max_streaks(events: Iterable, our_side: str) -> Dict[str, int]:
    """Longest run of consecutive points for each side over the match."""
    longest = {"home": 0, "away": 0}
    current_team, length = None, 0
    for _event, _set, _home, _away, scorer in running_scores(events, our_side):
        if scorer is None:
            continue
        if scorer == current_team:
            length += 1
        else:
            current_team, length = scorer, 1
        longest[scorer] = max(longest[scorer], length)
    return longest


def reception_stats(
    events: Iterable, player_names: Optional[Mapping[str, str]] = None
) -> Dict:
    """Distribution of reception grades, overall and per player."""
    player_names = player_names or {}
    by_rating = {rating: 0 for rating in range(5)}
    per_player: Dict[str, List[int]] = {}
    for event in events:
        if event.type != "RECEPTION_EVAL":
            continue
        rating = event.payload.reception
        by_rating[rating.value] += 1
        per_player.setdefault(rating.player_id, []).append(rating.value)

    total = sum(by_rating.values())
    positive = sum(n for rating, n in by_rating.items() if rating >= RECEPTION_POSITIVE)
    return {
        "total": total,
        "byRating": by_rating,
        "positivePercentage": round(positive / total * 100) if total else 0,
        "byPlayer": [
            {
                "playerId": player_id,
                "playerName": player_names.get(player_id, "Unknown"),
                "count": len(values),
                "average": round(sum(values) / len(values), 1),
            }
            for player_id, values in per_player.items()
        ],
    }


def player_stats(
    events: Sequence, player_names: Optional[Mapping[str, str]] = None
) -> List[Dict]:
    """Per-player point, error and reception counts.

    ``participation`` is the share (0-100) of player-attributed events that
    involve the player.
    """
    player_names = player_names or {}
    rows: Dict[str, Dict] = {}
    attributed = 0
    for event in events:
        if event.type == "RECEPTION_EVAL":
            player_id = event.payload.reception.player_id
        else:
            player_id = getattr(event.payload, "player_id", None)
        if not player_id:
            continue
        attributed += 1
        row = rows.setdefault(
            player_id,
            {
                "playerId": player_id,
                "playerName": player_names.get(player_id, "Unknown"),
                "points": Counter(),
                "errors": Counter(),
                "receptions": 0,
                "receptionTotal": 0,
                "participation": 0,
            },
        )
        row["participation"] += 1
        if event.type == "POINT_US":
            row["points"][event.payload.reason or "unspecified"] += 1
        elif event.type == "POINT_OPPONENT" and event.payload.reason:
            row["errors"][event.payload.reason] += 1
        elif event.type == "RECEPTION_EVAL":
            row["receptions"] += 1
            row["receptionTotal"] += event.payload.reception.value

    for row in rows.values():
        row["participation"] = round(row["participation"] / attributed * 100)
        row["points"] = dict(row["points"])
        row["errors"] = dict(row["errors"])
    return list(rows.values())


def game_flow(events: Iterable, our_side: str) -> List[Dict]:
    """Score differential (home minus away) after every point, per set."""
    flows: Dict[int, Dict] = {}
    for _event, set_number, home, away, scorer in running_scores(events, our_side):
        if scorer is None:
            continue
        flow = flows.setdefault(
            set_number,
            {"setNumber": set_number, "finalScoreHome": 0, "finalScoreAway": 0, "diffSeries": []},
        )
        flow["finalScoreHome"], flow["finalScoreAway"] = home, away
        flow["diffSeries"].append(home - away)
    for flow in flows.values():
        flow["maxAbsDiff"] = max([abs(d) for d in flow["diffSeries"]] + [1])
    return [flows[n] for n in sorted(flows)]


def plot_game_flow(events: Iterable, our_side: str):
    """Create a matplotlib chart with one differential line per set.

    Returns a ``matplotlib.figure.Figure`` that has already been closed with
    ``plt.close``. Returns ``None`` if matplotlib is unavailable."""
    if plt is None:
        return None
    fig, ax = plt.subplots()
    for flow in game_flow(events, our_side):
        series = flow["diffSeries"]
        ax.plot(range(1, len(series) + 1), series, label=f"Set {flow['setNumber']}")
    ax.axhline(0, linewidth=0.5)
    ax.set_xlabel("Rally")
    ax.set_ylabel("Home lead")
    ax.legend()
    plt.close(fig)
    return fig


def substitution_history(events: Iterable) -> List[Dict]:
    return [
        {
            "playerOut": event.payload.substitution.player_out_id,
            "playerIn": event.payload.substitution.player_in_id,
            "setNumber": event.payload.substitution.set_number,
            "position": event.payload.substitution.position,
            "isLiberoSwap": event.payload.substitution.is_libero_swap,
            "timestamp": event.timestamp,
        }
        for event in events
        if event.type == "SUBSTITUTION"
    ]


def timeout_history(events: Iterable, our_side: str) -> List[Dict]:
    """Every timeout with the set score at the moment it was called."""
    return [
        {
            "team": event.payload.team,
            "setNumber": set_number,
            "timestamp": event.timestamp,
            "scoreHome": home,
            "scoreAway": away,
        }
        for event, set_number, home, away, _scorer in running_scores(events, our_side)
        if event.type == "TIMEOUT"
    ]


def match_result_string(state: DerivedMatchState) -> str:
    """Return e.g. ``"Sets: 3-1 (25-20, 23-25, 25-18, 25-22)"``."""
    result = f"Sets: {state.sets_won_home}-{state.sets_won_away}"
    if state.sets_scores:
        scores = ", ".join(f"{s.home}-{s.away}" for s in state.sets_scores)
        result += f" ({scores})"
    return result
