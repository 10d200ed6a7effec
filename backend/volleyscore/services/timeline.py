"""Human-readable match history."""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

from ..schemas import Player, ScorePair, TimelineEntry
from .stats import running_scores

EVENT_LABELS = {
    "POINT_US": "Point",
    "POINT_OPPONENT": "Opponent point",
    "RECEPTION_EVAL": "Reception",
    "SUBSTITUTION": "Substitution",
    "SET_LINEUP": "Lineup",
    "SET_SERVICE_CHOICE": "Initial serve",
    "SET_START": "Set start",
    "SET_END": "Set end",
    "TIMEOUT": "Timeout",
    "FREEBALL_SENT": "Freeball sent",
    "FREEBALL_RECEIVED": "Freeball received",
}

REASON_LABELS = {
    "serve_point": "Serve point",
    "attack_point": "Attack point",
    "block_point": "Block point",
    "opponent_error": "Opponent error",
    "service_error": "Service error",
    "attack_error": "Attack error",
    "attack_blocked": "Blocked",
    "unforced_error": "Unforced error",
    "fault": "Fault",
    "reception_error": "Reception error",
    "opponent_point": "Opponent point",
}


def _player_label(player: Optional[Player]) -> str:
    if player is None:
        return ""
    if player.number:
        return f"#{player.number} {player.name}".strip()
    return player.name or player.id


def format_timeline(
    events: Iterable,
    our_side: str,
    home_name: Optional[str] = None,
    away_name: Optional[str] = None,
    players: Optional[Mapping[str, Player]] = None,
) -> List[TimelineEntry]:
    """Turn the event log into timeline entries, oldest first.

    Point entries (including a reception graded 0) carry the set score after
    the point.
    """
    players = players or {}
    home_label = home_name or "Home"
    away_label = away_name or "Away"
    us_label = home_label if our_side == "home" else away_label
    opponent_label = away_label if our_side == "home" else home_label

    entries: List[TimelineEntry] = []
    for event, set_number, home, away, scorer in running_scores(events, our_side):
        payload = event.payload
        entry = {
            "id": event.id,
            "set_number": set_number,
            "timestamp": event.timestamp,
            "team": "neutral",
        }
        if scorer is not None:
            entry["score"] = ScorePair(home=home, away=away)

        if event.type in ("POINT_US", "POINT_OPPONENT"):
            ours = event.type == "POINT_US"
            description = REASON_LABELS.get(payload.reason or "", "Point")
            scorer_player = players.get(payload.player_id) if payload.player_id else None
            if scorer_player is not None:
                description = f"{description} ({_player_label(scorer_player)})"
            entry.update(
                team="us" if ours else "opponent",
                kind="point",
                team_label=us_label if ours else opponent_label,
                description=description,
            )
        elif event.type == "RECEPTION_EVAL":
            rating = payload.reception
            who = _player_label(players.get(rating.player_id))
            description = f"Reception {rating.value}"
            if who:
                description = f"{who} {description}"
            if rating.value == 0:
                entry.update(team="opponent", team_label=opponent_label)
                description += " (ace)"
            entry.update(kind="reception", description=description)
        elif event.type == "SUBSTITUTION":
            sub = payload.substitution
            if sub.is_libero_swap:
                entry.update(kind="libero", description="Libero change")
            else:
                entry.update(
                    kind="substitution",
                    team="us",
                    team_label=us_label,
                    description=f"Substitution: {_player_label(sub.player_in)} in",
                )
        elif event.type == "SET_LINEUP":
            entry.update(kind="lineup", description=f"Set {payload.set_number} lineup")
        elif event.type == "SET_SERVICE_CHOICE":
            ours = payload.initial_serving_side == "our"
            entry.update(
                kind="service",
                description=f"{us_label if ours else opponent_label} serves first",
            )
        elif event.type == "SET_START":
            entry.update(kind="set-start", description=f"Set {payload.set_number} start")
        elif event.type == "SET_END":
            winner = home_label if payload.winner == "home" else away_label
            entry.update(
                kind="set-end",
                description=f"Set {payload.set_number} to {winner}",
                score=payload.score,
            )
        elif event.type == "TIMEOUT":
            ours = payload.team == our_side
            entry.update(
                kind="timeout",
                team="us" if ours else "opponent",
                team_label=home_label if payload.team == "home" else away_label,
                description="Timeout",
            )
        else:
            entry.update(kind="freeball", description=EVENT_LABELS[event.type])

        entries.append(TimelineEntry(**entry))
    return entries


def last_event_label(event, players: Optional[Mapping[str, Player]] = None) -> str:
    """Short label for the most recent action, e.g. ``"#12 Attack point"``."""
    if event is None:
        return "History"
    players = players or {}

    if event.type == "RECEPTION_EVAL":
        rating = event.payload.reception
        player = players.get(rating.player_id)
        if player is not None and player.number:
            return f"#{player.number} Reception {rating.value}"
        return f"Reception {rating.value}"

    if event.type == "SUBSTITUTION":
        sub = event.payload.substitution
        if sub.is_libero_swap:
            return "Libero change"
        if sub.player_in.number:
            return f"#{sub.player_in.number} In"
        return "Substitution"

    prefix = ""
    player_id = getattr(event.payload, "player_id", None)
    player = players.get(player_id) if player_id else None
    if player is not None:
        if player.number:
            prefix = f"#{player.number} "
        elif player.name:
            prefix = f"{player.name.split(' ')[0]} "

    reason = getattr(event.payload, "reason", None)
    label = REASON_LABELS.get(reason or "") or EVENT_LABELS.get(event.type, event.type)
    return f"{prefix}{label}"
