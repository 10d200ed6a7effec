"""Live match session.

Holds the append-only event log of one match and keeps the derived state in
sync with it. Every accepted action is validated against the current state,
appended as one or more events, and the state is recomputed from the whole
log. Undo truncates the log and recomputes; there is no inverse logic.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from .config import DEFAULT_OUR_SIDE
from .exceptions import (
    InvalidEvent,
    LineupRequired,
    NoMatchLoaded,
    SubstitutionRejected,
    TimeoutLimitReached,
)
from .schemas import (
    SCORING_EVENT_TYPES,
    DerivedMatchState,
    Player,
    build_event,
    parse_events,
)
from .scoring import completion, volleyball
from .services.substitutions import is_libero, is_valid_role_swap, validate_substitution
from .time_utils import utc_now

logger = logging.getLogger(__name__)

Listener = Callable[[DerivedMatchState], None]

LINEUP_REQUIRED_TYPES = SCORING_EVENT_TYPES | {"SUBSTITUTION"}


class MatchSession:
    """Single scorer's view of one match."""

    def __init__(
        self,
        config: Optional[Dict] = None,
        *,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = volleyball.resolve_config(config)
        self._now = now
        self.match_id: Optional[str] = None
        self.our_side: str = DEFAULT_OUR_SIDE
        self.team_names: Dict[str, Optional[str]] = {"home": None, "away": None}
        self._events: List = []
        self._redo: List = []
        self._dismissed: set[int] = set()
        self._listeners: List[Listener] = []
        self._state = volleyball.derive_state([], self.our_side, config=self._config)
        self.changes_since_save = 0
        self.types_since_save: set[str] = set()

    # ---------------------------------------------------------
    # Loading & output
    # ---------------------------------------------------------
    def load(
        self,
        match_id: str,
        events: Optional[Sequence] = None,
        our_side: str = DEFAULT_OUR_SIDE,
        team_names: Optional[Mapping[str, Optional[str]]] = None,
    ) -> DerivedMatchState:
        """Seed the log with persisted events and compute the state.

        Set summaries for sets before the current one are treated as already
        acknowledged.
        """
        if our_side not in ("home", "away"):
            raise ValueError("our_side must be 'home' or 'away'")

        parsed = _coerce_events(events or [])
        foreign = [e.id for e in parsed if e.match_id != match_id]
        if foreign:
            raise InvalidEvent(f"{len(foreign)} event(s) belong to another match")

        unique = volleyball.dedupe_events(parsed)
        if len(unique) != len(parsed):
            logger.warning(
                "Match %s: %d duplicate event id(s) in stored log",
                match_id,
                len(parsed) - len(unique),
            )

        self.match_id = match_id
        self.our_side = our_side
        self.team_names = {
            "home": (team_names or {}).get("home"),
            "away": (team_names or {}).get("away"),
        }
        self._events = unique
        self._redo = []
        self._dismissed = set()
        state = self._recompute()
        self._dismissed = set(range(1, state.current_set))
        self.changes_since_save = 0
        self.types_since_save = set()
        state = self._recompute()

        logger.info(
            "Loaded match %s with %d event(s): set %d, %d-%d",
            match_id,
            len(self._events),
            state.current_set,
            state.home_score,
            state.away_score,
        )
        self._emit()
        return state

    @property
    def state(self) -> DerivedMatchState:
        return self._state

    @property
    def events(self) -> tuple:
        return tuple(self._events)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---------------------------------------------------------
    # Action intake
    # ---------------------------------------------------------
    def add_event(self, type_: str, payload=None) -> List:
        """Validate and append an action; return the appended events.

        Returns ``[]`` (and logs a warning) when the match is over or a
        scoring event arrives while the set is finished. Rule violations
        raise :class:`~volleyscore.exceptions.ActionRejected` subclasses.
        """
        self._require_loaded()
        state = self._state

        if state.is_match_finished:
            logger.warning("Match %s is finished; ignoring %s", self.match_id, type_)
            return []
        if type_ in SCORING_EVENT_TYPES and state.is_set_finished:
            logger.warning(
                "Set %d of match %s is finished; ignoring %s",
                state.current_set,
                self.match_id,
                type_,
            )
            return []

        event = build_event(type_, payload, match_id=self.match_id, timestamp=self._now())
        self._check(event, state)

        appended = [event]
        self._events.append(event)
        state = self._recompute()

        if type_ in SCORING_EVENT_TYPES:
            synthetic = completion.completion_events(
                state, self.match_id, self._now(), self._config
            )
            if synthetic:
                self._events.extend(synthetic)
                appended.extend(synthetic)
                logger.info(
                    "Match %s: set %d ended %d-%d",
                    self.match_id,
                    state.current_set,
                    state.home_score,
                    state.away_score,
                )
                state = self._recompute()
                if state.is_match_finished:
                    logger.info(
                        "Match %s finished %d-%d",
                        self.match_id,
                        state.sets_won_home,
                        state.sets_won_away,
                    )

        self._redo = []
        self._touch(appended)
        self._emit()
        return appended

    def point_us(self, reason: Optional[str] = None, player_id: Optional[str] = None) -> List:
        return self.add_event("POINT_US", {"reason": reason, "playerId": player_id})

    def point_opponent(
        self, reason: Optional[str] = None, player_id: Optional[str] = None
    ) -> List:
        return self.add_event("POINT_OPPONENT", {"reason": reason, "playerId": player_id})

    def evaluate_reception(self, player_id: str, value: int) -> List:
        """Grade a reception 0-4; a zero is an ace against us."""
        return self.add_event(
            "RECEPTION_EVAL", {"reception": {"playerId": player_id, "value": value}}
        )

    def substitute(self, player_out_id: str, player_in: Player) -> List:
        """Field substitution into the slot ``player_out_id`` occupies."""
        self._require_loaded()
        state = self._state
        if not state.has_lineup_for_current_set:
            raise LineupRequired(state.current_set)
        slot = next((s for s in state.on_court if s.player.id == player_out_id), None)
        if slot is None:
            raise SubstitutionRejected(
                "player leaving is not on court", "player_out_not_on_court"
            )
        return self.add_event(
            "SUBSTITUTION",
            {
                "substitution": {
                    "playerOutId": player_out_id,
                    "playerInId": player_in.id,
                    "position": slot.position,
                    "setNumber": self._state.current_set,
                    "playerIn": player_in.model_dump(by_alias=True),
                    "isLiberoSwap": False,
                }
            },
        )

    def swap_libero(self, libero_in: Player) -> List:
        """Replace the active libero with another libero (unlimited)."""
        self._require_loaded()
        current = self._state.current_libero_id
        if current is None:
            raise SubstitutionRejected("no libero is active", "no_active_libero")
        return self.add_event(
            "SUBSTITUTION",
            {
                "substitution": {
                    "playerOutId": current,
                    "playerInId": libero_in.id,
                    "position": None,
                    "setNumber": self._state.current_set,
                    "playerIn": libero_in.model_dump(by_alias=True),
                    "isLiberoSwap": True,
                }
            },
        )

    def set_lineup(
        self,
        starters: Mapping[int, Player],
        libero: Optional[Player] = None,
        initial_serving_side: Optional[str] = None,
    ) -> List:
        """Confirm the starting six (by position) for the current set.

        Sets 1 and 5 also need the coin-toss result; it is recorded as a
        separate ``SET_SERVICE_CHOICE`` event before the lineup.
        """
        match_id = self._require_loaded()
        set_number = self._state.current_set
        if self._state.has_lineup_for_current_set:
            raise InvalidEvent(f"set {set_number} already has a lineup")
        needs_choice = set_number in (1, volleyball.deciding_set(self._config))
        if needs_choice and initial_serving_side is None:
            raise InvalidEvent(f"set {set_number} needs the initial serving side")

        lineup_payload = {
            "setNumber": set_number,
            "lineup": [
                {"position": pos, "player": player.model_dump(by_alias=True)}
                for pos, player in sorted(starters.items())
            ],
            "liberoId": libero.id if libero else None,
            "libero": libero.model_dump(by_alias=True) if libero else None,
        }
        # Validate the lineup before recording the toss so nothing half-applies.
        build_event("SET_LINEUP", lineup_payload, match_id=match_id)

        appended: List = []
        if needs_choice:
            appended += self.choose_service(initial_serving_side)
        appended += self.add_event("SET_LINEUP", lineup_payload)
        return appended

    def choose_service(self, initial_serving_side: str) -> List:
        """Record which side serves first in the current set (coin toss)."""
        return self.add_event(
            "SET_SERVICE_CHOICE",
            {
                "setNumber": self._state.current_set,
                "initialServingSide": initial_serving_side,
            },
        )

    def call_timeout(self, team: str) -> List:
        return self.add_event(
            "TIMEOUT", {"team": team, "setNumber": self._state.current_set}
        )

    def freeball_sent(self, player_id: Optional[str] = None) -> List:
        return self.add_event("FREEBALL_SENT", {"playerId": player_id})

    def freeball_received(self, player_id: Optional[str] = None) -> List:
        return self.add_event("FREEBALL_RECEIVED", {"playerId": player_id})

    def dismiss_set_summary(self, set_number: int) -> DerivedMatchState:
        """Acknowledge the summary of ``set_number`` so it is not shown again."""
        self._dismissed.add(set_number)
        state = self._recompute()
        self._emit()
        return state

    # ---------------------------------------------------------
    # Undo / redo
    # ---------------------------------------------------------
    def undo(self, count: int = 1) -> DerivedMatchState:
        """Drop the last ``count`` events and recompute."""
        self._require_loaded()
        if count < 0:
            raise ValueError("count must be >= 0")
        count = min(count, len(self._events))
        if count:
            removed = self._events[-count:]
            del self._events[-count:]
            self._redo = removed + self._redo
            self._touch(removed)
        state = self._recompute()
        self._emit()
        return state

    def undo_last_action(self) -> DerivedMatchState:
        """Undo one scorer action.

        A point that closed a set is undone together with the synthetic
        ``SET_END``/``SET_START`` it produced.
        """
        if not self._events:
            return self.undo(0)
        last = self._events[-1]
        if completion.is_set_started(last):
            return self.undo(3)
        if completion.is_set_ended(last):
            return self.undo(2)
        return self.undo(1)

    def redo(self) -> DerivedMatchState:
        """Re-append the most recently undone action."""
        self._require_loaded()
        if not self._redo:
            return self._state
        restored = [self._redo.pop(0)]
        if restored[0].type in SCORING_EVENT_TYPES:
            while self._redo and self._redo[0].type in ("SET_END", "SET_START"):
                restored.append(self._redo.pop(0))
                if restored[-1].type == "SET_START":
                    break
        self._events.extend(restored)
        self._touch(restored)
        state = self._recompute()
        self._emit()
        return state

    # ---------------------------------------------------------
    # Persistence bookkeeping
    # ---------------------------------------------------------
    def mark_saved(self) -> None:
        self.changes_since_save = 0
        self.types_since_save = set()

    # ---------------------------------------------------------
    # Internals
    # ---------------------------------------------------------
    def _require_loaded(self) -> str:
        if self.match_id is None:
            raise NoMatchLoaded()
        return self.match_id

    def _recompute(self) -> DerivedMatchState:
        self._state = volleyball.derive_state(
            self._events, self.our_side, self._dismissed, self._config
        )
        return self._state

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._state)

    def _touch(self, events: Iterable) -> None:
        for event in events:
            self.changes_since_save += 1
            self.types_since_save.add(event.type)

    def _check(self, event, state: DerivedMatchState) -> None:
        if event.type in LINEUP_REQUIRED_TYPES and not state.has_lineup_for_current_set:
            raise LineupRequired(state.current_set)

        payload = event.payload
        set_number = getattr(payload, "set_number", None)
        if set_number is None and event.type == "SUBSTITUTION":
            set_number = payload.substitution.set_number
        if set_number is not None and event.type != "SET_START":
            if set_number != state.current_set:
                raise InvalidEvent(
                    f"{event.type} is for set {set_number} but set {state.current_set} is active"
                )

        check = getattr(self, f"_check_{event.type.lower()}", None)
        if check is not None:
            check(event, state)

    def _check_substitution(self, event, state: DerivedMatchState) -> None:
        sub = event.payload.substitution
        if sub.is_libero_swap:
            if state.current_libero_id != sub.player_out_id:
                raise SubstitutionRejected("player leaving is not the active libero", "libero_not_active")
            if not is_libero(sub.player_in):
                raise SubstitutionRejected("only a libero can replace the libero", "role_mismatch")
            return

        slot = next((s for s in state.on_court if s.player.id == sub.player_out_id), None)
        if slot is not None and not is_valid_role_swap(slot.player, sub.player_in):
            raise SubstitutionRejected(
                "substitutions must be field for field or libero for libero",
                "role_mismatch",
            )
        if sub.player_in_id == state.current_libero_id:
            raise SubstitutionRejected("the libero cannot make a field substitution", "role_mismatch")

        check = validate_substitution(
            state.current_set_substitutions,
            sub.player_out_id,
            sub.player_in_id,
            state.on_court_ids(),
            max_substitutions=self._config["maxSubstitutions"],
            max_pair_uses=self._config["maxPairUses"],
        )
        if not check.valid:
            logger.warning("Rejected substitution in match %s: %s", self.match_id, check.reason)
            raise SubstitutionRejected(check.reason, check.code)
        if slot.position != sub.position:
            raise SubstitutionRejected(
                f"player leaving is in position {slot.position}, not {sub.position}",
                "position_mismatch",
            )

    def _check_timeout(self, event, state: DerivedMatchState) -> None:
        team = event.payload.team
        used = state.timeouts_home if team == "home" else state.timeouts_away
        if used >= self._config["maxTimeouts"]:
            raise TimeoutLimitReached(team, state.current_set)

    def _check_set_lineup(self, event, state: DerivedMatchState) -> None:
        if state.has_lineup_for_current_set:
            raise InvalidEvent(f"set {state.current_set} already has a lineup")

    def _check_set_service_choice(self, event, state: DerivedMatchState) -> None:
        set_number = event.payload.set_number
        if set_number not in (1, volleyball.deciding_set(self._config)):
            raise InvalidEvent(f"set {set_number} serve follows the alternation rule")
        if state.home_score or state.away_score:
            raise InvalidEvent("the initial server cannot change once the set is under way")

    def _check_set_start(self, event, state: DerivedMatchState) -> None:
        if not state.is_set_finished:
            raise InvalidEvent(f"set {state.current_set} is still in progress")
        if event.payload.set_number != state.current_set + 1:
            raise InvalidEvent(f"the next set is {state.current_set + 1}")

    def _check_set_end(self, event, state: DerivedMatchState) -> None:
        if state.is_set_finished:
            raise InvalidEvent(f"set {state.current_set} has already ended")
        winner = completion.set_winner(
            state.current_set, state.home_score, state.away_score, self._config
        )
        if winner is None or event.payload.winner != winner:
            raise InvalidEvent(
                f"set {state.current_set} is not won at {state.home_score}-{state.away_score}"
            )
        score = event.payload.score
        if (score.home, score.away) != (state.home_score, state.away_score):
            raise InvalidEvent(
                f"set {state.current_set} score is {state.home_score}-{state.away_score}"
            )


def _coerce_events(events: Sequence) -> List:
    typed = [e for e in events if isinstance(e, BaseModel)]
    if len(typed) == len(events):
        return list(events)
    raw = [e.model_dump(by_alias=True) if isinstance(e, BaseModel) else e for e in events]
    return parse_events(raw)
