from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
import uuid

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .exceptions import InvalidEvent
from .time_utils import coerce_utc, utc_now

Side = Literal["home", "away"]
LogicalSide = Literal["our", "opponent"]

OUR_POINT_REASONS = ("serve_point", "attack_point", "block_point", "opponent_error")
OPPONENT_POINT_REASONS = (
    "service_error",
    "attack_error",
    "attack_blocked",
    "unforced_error",
    "fault",
    "reception_error",
    "opponent_point",
)
PointReason = Literal[
    "serve_point",
    "attack_point",
    "block_point",
    "opponent_error",
    "service_error",
    "attack_error",
    "attack_blocked",
    "unforced_error",
    "fault",
    "reception_error",
    "opponent_point",
]

ROLE_ALIASES = {
    "SETTER": "S",
    "COLOCADORA": "S",
    "OUTSIDE": "OH",
    "RECEPTORA": "OH",
    "MIDDLE": "MB",
    "C": "MB",
    "CENTRAL": "MB",
    "OPPOSITE": "OPP",
    "OP": "OPP",
    "OPUESTA": "OPP",
    "LIBERO": "L",
    "LÍBERO": "L",
}


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------
class Player(_WireModel):
    """Immutable roster snapshot embedded in lineup/substitution events."""

    id: str = Field(..., min_length=1)
    number: int = 0
    name: str = ""
    role: str = "?"

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> str:
        if value is None:
            return "?"
        if not isinstance(value, str):
            raise TypeError("role must be a string")
        code = value.strip().upper()
        return ROLE_ALIASES.get(code, code) or "?"

    @field_validator("number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int:
        if value is None or value == "":
            return 0
        if isinstance(value, bool):
            raise TypeError("number must be an integer")
        return int(value)


class LineupSlot(_WireModel):
    position: int = Field(..., ge=1, le=6)
    player: Player


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------
class PointPayload(_WireModel):
    reason: Optional[PointReason] = None
    player_id: Optional[str] = None


class ReceptionRating(_WireModel):
    player_id: str
    value: int = Field(..., ge=0, le=4)


class ReceptionPayload(_WireModel):
    reception: ReceptionRating


class Substitution(_WireModel):
    player_out_id: str
    player_in_id: str
    position: Optional[int] = Field(default=None, ge=1, le=6)
    set_number: int = Field(..., ge=1, le=5)
    player_in: Player
    is_libero_swap: bool = False

    @field_validator("position", mode="before")
    @classmethod
    def _libero_slot(cls, value: Any) -> Any:
        # Older logs encode the libero slot as position 0.
        if value == 0:
            return None
        return value

    @model_validator(mode="after")
    def _check_players(self):
        if self.player_out_id == self.player_in_id:
            raise ValueError("player in and player out must differ")
        if self.player_in.id != self.player_in_id:
            raise ValueError("playerIn snapshot does not match playerInId")
        if not self.is_libero_swap and self.position is None:
            raise ValueError("field substitutions require a position")
        return self


class SubstitutionPayload(_WireModel):
    substitution: Substitution


class LineupPayload(_WireModel):
    set_number: int = Field(..., ge=1, le=5)
    lineup: List[LineupSlot]
    libero_id: Optional[str] = None
    libero: Optional[Player] = None

    @model_validator(mode="after")
    def _check_lineup(self):
        positions = sorted(slot.position for slot in self.lineup)
        if positions != [1, 2, 3, 4, 5, 6]:
            raise ValueError("lineup must fill positions 1-6 exactly once")
        player_ids = {slot.player.id for slot in self.lineup}
        if len(player_ids) != 6:
            raise ValueError("lineup players must be distinct")
        if self.libero_id and self.libero_id in player_ids:
            raise ValueError("the libero cannot be one of the six starters")
        if self.libero is not None and self.libero.id != self.libero_id:
            raise ValueError("libero snapshot does not match liberoId")
        return self


class ServiceChoicePayload(_WireModel):
    set_number: int = Field(..., ge=1, le=5)
    initial_serving_side: LogicalSide


class SetStartPayload(_WireModel):
    set_number: int = Field(..., ge=1, le=5)


class ScorePair(_WireModel):
    home: int = Field(..., ge=0)
    away: int = Field(..., ge=0)


class SetEndPayload(_WireModel):
    set_number: int = Field(..., ge=1, le=5)
    winner: Side
    score: ScorePair


class TimeoutPayload(_WireModel):
    team: Side
    set_number: int = Field(..., ge=1, le=5)


class FreeballPayload(_WireModel):
    player_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class _EventBase(_WireModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    match_id: str
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return coerce_utc(value)


class PointUs(_EventBase):
    type: Literal["POINT_US"] = "POINT_US"
    payload: PointPayload = Field(default_factory=PointPayload)


class PointOpponent(_EventBase):
    type: Literal["POINT_OPPONENT"] = "POINT_OPPONENT"
    payload: PointPayload = Field(default_factory=PointPayload)


class ReceptionEvaluated(_EventBase):
    type: Literal["RECEPTION_EVAL"] = "RECEPTION_EVAL"
    payload: ReceptionPayload


class SubstitutionMade(_EventBase):
    type: Literal["SUBSTITUTION"] = "SUBSTITUTION"
    payload: SubstitutionPayload


class LineupSet(_EventBase):
    type: Literal["SET_LINEUP"] = "SET_LINEUP"
    payload: LineupPayload


class ServiceChoiceSet(_EventBase):
    type: Literal["SET_SERVICE_CHOICE"] = "SET_SERVICE_CHOICE"
    payload: ServiceChoicePayload


class SetStarted(_EventBase):
    type: Literal["SET_START"] = "SET_START"
    payload: SetStartPayload


class SetEnded(_EventBase):
    type: Literal["SET_END"] = "SET_END"
    payload: SetEndPayload


class TimeoutCalled(_EventBase):
    type: Literal["TIMEOUT"] = "TIMEOUT"
    payload: TimeoutPayload


class FreeballSent(_EventBase):
    type: Literal["FREEBALL_SENT"] = "FREEBALL_SENT"
    payload: FreeballPayload = Field(default_factory=FreeballPayload)


class FreeballReceived(_EventBase):
    type: Literal["FREEBALL_RECEIVED"] = "FREEBALL_RECEIVED"
    payload: FreeballPayload = Field(default_factory=FreeballPayload)


MatchEvent = Annotated[
    Union[
        PointUs,
        PointOpponent,
        ReceptionEvaluated,
        SubstitutionMade,
        LineupSet,
        ServiceChoiceSet,
        SetStarted,
        SetEnded,
        TimeoutCalled,
        FreeballSent,
        FreeballReceived,
    ],
    Field(discriminator="type"),
]

EVENT_TYPES = (
    "POINT_US",
    "POINT_OPPONENT",
    "RECEPTION_EVAL",
    "SUBSTITUTION",
    "SET_LINEUP",
    "SET_SERVICE_CHOICE",
    "SET_START",
    "SET_END",
    "TIMEOUT",
    "FREEBALL_SENT",
    "FREEBALL_RECEIVED",
)
SCORING_EVENT_TYPES = frozenset({"POINT_US", "POINT_OPPONENT", "RECEPTION_EVAL"})

_event_adapter: TypeAdapter = TypeAdapter(MatchEvent)
_event_list_adapter: TypeAdapter = TypeAdapter(List[MatchEvent])


def build_event(
    type_: str,
    payload: Any = None,
    *,
    match_id: str,
    event_id: str | None = None,
    timestamp: datetime | None = None,
):
    """Validate ``payload`` against ``type_`` and return a typed event.

    ``payload`` may be a dict (snake_case or camelCase keys) or one of the
    payload models. Raises :class:`InvalidEvent` on any schema violation.
    """

    if type_ not in EVENT_TYPES:
        raise InvalidEvent(f"unknown event type {type_!r}")
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    raw: Dict[str, Any] = {"type": type_, "matchId": match_id}
    if payload is not None:
        raw["payload"] = payload
    if event_id is not None:
        raw["id"] = event_id
    if timestamp is not None:
        raw["timestamp"] = timestamp
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidEvent(f"{type_}: {exc.errors()[0]['msg']}") from exc


def parse_events(raw_events: Any) -> list:
    """Parse a persisted event list (dicts, as stored) into typed events."""

    if raw_events is None:
        return []
    try:
        return _event_list_adapter.validate_python(list(raw_events))
    except ValidationError as exc:
        raise InvalidEvent(f"stored events are invalid: {exc.errors()[0]['msg']}") from exc


def dump_events(events) -> list[dict]:
    """Dump typed events back into the JSON-ready wire format."""

    return _event_list_adapter.dump_python(list(events), mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Derived state
# ---------------------------------------------------------------------------
class CourtSlot(_WireModel):
    position: int = Field(..., ge=1, le=6)
    player: Player


class SubstitutionPair(_WireModel):
    """A starter and the substitute who first replaced them in a set."""

    starter_id: str
    substitute_id: str
    uses: int = Field(default=1, ge=1)

    def involves(self, player_id: str) -> bool:
        return player_id in (self.starter_id, self.substitute_id)


class SetSubstitutionRecord(_WireModel):
    set_number: int = 1
    total: int = Field(default=0, ge=0)
    pairs: Tuple[SubstitutionPair, ...] = ()

    def pair_for(self, player_id: str) -> Optional[SubstitutionPair]:
        return next((p for p in self.pairs if p.involves(player_id)), None)


class SetScoreOut(_WireModel):
    set_number: int
    home: int
    away: int
    winner: Optional[Side] = None


class SetSummary(_WireModel):
    """Final score and point breakdown shown when a set ends."""

    set_number: int
    home: int
    away: int
    winner: Side
    points_by_type: Dict[LogicalSide, Dict[str, int]]
    longest_run: Dict[Side, int]
    score_history: Tuple[ScorePair, ...] = ()


class DerivedMatchState(_WireModel):
    """Complete current match status, computed from the event log."""

    match_id: Optional[str] = None
    current_set: int = 1
    home_score: int = 0
    away_score: int = 0
    sets_won_home: int = 0
    sets_won_away: int = 0
    our_side: Side = "home"
    opponent_side: Side = "away"
    serving_side: LogicalSide = "our"
    serving_team: Side = "home"
    on_court: List[CourtSlot] = Field(default_factory=list)
    effective_on_court: List[CourtSlot] = Field(default_factory=list)
    current_libero_id: Optional[str] = None
    has_lineup_for_current_set: bool = False
    sets_scores: List[SetScoreOut] = Field(default_factory=list)
    is_set_finished: bool = False
    is_match_finished: bool = False
    match_winner: Optional[Side] = None
    set_summary: Optional[SetSummary] = None
    set_summary_open: bool = False
    current_set_substitutions: SetSubstitutionRecord = Field(
        default_factory=SetSubstitutionRecord
    )
    timeouts_home: int = Field(default=0, ge=0)
    timeouts_away: int = Field(default=0, ge=0)

    @property
    def is_our_serve(self) -> bool:
        return self.serving_side == "our"

    def on_court_ids(self) -> list[str]:
        return [slot.player.id for slot in self.on_court]


class TimelineEntry(_WireModel):
    """One human-readable line of the match history."""

    id: str
    set_number: int
    team: Literal["us", "opponent", "neutral"]
    kind: Literal[
        "point",
        "reception",
        "substitution",
        "libero",
        "lineup",
        "service",
        "set-start",
        "set-end",
        "timeout",
        "freeball",
    ]
    team_label: str = ""
    description: str
    score: Optional[ScorePair] = None
    timestamp: datetime
