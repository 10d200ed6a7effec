"""FIVB substitution rules.

Each set allows at most six field substitutions. The first time a player is
replaced, the outgoing starter and the incoming substitute form a pair; the
pair may be used at most twice per set (the substitute out and the starter
back in). A player belongs to at most one pair per set. Libero changes are
not field substitutions and never reach these helpers.
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence

from ..schemas import CourtSlot, Player, SetSubstitutionRecord, SubstitutionPair

MAX_SUBSTITUTIONS = 6
MAX_PAIR_USES = 2

LIBERO_ROLES = {"L"}


class SubstitutionCheck(NamedTuple):
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None


ACCEPTED = SubstitutionCheck(True)


def _reject(reason: str, code: str) -> SubstitutionCheck:
    return SubstitutionCheck(False, reason, code)


def validate_substitution(
    record: SetSubstitutionRecord,
    player_out_id: str,
    player_in_id: str,
    on_court_ids: Iterable[str],
    *,
    max_substitutions: int = MAX_SUBSTITUTIONS,
    max_pair_uses: int = MAX_PAIR_USES,
) -> SubstitutionCheck:
    """Decide whether a proposed field substitution is legal.

    Rules, in order:
    - the set may not already have ``max_substitutions`` substitutions
    - the player leaving must be on court
    - the player entering must not be on court
    - neither player paired: a new pair is formed
    - both in the same pair: a re-entry, limited to ``max_pair_uses`` and to
      the substitute/starter direction
    - otherwise one of them is already paired with someone else
    """
    on_court = set(on_court_ids)

    if record.total >= max_substitutions:
        return _reject("set substitution limit reached", "substitution_limit")
    if player_out_id not in on_court:
        return _reject("player leaving is not on court", "player_out_not_on_court")
    if player_in_id in on_court:
        return _reject("player entering is already on court", "player_in_on_court")

    pair_out = record.pair_for(player_out_id)
    pair_in = record.pair_for(player_in_id)

    if pair_out is None and pair_in is None:
        return ACCEPTED

    if pair_out is not None and pair_out == pair_in:
        if pair_out.uses >= max_pair_uses:
            return _reject("pair exhausted", "pair_exhausted")
        re_entry = (
            pair_out.substitute_id == player_out_id
            and pair_out.starter_id == player_in_id
        ) or (
            pair_out.starter_id == player_out_id
            and pair_out.substitute_id == player_in_id
        )
        if not re_entry:
            return _reject("invalid re-entry direction", "pair_direction")
        return ACCEPTED

    return _reject("already paired with a different player", "pair_conflict")


def apply_substitution(
    record: SetSubstitutionRecord, player_out_id: str, player_in_id: str
) -> SetSubstitutionRecord:
    """Return a new record with one more substitution booked.

    Callers validate first; this only does the bookkeeping.
    """
    pairs: List[SubstitutionPair] = []
    found = False
    for pair in record.pairs:
        if pair.involves(player_out_id) and pair.involves(player_in_id):
            pair = pair.model_copy(update={"uses": pair.uses + 1})
            found = True
        pairs.append(pair)
    if not found:
        pairs.append(
            SubstitutionPair(starter_id=player_out_id, substitute_id=player_in_id)
        )
    return SetSubstitutionRecord(
        set_number=record.set_number,
        total=record.total + 1,
        pairs=tuple(pairs),
    )


def is_libero(player: Optional[Player]) -> bool:
    if player is None:
        return False
    return player.role in LIBERO_ROLES


def is_valid_role_swap(player_out: Player, player_in: Player) -> bool:
    """Only field-for-field or libero-for-libero changes are allowed."""

    return is_libero(player_out) == is_libero(player_in)


# ---------------------------------------------------------------------------
# Batch planning
# ---------------------------------------------------------------------------
class PlannedSub(NamedTuple):
    player_out: Player
    player_in: Player
    position: int


class SimulatedSubs(NamedTuple):
    on_court: List[CourtSlot]
    record: SetSubstitutionRecord


def simulate_planned(
    on_court: Sequence[CourtSlot],
    record: SetSubstitutionRecord,
    planned: Sequence[PlannedSub],
) -> SimulatedSubs:
    """Apply planned substitutions in order without touching the inputs."""

    slots = list(on_court)
    for sub in planned:
        slots = [
            CourtSlot(position=slot.position, player=sub.player_in)
            if slot.player.id == sub.player_out.id and slot.position == sub.position
            else slot
            for slot in slots
        ]
        record = apply_substitution(record, sub.player_out.id, sub.player_in.id)
    return SimulatedSubs(slots, record)


def in_batch(planned: Sequence[PlannedSub], player_id: str) -> bool:
    return any(
        player_id in (sub.player_out.id, sub.player_in.id) for sub in planned
    )


def can_add_to_batch(
    planned: Sequence[PlannedSub],
    player_out_id: str,
    player_in_id: str,
    simulated: SimulatedSubs,
) -> SubstitutionCheck:
    """Validate one more planned substitution against the simulated state."""

    if simulated.record.total >= MAX_SUBSTITUTIONS:
        return _reject("set substitution limit reached", "substitution_limit")
    if in_batch(planned, player_out_id) or in_batch(planned, player_in_id):
        return _reject("player already in planned substitutions", "already_planned")
    return validate_substitution(
        simulated.record,
        player_out_id,
        player_in_id,
        [slot.player.id for slot in simulated.on_court],
    )


def is_available_in_batch(
    player_id: str,
    planned: Sequence[PlannedSub],
    simulated: SimulatedSubs,
    player_out_id: Optional[str] = None,
) -> bool:
    """Return ``True`` if ``player_id`` may still be picked to come in."""

    if in_batch(planned, player_id):
        return False
    pair = simulated.record.pair_for(player_id)
    if pair is None:
        return True
    if pair.uses >= MAX_PAIR_USES:
        return False
    # An active pair can only be used by its own partner.
    return player_out_id is not None and pair.involves(player_out_id)
