"""Libero overlay on top of the nominal rotation.

The nominal rotation always tracks the six starters/substitutes. The libero
replaces a middle blocker whenever that middle blocker is in the back row,
except when the middle blocker is in position 1 and the team is serving
(the libero may not serve). The resulting "effective" lineup is used for
action attribution and display only; rotation and serve mechanics work on
the nominal order.
"""

from typing import Callable, Iterable, List, Optional, Sequence

from ..schemas import CourtSlot, Player
from .rotation import BACK_ROW

MIDDLE_BLOCKER = "MB"
LIBERO = "L"


def is_libero_replaceable(position: int, is_serving: bool, role: str | None) -> bool:
    """Return ``True`` if a player in ``position`` is covered by the libero."""

    if role != MIDDLE_BLOCKER:
        return False
    if position not in BACK_ROW:
        return False
    if position == 1 and is_serving:
        return False
    return True


def resolve(
    base_order: Sequence[Optional[str]],
    libero_id: Optional[str],
    is_serving: bool,
    role_of: Callable[[str], Optional[str]],
) -> List[Optional[str]]:
    """Apply the libero overlay to a nominal order of player ids.

    ``base_order`` is indexed by ``position - 1``. Front-row slots are never
    altered. Returns a new list; ``base_order`` is left untouched.
    """
    display = list(base_order)
    if not libero_id:
        return display

    for position in BACK_ROW:
        index = position - 1
        if index >= len(display):
            continue
        player_id = display[index]
        if not player_id:
            continue
        if is_libero_replaceable(position, is_serving, role_of(player_id)):
            display[index] = libero_id
    return display


def effective_on_court(
    slots: Sequence[CourtSlot],
    libero_id: Optional[str],
    is_serving: bool,
    players: Iterable[Player],
) -> List[CourtSlot]:
    """Return who is actually on court, libero substitutions applied.

    ``players`` should contain the libero snapshot; without one a bare
    placeholder carrying only the id is used.
    """
    if not libero_id or not slots:
        return list(slots)

    by_id = {p.id: p for p in players}
    for slot in slots:
        by_id.setdefault(slot.player.id, slot.player)
    by_id.setdefault(libero_id, Player(id=libero_id, role=LIBERO))

    base_ids: List[Optional[str]] = [None] * 6
    for slot in slots:
        base_ids[slot.position - 1] = slot.player.id

    resolved = resolve(
        base_ids,
        libero_id,
        is_serving,
        lambda pid: by_id[pid].role if pid in by_id else None,
    )

    result: List[CourtSlot] = []
    for index, player_id in enumerate(resolved):
        if player_id and player_id in by_id:
            result.append(CourtSlot(position=index + 1, player=by_id[player_id]))
    return result
