"""Volleyball rotation.

Positions are numbered 1-6 in the usual court order: 1 is the server
(back right), 2-4 are the front row from right to left, 5 and 6 the back
row from left to centre. A lineup is stored as a sequence indexed by
``position - 1``.
"""

import logging
from typing import List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FRONT_ROW = (2, 3, 4)
BACK_ROW = (1, 5, 6)


def rotate(order: Sequence[T]) -> List[T]:
    """Rotate a six-player lineup one place clockwise.

    The player in position 2 moves to 1 (and serves), 3 moves to 2, and so on;
    the previous server moves to position 6.
    """
    if len(order) != 6:
        # Partial lineups can appear while resuming a match.
        logger.warning("Cannot rotate lineup of length %d", len(order))
        return list(order)
    return list(order[1:]) + [order[0]]


def is_back_row(position: int) -> bool:
    if position not in range(1, 7):
        raise ValueError(f"invalid court position {position}")
    return position in BACK_ROW
