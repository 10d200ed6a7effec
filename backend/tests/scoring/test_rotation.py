import os, sys
import logging

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))
from volleyscore.scoring import rotation


def test_rotate_moves_position_two_to_serve():
    order = ["p1", "p2", "p3", "p4", "p5", "p6"]
    assert rotation.rotate(order) == ["p2", "p3", "p4", "p5", "p6", "p1"]
    # Input untouched.
    assert order == ["p1", "p2", "p3", "p4", "p5", "p6"]


def test_six_rotations_return_to_start():
    order = list("abcdef")
    rotated = order
    for _ in range(6):
        rotated = rotation.rotate(rotated)
    assert rotated == order


def test_rotate_partial_lineup_is_a_no_op(caplog):
    with caplog.at_level(logging.WARNING, logger="volleyscore.scoring.rotation"):
        assert rotation.rotate(["p1", "p2", "p3"]) == ["p1", "p2", "p3"]
    assert "length 3" in caplog.text


@pytest.mark.parametrize(
    "position, back",
    [(1, True), (2, False), (3, False), (4, False), (5, True), (6, True)],
)
def test_back_row_positions(position, back):
    assert rotation.is_back_row(position) is back


def test_back_row_rejects_unknown_position():
    with pytest.raises(ValueError):
        rotation.is_back_row(7)
