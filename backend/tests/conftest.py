import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Fall back to an in-memory SQLite database so local runs remain isolated.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from volleyscore.schemas import Player  # noqa: E402
from volleyscore.session import MatchSession  # noqa: E402


# ---------------------------------------------------------------------------
# Roster helpers
# ---------------------------------------------------------------------------
ROSTER = {
    "s1": Player(id="s1", number=1, name="Ana Setter", role="S"),
    "oh1": Player(id="oh1", number=4, name="Bea Outside", role="OH"),
    "mb1": Player(id="mb1", number=7, name="Carla Middle", role="MB"),
    "opp1": Player(id="opp1", number=9, name="Dora Opposite", role="OPP"),
    "oh2": Player(id="oh2", number=11, name="Eva Outside", role="OH"),
    "mb2": Player(id="mb2", number=14, name="Fina Middle", role="C"),
    "l1": Player(id="l1", number=5, name="Gala Libero", role="LIBERO"),
    "l2": Player(id="l2", number=6, name="Hera Libero", role="L"),
    "b1": Player(id="b1", number=12, name="Ines Bench", role="OH"),
    "b2": Player(id="b2", number=15, name="Julia Bench", role="MB"),
    "b3": Player(id="b3", number=16, name="Karen Bench", role="S"),
    "b4": Player(id="b4", number=17, name="Lola Bench", role="OPP"),
    "b5": Player(id="b5", number=18, name="Marta Bench", role="OH"),
    "b6": Player(id="b6", number=19, name="Nora Bench", role="OH"),
}

# Position -> player id. Middles sit in 3 and 6.
STARTING_SIX = {1: "s1", 2: "oh1", 3: "mb1", 4: "opp1", 5: "oh2", 6: "mb2"}


def starters():
    return {pos: ROSTER[pid] for pos, pid in STARTING_SIX.items()}


def lineup_payload(set_number=1, libero_id="l1"):
    return {
        "setNumber": set_number,
        "lineup": [
            {"position": pos, "player": ROSTER[pid].model_dump(by_alias=True)}
            for pos, pid in STARTING_SIX.items()
        ],
        "liberoId": libero_id,
        "libero": ROSTER[libero_id].model_dump(by_alias=True) if libero_id else None,
    }


@pytest.fixture()
def roster():
    return ROSTER


@pytest.fixture(name="lineup_payload")
def lineup_payload_fixture():
    return lineup_payload


@pytest.fixture(name="starters")
def starters_fixture():
    return starters


@pytest.fixture(name="play_set")
def play_set_fixture():
    return play_set


@pytest.fixture()
def match():
    """Loaded session with a set-1 lineup; we serve first."""

    session = MatchSession()
    session.load("m1", [], our_side="home", team_names={"home": "Lions", "away": "Tigers"})
    session.set_lineup(starters(), libero=ROSTER["l1"], initial_serving_side="our")
    return session


def play_set(session, winner="our", loser_points=0):
    """Finish the current set for ``winner`` (logical side).

    The loser scores ``loser_points`` first; the winner then scores until
    the set closes.
    """

    set_number = session.state.current_set
    other = "opponent" if winner == "our" else "our"
    for _ in range(loser_points):
        _point(session, other)
    while session.state.current_set == set_number and not session.state.is_match_finished:
        _point(session, winner)


def _point(session, side):
    if side == "our":
        session.point_us("attack_point")
    else:
        session.point_opponent("attack_error")
