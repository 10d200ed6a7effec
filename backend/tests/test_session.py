import logging

import pytest

from volleyscore.exceptions import (
    ActionRejected,
    InvalidEvent,
    LineupRequired,
    NoMatchLoaded,
    SubstitutionRejected,
    TimeoutLimitReached,
)
from volleyscore.schemas import build_event, dump_events
from volleyscore.session import MatchSession


def _reach(match, home, away):
    """Alternate points until the set score is ``home``-``away`` (we are home)."""
    while match.state.home_score < home or match.state.away_score < away:
        if match.state.home_score < home:
            match.point_us("attack_point")
        if match.state.away_score < away:
            match.point_opponent("service_error")


def test_actions_need_a_loaded_match():
    with pytest.raises(NoMatchLoaded):
        MatchSession().point_us()


def test_scoring_without_lineup_is_rejected():
    session = MatchSession()
    session.load("m1", [])
    with pytest.raises(LineupRequired) as exc:
        session.point_us()
    assert exc.value.code == "lineup_required"
    assert session.events == ()


def test_first_set_lineup_needs_serve_choice(starters):
    session = MatchSession()
    session.load("m1", [])
    with pytest.raises(InvalidEvent):
        session.set_lineup(starters())
    assert session.events == ()

    appended = session.set_lineup(starters(), initial_serving_side="opponent")
    assert [e.type for e in appended] == ["SET_SERVICE_CHOICE", "SET_LINEUP"]
    assert session.state.serving_side == "opponent"
    assert session.state.has_lineup_for_current_set


def test_second_lineup_for_same_set_is_rejected(match, starters):
    with pytest.raises(InvalidEvent):
        match.set_lineup(starters(), initial_serving_side="our")
    assert len(match.events) == 2


def test_point_appends_single_event(match):
    appended = match.point_us("serve_point", player_id="s1")
    assert [e.type for e in appended] == ["POINT_US"]
    assert appended[0].payload.player_id == "s1"
    assert match.state.home_score == 1
    assert match.events[-1] is appended[0]


def test_reception_zero_scores_for_opponent(match):
    appended = match.evaluate_reception("oh1", 0)
    assert [e.type for e in appended] == ["RECEPTION_EVAL"]
    assert (match.state.home_score, match.state.away_score) == (0, 1)
    assert match.state.serving_side == "opponent"

    match.evaluate_reception("oh2", 4)
    assert (match.state.home_score, match.state.away_score) == (0, 1)


def test_deuce_set_end_to_end(match):
    _reach(match, 24, 24)
    assert match.state.current_set == 1

    match.point_us()
    assert (match.state.home_score, match.state.away_score) == (25, 24)
    assert not match.state.is_set_finished

    appended = match.point_us()
    assert [e.type for e in appended] == ["POINT_US", "SET_END", "SET_START"]
    assert appended[1].payload.winner == "home"
    assert (appended[1].payload.score.home, appended[1].payload.score.away) == (26, 24)

    state = match.state
    assert state.current_set == 2
    assert state.sets_won_home == 1
    assert (state.home_score, state.away_score) == (0, 0)
    # We served first in set 1, so set 2 opens with the opponent serving.
    assert state.serving_side == "opponent"
    assert state.has_lineup_for_current_set is False
    assert state.set_summary_open is True
    assert state.set_summary.home == 26


def test_scoring_next_set_needs_new_lineup(match, play_set, starters):
    play_set(match, "our")
    with pytest.raises(LineupRequired):
        match.point_us()
    match.set_lineup(starters())
    assert match.point_us()


def test_undo_last_action_removes_synthetic_events(match):
    _reach(match, 24, 23)
    before = len(match.events)
    match.point_us()
    assert match.state.current_set == 2
    assert len(match.events) == before + 3

    state = match.undo_last_action()
    assert len(match.events) == before
    assert state.current_set == 1
    assert (state.home_score, state.away_score) == (24, 23)
    assert not state.is_set_finished
    assert state.sets_won_home == 0


def test_undo_is_exact_inverse(match):
    match.point_us()
    snapshot = match.state
    match.point_opponent()
    match.undo()
    assert match.state == snapshot


def test_undo_count_is_clamped(match):
    state = match.undo(50)
    assert match.events == ()
    assert state.has_lineup_for_current_set is False
    with pytest.raises(ValueError):
        match.undo(-1)


def test_redo_restores_undone_action(match):
    _reach(match, 24, 20)
    match.point_us()
    after = match.state
    match.undo_last_action()
    assert match.can_redo

    state = match.redo()
    assert state == after
    assert state.current_set == 2
    assert not match.can_redo


def test_new_action_clears_redo(match):
    match.point_us()
    match.undo()
    assert match.can_redo
    match.point_opponent()
    assert not match.can_redo
    assert match.redo() == match.state


def test_match_finished_ignores_further_actions(match, play_set, starters, caplog):
    play_set(match, "our")
    match.set_lineup(starters())
    play_set(match, "our")
    match.set_lineup(starters())
    play_set(match, "our", loser_points=10)

    state = match.state
    assert state.is_match_finished
    assert state.match_winner == "home"
    assert (state.sets_won_home, state.sets_won_away) == (3, 0)
    assert state.current_set == 3
    assert [s.away for s in state.sets_scores] == [0, 0, 10]
    assert match.events[-1].type == "SET_END"

    count = len(match.events)
    with caplog.at_level(logging.WARNING, logger="volleyscore.session"):
        assert match.point_us() == []
        assert match.call_timeout("home") == []
    assert len(match.events) == count
    assert "is finished" in caplog.text


def test_deciding_set_needs_its_own_toss(match, play_set, starters):
    play_set(match, "our")
    for winner in ("opponent", "our", "opponent"):
        match.set_lineup(starters())
        play_set(match, winner)
    assert match.state.current_set == 5
    assert (match.state.sets_won_home, match.state.sets_won_away) == (2, 2)

    with pytest.raises(InvalidEvent):
        match.set_lineup(starters())
    match.set_lineup(starters(), initial_serving_side="opponent")
    assert match.state.serving_side == "opponent"

    _reach(match, 14, 13)
    appended = match.point_us()
    assert [e.type for e in appended] == ["POINT_US", "SET_END"]
    assert match.state.is_match_finished


def test_scoring_ignored_while_set_finished(match, caplog):
    match.point_us()
    closing = build_event(
        "SET_END",
        {"setNumber": 1, "winner": "home", "score": {"home": 1, "away": 0}},
        match_id="m1",
    )
    resumed = MatchSession()
    resumed.load("m1", dump_events(match.events + (closing,)))
    assert resumed.state.is_set_finished

    with caplog.at_level(logging.WARNING, logger="volleyscore.session"):
        assert resumed.point_opponent() == []
    assert resumed.state.away_score == 0
    assert "Set 1 of match m1 is finished" in caplog.text


@pytest.mark.parametrize(
    "winner, score",
    [
        ("away", {"home": 3, "away": 0}),
        ("home", {"home": 1, "away": 0}),
        ("away", {"home": 1, "away": 0}),
    ],
    ids=["trailing-side", "target-not-reached", "wrong-winner"],
)
def test_set_end_must_match_the_score(match, winner, score):
    match.point_us()
    count = len(match.events)
    with pytest.raises(InvalidEvent):
        match.add_event("SET_END", {"setNumber": 1, "winner": winner, "score": score})
    assert len(match.events) == count
    state = match.state
    assert not state.is_set_finished
    assert (state.sets_won_home, state.sets_won_away) == (0, 0)


def test_set_end_after_a_won_set_is_rejected(match):
    while not match.state.is_set_finished and match.state.current_set == 1:
        match.point_us()
    assert match.state.current_set == 2
    with pytest.raises(InvalidEvent):
        match.add_event(
            "SET_END", {"setNumber": 2, "winner": "home", "score": {"home": 0, "away": 0}}
        )


def test_service_choice_only_in_first_and_deciding_sets(match, play_set):
    play_set(match, "our")
    with pytest.raises(InvalidEvent):
        match.choose_service("our")


def test_event_for_other_set_is_rejected(match):
    with pytest.raises(InvalidEvent):
        match.add_event("TIMEOUT", {"team": "home", "setNumber": 2})


def test_timeout_limit(match):
    match.call_timeout("away")
    match.call_timeout("away")
    assert match.state.timeouts_away == 2
    with pytest.raises(TimeoutLimitReached) as exc:
        match.call_timeout("away")
    assert isinstance(exc.value, ActionRejected)
    match.call_timeout("home")
    assert match.state.timeouts_home == 1


def test_substitution_flow(match, roster):
    match.substitute("oh1", roster["b1"])
    assert "b1" in match.state.on_court_ids()
    assert match.state.current_set_substitutions.total == 1

    with pytest.raises(SubstitutionRejected) as exc:
        match.substitute("b1", roster["b5"])
    assert exc.value.reason == "already paired with a different player"
    assert exc.value.code == "pair_conflict"

    match.substitute("b1", roster["oh1"])
    assert match.state.on_court[1].player.id == "oh1"
    with pytest.raises(SubstitutionRejected) as exc:
        match.substitute("oh1", roster["b1"])
    assert exc.value.reason == "pair exhausted"


def test_substitution_rejections(match, roster):
    with pytest.raises(SubstitutionRejected) as exc:
        match.substitute("b2", roster["b1"])
    assert exc.value.code == "player_out_not_on_court"

    with pytest.raises(SubstitutionRejected) as exc:
        match.substitute("oh1", roster["l2"])
    assert exc.value.code == "role_mismatch"

    with pytest.raises(SubstitutionRejected) as exc:
        match.substitute("oh1", roster["l1"])
    assert exc.value.code == "role_mismatch"
    assert match.state.current_set_substitutions.total == 0


def test_substitution_without_lineup(starters, roster):
    session = MatchSession()
    session.load("m1", [])
    with pytest.raises(LineupRequired):
        session.substitute("oh1", roster["b1"])


def test_libero_swap(match, roster):
    for libero_id in ("l2", "l1", "l2", "l1", "l2"):
        match.swap_libero(roster[libero_id])
    state = match.state
    assert state.current_libero_id == "l2"
    assert state.current_set_substitutions.total == 0
    assert state.current_set_substitutions.pairs == ()

    with pytest.raises(SubstitutionRejected) as exc:
        match.swap_libero(roster["b1"])
    assert exc.value.code == "role_mismatch"


def test_listeners_receive_every_change(match):
    seen = []
    unsubscribe = match.subscribe(seen.append)
    match.point_us()
    match.undo()
    assert [s.home_score for s in seen] == [1, 0]

    unsubscribe()
    match.point_us()
    assert len(seen) == 2


def test_dismiss_set_summary(match, play_set):
    play_set(match, "opponent")
    assert match.state.set_summary.winner == "away"
    state = match.dismiss_set_summary(1)
    assert state.set_summary is None


def test_load_replays_and_dismisses_old_summaries(match, play_set, starters):
    play_set(match, "our")
    match.set_lineup(starters())
    match.point_opponent()
    stored = dump_events(match.events)

    resumed = MatchSession()
    state = resumed.load("m1", stored, our_side="home")
    assert state.current_set == 2
    assert state.away_score == 1
    assert state.set_summary is None
    assert resumed.changes_since_save == 0
    assert state == match.state.model_copy(update={"set_summary": None, "set_summary_open": False})


def test_load_drops_duplicate_events(match, caplog):
    match.point_us()
    stored = dump_events(match.events)
    with caplog.at_level(logging.WARNING, logger="volleyscore.session"):
        state = MatchSession().load("m1", stored + [stored[-1]])
    assert state.home_score == 1
    assert "duplicate event id" in caplog.text
    assert len([r for r in caplog.records if "duplicate" in r.getMessage()]) == 1


def test_load_rejects_other_match_events(match):
    stored = dump_events(match.events)
    with pytest.raises(InvalidEvent):
        MatchSession().load("other", stored)


def test_unsaved_change_tracking(match):
    match.mark_saved()
    match.point_us()
    match.call_timeout("home")
    assert match.changes_since_save == 2
    assert match.types_since_save == {"POINT_US", "TIMEOUT"}
    match.mark_saved()
    assert match.changes_since_save == 0
