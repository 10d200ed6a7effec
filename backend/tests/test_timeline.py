from volleyscore.services.timeline import format_timeline, last_event_label


def test_timeline_from_session(match, roster, play_set, starters):
    match.point_us("attack_point", player_id="oh1")
    match.evaluate_reception("oh2", 0)
    match.call_timeout("away")
    match.substitute("oh1", roster["b1"])
    match.swap_libero(roster["l2"])
    play_set(match, "our")

    entries = format_timeline(
        match.events, "home", "Lions", "Tigers", players=roster
    )
    by_kind = {}
    for entry in entries:
        by_kind.setdefault(entry.kind, []).append(entry)

    assert entries[0].kind == "service"
    assert entries[0].description == "Lions serves first"
    assert entries[1].kind == "lineup"

    first_point = by_kind["point"][0]
    assert first_point.team == "us"
    assert first_point.team_label == "Lions"
    assert first_point.description == "Attack point (#4 Bea Outside)"
    assert (first_point.score.home, first_point.score.away) == (1, 0)

    ace = by_kind["reception"][0]
    assert ace.team == "opponent"
    assert ace.description == "#11 Eva Outside Reception 0 (ace)"
    assert (ace.score.home, ace.score.away) == (1, 1)

    timeout = by_kind["timeout"][0]
    assert (timeout.team, timeout.team_label) == ("opponent", "Tigers")
    assert timeout.score is None

    assert by_kind["substitution"][0].description == "Substitution: #12 Ines Bench in"
    assert by_kind["libero"][0].description == "Libero change"

    set_end = by_kind["set-end"][0]
    assert set_end.description == "Set 1 to Lions"
    assert set_end.score.home == 25
    assert by_kind["set-start"][0].set_number == 2


def test_timeline_default_team_labels(match):
    match.point_opponent("service_error")
    entries = format_timeline(match.events, "away")
    point = entries[-1]
    assert point.team == "opponent"
    assert point.team_label == "Home"
    assert point.description == "Service error"


def test_last_event_label(match, roster):
    assert last_event_label(None) == "History"

    (event,) = match.point_us("block_point", player_id="mb1")
    assert last_event_label(event, roster) == "#7 Block point"
    assert last_event_label(event) == "Block point"

    (event,) = match.evaluate_reception("oh2", 3)
    assert last_event_label(event, roster) == "#11 Reception 3"

    (event,) = match.substitute("oh1", roster["b1"])
    assert last_event_label(event, roster) == "#12 In"

    (event,) = match.call_timeout("home")
    assert last_event_label(event) == "Timeout"
