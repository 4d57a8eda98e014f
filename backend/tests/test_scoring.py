from models import GameSettings, Player, Round, RoundScore
from scoring import join_score, player_totals, suggested_drop_points, totals_and_flags


def make_round(rid, **points):
    return Round(id=rid, scores=[RoundScore(player_id=pid, score=s) for pid, s in points.items()])


def test_suggested_drop_points():
    assert suggested_drop_points(101) == 20
    assert suggested_drop_points(201) == 21
    assert suggested_drop_points(500) == 50


def test_join_score_is_zero_before_anyone_scores():
    players = [Player(id="a", name="a"), Player(id="b", name="b", column_order=1)]
    assert join_score(players, {}) == 0
    assert join_score(players, {"a": 12, "b": 30}) == 31


def test_out_players_do_not_set_the_rejoin_score():
    players = [
        Player(id="a", name="a"),
        Player(id="b", name="b", column_order=1),
        Player(id="c", name="c", is_out=True, original_column_order=2),
    ]
    rounds = [make_round(1, a=0, b=40, c=110)]
    flags = totals_and_flags(players, rounds, GameSettings(max_points=101, drop_points=20), {"c"})
    assert player_totals(rounds) == {"a": 0, "b": 40, "c": 110}
    assert flags["c"].rejoin_score == 41
    assert flags["c"].can_rejoin is True
    assert flags["b"].can_rejoin is False
    assert flags["c"].can_drop is False

    flags = totals_and_flags(players, rounds, GameSettings(max_points=101, drop_points=20), set())
    assert flags["c"].can_rejoin is False


def test_join_score_never_exceeds_ceiling():
    players = [Player(id="a", name="a")]
    assert join_score(players, {"a": 101}, max_points=101) == 101
    assert join_score(players, {"a": 50}, max_points=101) == 51
