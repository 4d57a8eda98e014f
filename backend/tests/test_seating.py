import pytest

from errors import DuplicateNameError, InvalidPlayerError
from models import GameState, Player, Round, RoundScore
from seating import PlayerRegistry, RotationEngine


def make_state(*names):
    state = GameState()
    for seat, name in enumerate(names):
        state.players.append(Player(id=name, name=name, column_order=seat))
    return state


def test_add_assigns_next_seat_and_trims_name():
    state = make_state("A", "B")
    registry = PlayerRegistry(state)
    pid = registry.add("  Cleo ")
    assert registry.get(pid).name == "Cleo"
    assert registry.get(pid).column_order == 2

    with pytest.raises(InvalidPlayerError):
        registry.add("   ")
    with pytest.raises(DuplicateNameError):
        registry.add("cleo")


def test_mark_out_and_reinstate_at_saved_seat():
    state = make_state("A", "B", "C", "D")
    registry = PlayerRegistry(state)
    assert registry.mark_out("B") is True
    assert registry.mark_out("B") is False
    registry.compact()
    assert [p.id for p in registry.active()] == ["A", "C", "D"]
    assert registry.get("B").original_column_order == 1

    assert registry.reinstate("B") is True
    assert [p.id for p in registry.active()] == ["A", "B", "C", "D"]
    assert [p.column_order for p in registry.active()] == [0, 1, 2, 3]
    assert registry.get("B").rejoin_count == 1
    assert registry.get("B").original_column_order is None


def test_reinstate_without_counting_rejoin():
    state = make_state("A", "B")
    registry = PlayerRegistry(state)
    registry.mark_out("A")
    registry.reinstate("A", count_rejoin=False)
    assert registry.get("A").rejoin_count == 0
    assert registry.reinstate("A") is False


def test_remove_leaves_tombstone():
    state = make_state("A", "B", "C")
    registry = PlayerRegistry(state)
    removed = registry.remove("B")
    assert removed.id == "B"
    assert registry.find_tombstone("b").player.id == "B"
    assert [p.column_order for p in registry.active()] == [0, 1]
    assert registry.remove("B") is None


def test_rotation_index_is_validated_on_read():
    state = make_state("A", "B", "C")
    rotation = RotationEngine(state)
    state.rotation_index = 7
    assert rotation.open_card_player().id == "A"
    assert rotation.dealer().id == "C"
    assert rotation.advance() is True
    assert state.rotation_index == 2


def test_rotation_with_fewer_than_two_players():
    state = make_state("A")
    rotation = RotationEngine(state)
    assert rotation.open_card_player().id == "A"
    assert rotation.dealer() is None
    assert rotation.advance() is False
    assert RotationEngine(GameState()).open_card_player() is None


def test_rotation_ignores_out_players():
    state = make_state("A", "B", "C")
    registry = PlayerRegistry(state)
    rotation = RotationEngine(state)
    registry.mark_out("B")
    registry.compact()
    assert rotation.set_open_card_player("B") is False
    assert rotation.set_open_card_player("C") is True
    assert rotation.dealer().id == "A"


def test_advance_steps_from_stored_index_after_eliminations():
    state = make_state("A", "B", "C", "D", "E")
    registry = PlayerRegistry(state)
    rotation = RotationEngine(state)
    state.rotation_index = 4
    registry.mark_out("C")
    registry.mark_out("D")
    registry.compact()
    assert rotation.advance() is True
    assert state.rotation_index == 2
    assert rotation.open_card_player().id == "E"


def test_forget_round_shifts_tombstone_scores():
    state = make_state("A", "B")
    registry = PlayerRegistry(state)
    for rid, points in enumerate((10, 20, 30), start=1):
        state.rounds.append(Round(id=rid, scores=[RoundScore(player_id="A", score=points)]))
    registry.remove("A")
    registry.forget_round(1)
    scores = registry.find_tombstone("a").scores
    assert [(s.round_id, s.score) for s in scores] == [(1, 20), (2, 30)]
