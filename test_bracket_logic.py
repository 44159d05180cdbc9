"""
Test bracket seeding logic for preliminary games and first-round pairing.

Seeds are plain integers here so the expected pairings read directly off the
seed numbers.
"""

import pytest

from bracket import (
    bracket_rounds,
    build_knockout_bracket,
    label_for_round,
    next_power_of_two,
    next_slot,
    placeholder_bracket,
    preliminary_pairs,
    standard_seed_order,
)
from models import MatchStage


def _round(matches, round_number):
    return sorted(
        (m for m in matches if m.round == round_number), key=lambda m: m.position
    )


def _play_out(matches):
    """Advance the higher seed (lower number) through every round."""
    by_slot = {(m.round, m.position): m for m in matches}
    last = max(m.round for m in matches)
    for round_number in range(1, last + 1):
        for match in _round(matches, round_number):
            assert match.has_both_players, f"round {round_number} has an empty slot"
            winner = min(match.player1_id, match.player2_id)
            if round_number == last:
                return winner
            next_round, next_position, side = next_slot(match)
            target = by_slot[(next_round, next_position)]
            if side == 1:
                assert target.player1_id is None
                target.player1_id = winner
            else:
                assert target.player2_id is None
                target.player2_id = winner


def test_next_power_of_two():
    assert [next_power_of_two(n) for n in (1, 2, 3, 5, 8, 9, 31)] == [1, 2, 4, 8, 8, 16, 32]


def test_standard_seed_order():
    assert standard_seed_order(2) == [1, 2]
    assert standard_seed_order(4) == [1, 4, 2, 3]
    assert standard_seed_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]


def test_fewer_than_two_players_builds_nothing():
    assert build_knockout_bracket([]) == []
    assert build_knockout_bracket([1]) == []
    assert placeholder_bracket(1) == []


@pytest.mark.parametrize("num_players, rounds", [(2, [1]), (4, [1, 1, 2]), (6, [1] * 4 + [2, 2, 3])])
def test_placeholder_bracket_is_sized_for_the_field(num_players, rounds):
    matches = placeholder_bracket(num_players, category_id=7)

    assert [m.round for m in matches] == rounds
    assert all(m.stage == MatchStage.KNOCKOUT and m.category_id == 7 for m in matches)
    assert not any(m.player1_id or m.player2_id for m in matches)


def test_five_players_get_three_byes_and_one_preliminary():
    matches = build_knockout_bracket([1, 2, 3, 4, 5], category_id=7)

    preliminary = _round(matches, 1)
    assert len(preliminary) == 1
    assert (preliminary[0].player1_id, preliminary[0].player2_id) == (4, 5)

    second = _round(matches, 2)
    assert [(m.player1_id, m.player2_id) for m in second] == [(1, 2), (3, None)]
    assert len(_round(matches, 3)) == 1
    assert all(m.category_id == 7 and m.stage == MatchStage.KNOCKOUT for m in matches)


def test_preliminary_winner_fills_the_empty_bye_slot():
    matches = build_knockout_bracket([1, 2, 3, 4, 5])
    preliminary = _round(matches, 1)[0]
    assert next_slot(preliminary) == (2, 2, 2)


def test_power_of_two_uses_standard_slotting():
    matches = build_knockout_bracket(list(range(1, 9)))
    first = _round(matches, 1)
    assert [(m.player1_id, m.player2_id) for m in first] == [(1, 8), (4, 5), (2, 7), (3, 6)]
    assert all(not m.has_both_players for m in matches if m.round > 1)


def test_top_two_seeds_meet_only_in_final_for_power_of_two():
    matches = build_knockout_bracket(list(range(1, 17)))
    by_slot = {(m.round, m.position): m for m in matches}
    _play_out(matches)
    final = by_slot[(4, 1)]
    assert {final.player1_id, final.player2_id} == {1, 2}


@pytest.mark.parametrize("num_players", [6, 9, 12, 19, 31])
def test_preliminary_pairs_cross_seed(num_players):
    seeds = list(range(1, num_players + 1))
    size = next_power_of_two(num_players)
    num_byes = size - num_players
    pairs = preliminary_pairs(seeds)

    assert len(pairs) == num_players - size // 2
    for k, (slot, high, low) in enumerate(pairs):
        assert high == num_byes + 1 + k
        assert low == num_players - k
        assert slot == high


@pytest.mark.parametrize("num_players", range(2, 65))
def test_bracket_crowns_one_winner(num_players):
    seeds = list(range(1, num_players + 1))
    matches = build_knockout_bracket(seeds)

    assert len(matches) == num_players - 1
    last = max(m.round for m in matches)
    assert len(_round(matches, last)) == 1
    assert _play_out(matches) == 1


@pytest.mark.parametrize("num_players", [n for n in range(3, 65) if n & (n - 1)])
def test_byes_and_preliminary_counts(num_players):
    seeds = list(range(1, num_players + 1))
    size = next_power_of_two(num_players)
    main_slots = size // 2
    matches = build_knockout_bracket(seeds)

    preliminary = _round(matches, 1)
    preliminary_players = {p for m in preliminary for p in (m.player1_id, m.player2_id)}
    assert len(preliminary_players) == 2 * (num_players - main_slots)

    bye_players = {
        p
        for m in _round(matches, 2)
        for p in (m.player1_id, m.player2_id)
        if p is not None
    }
    assert len(bye_players) == size - num_players
    assert bye_players == set(range(1, size - num_players + 1))
    assert not bye_players & preliminary_players


def test_round_labels():
    assert label_for_round(1, 1) == "Final"
    assert label_for_round(2, 3) == "Semifinals"
    assert label_for_round(1, 3) == "Quarterfinals"
    assert label_for_round(1, 5) == "Round of 32"
    assert label_for_round(1, 8) == "Round 1"
    assert label_for_round(1, 4, is_preliminary=True) == "Preliminary Round"


def test_bracket_rounds_labels_preliminary_round():
    rounds = bracket_rounds(build_knockout_bracket([1, 2, 3, 4, 5]))
    assert [r["label"] for r in rounds] == ["Preliminary Round", "Semifinals", "Final"]
    assert [len(r["matches"]) for r in rounds] == [1, 2, 1]


def test_bracket_rounds_without_preliminary_round():
    rounds = bracket_rounds(build_knockout_bracket([1, 2, 3, 4]))
    assert [r["label"] for r in rounds] == ["Semifinals", "Final"]
