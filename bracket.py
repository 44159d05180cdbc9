"""
Single-elimination bracket construction.

Seeds are passed best first. When the field is not a power of two the top seeds
get byes and the rest play a preliminary round (round 1). Each preliminary
match is numbered with the slot it feeds in round 2, so the usual advancement
rule (next position = ceil(position / 2), odd position -> player 1) drops its
winner into the slot the bye fill left empty.
"""

import logging
from collections import defaultdict

from models import Match, MatchStage

logger = logging.getLogger(__name__)


def next_power_of_two(n):
    size = 1
    while size < n:
        size <<= 1
    return size


def standard_seed_order(bracket_size):
    """Seed numbers in bracket order, e.g. 8 -> [1, 8, 4, 5, 2, 7, 3, 6]."""
    order = [1]
    while len(order) < bracket_size:
        total = len(order) * 2 + 1
        order = [seed for top in order for seed in (top, total - top)]
    return order


def _knockout_match(category_id, round_number, position, player1_id=None, player2_id=None):
    return Match(
        id=None,
        category_id=category_id,
        stage=MatchStage.KNOCKOUT,
        round=round_number,
        position=position,
        player1_id=player1_id,
        player2_id=player2_id,
    )


def _empty_rounds(category_id, start_round, matches_in_round):
    matches = []
    round_number = start_round
    while matches_in_round >= 1:
        for position in range(1, matches_in_round + 1):
            matches.append(_knockout_match(category_id, round_number, position))
        matches_in_round //= 2
        round_number += 1
    return matches


def placeholder_bracket(num_players, category_id=None):
    """Knockout skeleton with every slot undetermined, sized for num_players.

    Used while qualifiers are still unknown; it is replaced wholesale once they
    are.
    """
    if num_players < 2:
        return []
    return _empty_rounds(category_id, 1, next_power_of_two(num_players) // 2)


def preliminary_pairs(seeds):
    """
    Return (target_slot, higher_seed, lower_seed) for every preliminary match.

    Best remaining seed meets worst remaining seed, second best meets second
    worst, and so on. The target slot is the round-2 slot of the higher seed.
    """
    num_players = len(seeds)
    bracket_size = next_power_of_two(num_players)
    if bracket_size == num_players:
        return []
    num_byes = bracket_size - num_players
    num_games = num_players - bracket_size // 2

    pairs = []
    for k in range(num_games):
        high = num_byes + k
        low = num_players - 1 - k
        pairs.append((high + 1, seeds[high], seeds[low]))
    return pairs


def build_knockout_bracket(seeds, category_id=None):
    """Build every knockout match from the first round through the final.

    Slots that depend on an earlier result start out empty (None) and are filled
    as winners advance.
    """
    num_players = len(seeds)
    if num_players < 2:
        return []

    bracket_size = next_power_of_two(num_players)
    main_slots = bracket_size // 2

    if bracket_size == num_players:
        order = standard_seed_order(bracket_size)
        matches = []
        for idx in range(0, bracket_size, 2):
            matches.append(
                _knockout_match(
                    category_id,
                    1,
                    idx // 2 + 1,
                    seeds[order[idx] - 1],
                    seeds[order[idx + 1] - 1],
                )
            )
        matches.extend(_empty_rounds(category_id, 2, main_slots // 2))
        logger.debug("Built %d-player bracket without preliminary round", num_players)
        return matches

    num_byes = bracket_size - num_players
    matches = [
        _knockout_match(category_id, 1, slot, high, low)
        for slot, high, low in preliminary_pairs(seeds)
    ]

    main_rounds = _empty_rounds(category_id, 2, main_slots // 2)
    first_main = [match for match in main_rounds if match.round == 2]
    for idx in range(num_byes):
        target = first_main[idx // 2]
        if idx % 2 == 0:
            target.player1_id = seeds[idx]
        else:
            target.player2_id = seeds[idx]

    matches.extend(main_rounds)
    logger.debug(
        "Built bracket: %d players, size %d, %d byes, %d preliminary matches",
        num_players,
        bracket_size,
        num_byes,
        len(matches) - len(main_rounds),
    )
    return matches


def next_slot(match):
    """Where the winner of a knockout match goes: (round, position, side)."""
    side = 1 if match.position % 2 == 1 else 2
    return match.round + 1, (match.position + 1) // 2, side


def final_round(matches):
    rounds = [m.round for m in matches if m.stage == MatchStage.KNOCKOUT]
    return max(rounds) if rounds else None


def has_preliminary_round(matches):
    counts = defaultdict(int)
    for match in matches:
        if match.stage == MatchStage.KNOCKOUT:
            counts[match.round] += 1
    if 1 not in counts or 2 not in counts:
        return False
    return counts[1] != counts[2] * 2


def label_for_round(round_number, last_round, is_preliminary=False):
    """
    Human-readable name for a knockout round.

    Names count back from the final: 1 round from the end is the Final, 2 the
    Semifinals, and so on up to the Round of 64.
    """
    if is_preliminary:
        return "Preliminary Round"

    rounds_from_end = last_round - round_number + 1
    if rounds_from_end == 1:
        return "Final"
    elif rounds_from_end == 2:
        return "Semifinals"
    elif rounds_from_end == 3:
        return "Quarterfinals"
    elif rounds_from_end == 4:
        return "Round of 16"
    elif rounds_from_end == 5:
        return "Round of 32"
    elif rounds_from_end == 6:
        return "Round of 64"
    return f"Round {round_number}"


def bracket_rounds(matches):
    """Group knockout matches into ordered, labelled rounds for display."""
    knockout = [m for m in matches if m.stage == MatchStage.KNOCKOUT]
    if not knockout:
        return []

    last_round = final_round(knockout)
    preliminary = has_preliminary_round(knockout)
    by_round = defaultdict(list)
    for match in knockout:
        by_round[match.round].append(match)

    rounds = []
    for round_number in sorted(by_round):
        round_matches = sorted(by_round[round_number], key=lambda m: m.position)
        rounds.append(
            {
                "round_number": round_number,
                "label": label_for_round(
                    round_number, last_round, preliminary and round_number == 1
                ),
                "matches": round_matches,
            }
        )
    return rounds
