"""
Round-robin groups: snake seeding, intra-group fixtures, standings and
qualifier selection for the knockout stage.
"""

import logging
import math
import string

from models import Group, Match, MatchStage

logger = logging.getLogger(__name__)

WIN_POINTS = 2
LOSS_POINTS = 1


def group_name(index):
    if index < len(string.ascii_uppercase):
        return f"Group {string.ascii_uppercase[index]}"
    return f"Group {index + 1}"


def snake_group_index(seed_index, num_groups):
    """Group for the seed at 0-based seed_index; direction flips every pass."""
    lane = seed_index % num_groups
    if (seed_index // num_groups) % 2 == 1:
        lane = num_groups - 1 - lane
    return lane


def round_robin_pairs(player_ids):
    pairs = []
    for i in range(len(player_ids)):
        for j in range(i + 1, len(player_ids)):
            pairs.append((player_ids[i], player_ids[j]))
    return pairs


def build_groups(seeds, group_size, category_id=None):
    """Split seeded players into balanced groups and emit all group matches.

    Returns (groups, matches). Matches point at their group through
    group_index until the groups have been stored and have ids.
    """
    if group_size < 1:
        raise ValueError("Group size must be positive.")
    if not seeds:
        return [], []

    num_groups = math.ceil(len(seeds) / group_size)
    groups = [
        Group(id=None, category_id=category_id, name=group_name(idx), player_ids=[])
        for idx in range(num_groups)
    ]
    for seed_index, player_id in enumerate(seeds):
        groups[snake_group_index(seed_index, num_groups)].player_ids.append(player_id)

    matches = []
    for group_index, group in enumerate(groups):
        for position, (p1, p2) in enumerate(round_robin_pairs(group.player_ids), start=1):
            matches.append(
                Match(
                    id=None,
                    category_id=category_id,
                    stage=MatchStage.GROUP,
                    round=0,
                    position=position,
                    player1_id=p1,
                    player2_id=p2,
                    group_id=group.id,
                    group_index=group_index,
                )
            )

    logger.debug(
        "Built %d groups of up to %d from %d players (%d matches)",
        num_groups,
        group_size,
        len(seeds),
        len(matches),
    )
    return groups, matches


def _group_matches(group, matches):
    return [m for m in matches if m.stage == MatchStage.GROUP and m.group_id == group.id]


def count_wins(group, matches):
    wins = {player_id: 0 for player_id in group.player_ids}
    for match in _group_matches(group, matches):
        if match.is_completed and match.winner_id in wins:
            wins[match.winner_id] += 1
    return wins


def rank_by_wins(group, matches):
    """Group members by group-stage wins, most first.

    Ties keep the group's seating order, which follows the seeding.
    """
    wins = count_wins(group, matches)
    return sorted(group.player_ids, key=lambda player_id: -wins[player_id])


def select_qualifiers(groups, matches, advancing_per_group):
    qualifiers = []
    for group in groups:
        qualifiers.extend(rank_by_wins(group, matches)[:advancing_per_group])
    return qualifiers


def group_standings(group, matches):
    """
    Standings table for one group.

    Ranked by points (2 for a win, 1 for a loss) and then by wins. This is the
    table players see; qualification itself uses rank_by_wins.
    """
    stats = {
        player_id: {
            "player_id": player_id,
            "played": 0,
            "wins": 0,
            "losses": 0,
            "sets_won": 0,
            "sets_lost": 0,
            "points": 0,
        }
        for player_id in group.player_ids
    }

    for match in _group_matches(group, matches):
        if not match.is_completed:
            continue
        p1 = stats.get(match.player1_id)
        p2 = stats.get(match.player2_id)
        if not p1 or not p2:
            continue
        p1["played"] += 1
        p2["played"] += 1
        p1["sets_won"] += match.player1_sets or 0
        p1["sets_lost"] += match.player2_sets or 0
        p2["sets_won"] += match.player2_sets or 0
        p2["sets_lost"] += match.player1_sets or 0
        if match.winner_id == match.player1_id:
            p1["wins"] += 1
            p2["losses"] += 1
        else:
            p2["wins"] += 1
            p1["losses"] += 1

    for row in stats.values():
        row["points"] = row["wins"] * WIN_POINTS + row["losses"] * LOSS_POINTS

    ordered = sorted(stats.values(), key=lambda row: (-row["points"], -row["wins"]))
    for idx, row in enumerate(ordered, start=1):
        row["rank"] = idx
    return ordered
