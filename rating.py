"""
Elo updates for a single decided match.

Ratings are not clamped; a long losing streak can in principle push a rating
below zero.
"""

import math

DEFAULT_K_FACTOR = 32


def expected_score(rating, opponent_rating):
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def _round_half_up(value):
    # round() would use banker's rounding on exact halves
    return int(math.floor(value + 0.5))


def apply_result(rating_a, rating_b, winner_is_a, k_factor=None):
    """Return (new_rating_a, new_rating_b) after A beats B or B beats A."""
    if k_factor is None:
        k_factor = DEFAULT_K_FACTOR
    expected_a = expected_score(rating_a, rating_b)
    expected_b = 1 - expected_a
    actual_a = 1 if winner_is_a else 0
    actual_b = 1 - actual_a
    new_a = _round_half_up(rating_a + k_factor * (actual_a - expected_a))
    new_b = _round_half_up(rating_b + k_factor * (actual_b - expected_b))
    return new_a, new_b
