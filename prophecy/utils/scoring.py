"""
Scoring Engine for Prophecy League

This module turns a (prediction, actual result) pair into points and applies
the derby, joker and late-submission modifiers on top. It has no database
access; the settlement engine in prophecy/services/settlement.py feeds it.
"""

import re
from collections import namedtuple

EXACT_SCORE_POINTS = 3
CORRECT_RESULT_POINTS = 1
DERBY_MULTIPLIER = 2
JOKER_MULTIPLIER = 2
LATE_PENALTY = 3

# Numeric strings: up to three ASCII digits
SCORE_STRING_PATTERN = re.compile(r"[0-9]{1,3}")

ScoreResult = namedtuple("ScoreResult", ["points", "penalty"])


def is_valid_score(value):
    """A score is a non-negative int (bools are not scores)"""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def parse_score(value):
    """Coerce submitted input to a score; None when it is not one"""
    if is_valid_score(value):
        return value
    if isinstance(value, str) and SCORE_STRING_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    return None


def _sign(value):
    return (value > 0) - (value < 0)


def calculate_points(predicted, actual):
    """
    Calculate base points for a single prediction.

    Returns:
        3 for the exact score
        1 for the correct result direction (home win, draw, away win)
        0 otherwise, for a malformed prediction, or when there is no result

    Args:
        predicted: (home, away) predicted score
        actual: (home, away) final score, or None
    """
    if not predicted or not actual:
        return 0

    predicted_home, predicted_away = predicted
    actual_home, actual_away = actual

    if not (is_valid_score(predicted_home) and is_valid_score(predicted_away)):
        return 0

    if actual_home is None or actual_away is None:
        return 0

    if predicted_home == actual_home and predicted_away == actual_away:
        return EXACT_SCORE_POINTS

    if _sign(predicted_home - predicted_away) == _sign(actual_home - actual_away):
        return CORRECT_RESULT_POINTS

    return 0


def apply_modifiers(
    base_points, is_derby=False, is_joker=False, is_late=False, gameweek_penalty=0
):
    """
    Apply derby and joker doubling, and work out any late penalty.

    The penalty is a gameweek-level value: it is only returned when the
    prediction is late and the gameweek has not been penalized yet.

    Returns:
        ScoreResult(points, penalty)
    """
    points = base_points

    if is_derby:
        points *= DERBY_MULTIPLIER

    if is_joker:
        points *= JOKER_MULTIPLIER

    penalty = LATE_PENALTY if is_late and not gameweek_penalty else 0

    return ScoreResult(points, penalty)
