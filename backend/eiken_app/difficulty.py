from __future__ import annotations

import logging
from typing import Union

from .grade_profiles import Grade, GradeProfile, lookup

logger = logging.getLogger(__name__)

GRAMMAR_WEIGHT = 0.4
MOVABLE_WEIGHT = 0.3
TOKEN_WEIGHT = 0.2
ANCHOR_WEIGHT = 0.1


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def token_norm(token_count: int, profile: GradeProfile) -> float:
    low = profile.token_count_range.min
    high = profile.token_count_range.max
    if high <= low:
        return 1.0 if token_count >= high else 0.0
    return _clamp((token_count - low) / (high - low))


def score(
    token_count: int,
    anchor_count: int,
    movable_count: int,
    grammar_tier: int,
    grade: Union[str, Grade, GradeProfile],
) -> float:
    """Difficulty index in [0, 1] for a rearrangement item.

    0.4 * tier/max_tier + 0.3 * movables/max_movables + 0.2 * token_norm
    + 0.1 * (1 - anchors/tokens), each term clamped to [0, 1] and the
    normalisation constants taken from the grade profile.
    """
    profile = grade if isinstance(grade, GradeProfile) else lookup(grade)

    grammar_norm = _clamp(grammar_tier / profile.max_grammar_tier) if profile.max_grammar_tier > 0 else 0.0
    movables_norm = _clamp(movable_count / profile.max_movables) if profile.max_movables > 0 else 0.0
    anchor_ratio = _clamp(anchor_count / token_count) if token_count > 0 else 1.0

    index = (
        GRAMMAR_WEIGHT * grammar_norm
        + MOVABLE_WEIGHT * movables_norm
        + TOKEN_WEIGHT * token_norm(token_count, profile)
        + ANCHOR_WEIGHT * (1 - anchor_ratio)
    )
    logger.debug(
        "difficulty %s: tokens=%d anchors=%d movables=%d tier=%d -> %.4f",
        profile.grade.value, token_count, anchor_count, movable_count, grammar_tier, index,
    )
    return round(_clamp(index), 2)
