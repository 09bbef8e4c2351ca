"""Balanced rank scoring for community posts."""

from __future__ import annotations

import math
from datetime import datetime

from feedrank.ranking.domain.exceptions import InvalidInput

RANK_FLOOR = 0.0001
GRAVITY = 1.8
# Added to the age in hours so brand new posts do not divide by ~0.
AGE_OFFSET_HOURS = 2.0


def _check_timestamp(name: str, value: datetime) -> None:
    if not isinstance(value, datetime):
        raise InvalidInput(f"{name}_not_datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInput(f"{name}_naive_datetime")


def _check_score(score: int) -> None:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidInput("score_not_integer")


def _age_hours(published: datetime, now: datetime) -> float:
    # Posts dated in the future get no extra boost.
    return max((now - published).total_seconds() / 3600.0, 0.0)


def hot_rank(score: int, published: datetime, now: datetime) -> float:
    """Decayed popularity of a post, before community normalization.

    Power-law decay over the post's age: log10 of the score (never below
    log10(2)) divided by ``(age_hours + 2) ** 1.8``.
    """

    _check_score(score)
    _check_timestamp("published", published)
    _check_timestamp("now", now)
    popularity = math.log10(max(2, score + 2))
    return popularity / math.pow(_age_hours(published, now) + AGE_OFFSET_HOURS, GRAVITY)


def activity_divisor(interactions_month: int) -> float:
    """Normalization applied to a community's monthly interaction volume."""

    if isinstance(interactions_month, bool) or not isinstance(interactions_month, int):
        raise InvalidInput("interactions_month_not_integer")
    if interactions_month < 0:
        raise InvalidInput("interactions_month_negative")
    return math.log10(2 + interactions_month)


def scaled_rank(score: int, published: datetime, interactions_month: int, now: datetime) -> float:
    """Compute the balanced rank of a post.

    The decayed popularity is divided by ``log10(2 + interactions_month)`` so an
    equally voted post ranks lower in a busier community. The result is never
    below ``RANK_FLOOR``.
    """

    divisor = activity_divisor(interactions_month)
    rank = hot_rank(score, published, now) / divisor
    if not math.isfinite(rank):
        raise InvalidInput("rank_not_finite")
    return max(rank, RANK_FLOOR)


__all__ = ["RANK_FLOOR", "activity_divisor", "hot_rank", "scaled_rank"]
