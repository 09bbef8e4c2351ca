from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feedrank.ranking.domain.exceptions import InvalidInput
from feedrank.ranking.services import ranker

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def test_fresh_post_outranks_month_old_post():
    fresh = ranker.scaled_rank(10, NOW, 0, NOW)
    month_old = ranker.scaled_rank(10, NOW - timedelta(days=30), 0, NOW)
    assert fresh >= ranker.RANK_FLOOR
    assert fresh > month_old
    assert month_old == ranker.RANK_FLOOR


def test_busy_community_ranks_lower_for_same_votes():
    published = NOW - timedelta(hours=3)
    quiet = ranker.scaled_rank(100, published, 0, NOW)
    busy = ranker.scaled_rank(100, published, 10000, NOW)
    assert busy < quiet


def test_small_community_post_can_outrank_big_community_post():
    published = NOW - timedelta(hours=2)
    small = ranker.scaled_rank(10, published, 20, NOW)
    big = ranker.scaled_rank(100, published, 500000, NOW)
    assert small > big


@pytest.mark.parametrize("score", [-50, -1, 0, 1, 5, 1000, 10**9])
@pytest.mark.parametrize("age_hours", [0, 1, 24, 24 * 7, 24 * 365])
@pytest.mark.parametrize("interactions", [0, 1, 250, 10**7])
def test_rank_is_strictly_positive(score, age_hours, interactions):
    rank = ranker.scaled_rank(score, NOW - timedelta(hours=age_hours), interactions, NOW)
    assert rank > 0


def test_rank_monotonic_in_score():
    published = NOW - timedelta(hours=5)
    ranks = [ranker.scaled_rank(score, published, 42, NOW) for score in range(-10, 200, 7)]
    assert ranks == sorted(ranks)


def test_rank_never_increases_with_age():
    ranks = [ranker.scaled_rank(25, NOW - timedelta(hours=hours), 42, NOW) for hours in range(0, 400, 6)]
    assert ranks == sorted(ranks, reverse=True)


def test_rank_never_increases_with_activity():
    published = NOW - timedelta(hours=1)
    ranks = [ranker.scaled_rank(25, published, volume, NOW) for volume in (0, 1, 10, 100, 1000, 10**6)]
    assert ranks == sorted(ranks, reverse=True)


def test_future_post_is_treated_as_new():
    future = ranker.scaled_rank(10, NOW + timedelta(hours=6), 0, NOW)
    assert future == ranker.scaled_rank(10, NOW, 0, NOW)


def test_rank_is_deterministic():
    published = NOW - timedelta(minutes=90)
    assert ranker.scaled_rank(7, published, 3, NOW) == ranker.scaled_rank(7, published, 3, NOW)


def test_known_value_for_new_post_in_empty_community():
    # log10(12) / 2**1.8 / log10(2)
    assert ranker.scaled_rank(10, NOW, 0, NOW) == pytest.approx(1.0296, rel=1e-3)


def test_negative_activity_is_rejected():
    with pytest.raises(InvalidInput):
        ranker.scaled_rank(1, NOW, -1, NOW)


def test_naive_timestamp_is_rejected():
    with pytest.raises(InvalidInput):
        ranker.scaled_rank(1, datetime(2026, 1, 1), 0, NOW)


def test_non_integer_score_is_rejected():
    with pytest.raises(InvalidInput):
        ranker.scaled_rank(1.5, NOW, 0, NOW)  # type: ignore[arg-type]
