from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from prometheus_client import REGISTRY

from feedrank.ranking.domain import models
from feedrank.ranking.services import ranker
from feedrank.ranking.services.rank_maintainer import OUTCOME_STALE, OUTCOME_WRITTEN, RankMaintainer

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def _make_post(community_id: UUID, *, score: int = 10, age: timedelta = timedelta(hours=1)) -> models.PostAggregates:
    return models.PostAggregates(
        post_id=uuid4(),
        community_id=community_id,
        score=score,
        upvotes=max(score, 0),
        downvotes=0,
        comments=0,
        published=NOW - age,
    )


class _InMemoryRankRepo:
    def __init__(self, posts: list[models.PostAggregates], volumes: dict[UUID, int]) -> None:
        self.posts = {post.post_id: post for post in posts}
        self.volumes = volumes
        self.failing: set[UUID] = set()
        self.calls: list[UUID] = []
        self.on_call = None

    async def recompute_post_rank(self, post_id: UUID, compute, *, now: datetime):
        self.calls.append(post_id)
        if self.on_call is not None:
            await self.on_call(post_id)
        if post_id in self.failing:
            raise ConnectionError("lost connection")
        post = self.posts.get(post_id)
        if post is None:
            return None
        if post.balanced_rank_updated_at is not None and post.balanced_rank_updated_at > now:
            return models.RankUpdate(post_id=post_id, rank=post.balanced_rank, written=False)
        inputs = models.RankInputs(
            post_id=post.post_id,
            community_id=post.community_id,
            score=post.score,
            published=post.published,
            interactions_month=self.volumes.get(post.community_id, 0),
        )
        post.balanced_rank = compute(inputs)
        post.balanced_rank_updated_at = now
        return models.RankUpdate(post_id=post_id, rank=post.balanced_rank, written=True)

    async def list_post_ids_page(self, *, after, limit, published_since=None, community_id=None, rank_above=None):
        ids = sorted(
            post_id
            for post_id, post in self.posts.items()
            if (
                published_since is None
                or post.published >= published_since
                or (rank_above is not None and post.balanced_rank > rank_above)
            )
            and (community_id is None or post.community_id == community_id)
        )
        if after is not None:
            ids = [post_id for post_id in ids if post_id > after]
        return ids[:limit]

    def ranks(self) -> dict[UUID, float]:
        return {post_id: post.balanced_rank for post_id, post in self.posts.items()}


@pytest.mark.asyncio
async def test_recompute_post_uses_current_score_and_volume():
    community = uuid4()
    post = _make_post(community, score=3)
    repo = _InMemoryRankRepo([post], {community: 40})
    maintainer = RankMaintainer(repository=repo)  # type: ignore[arg-type]

    before = await maintainer.recompute_post(post.post_id, now=NOW)
    post.score = 300
    after = await maintainer.recompute_post(post.post_id, now=NOW)

    assert before == ranker.scaled_rank(3, post.published, 40, NOW)
    assert after > before
    assert await maintainer.recompute_post(uuid4(), now=NOW) is None


@pytest.mark.asyncio
async def test_backfill_twice_yields_identical_ranks():
    communities = [uuid4(), uuid4()]
    posts = [
        _make_post(communities[i % 2], score=i * 3 - 5, age=timedelta(hours=i * 11))
        for i in range(12)
    ]
    repo = _InMemoryRankRepo(posts, {communities[0]: 0, communities[1]: 5000})
    maintainer = RankMaintainer(repository=repo, batch_size=5)  # type: ignore[arg-type]

    first = await maintainer.backfill(now=NOW)
    snapshot = repo.ranks()
    second = await maintainer.backfill(now=NOW)

    assert first.processed == second.processed == 12
    assert repo.ranks() == snapshot
    assert all(rank >= ranker.RANK_FLOOR for rank in snapshot.values())


@pytest.mark.asyncio
async def test_sweep_skips_old_posts_already_at_floor_but_backfill_covers_them():
    community = uuid4()
    recent = _make_post(community, age=timedelta(hours=5))
    ancient = _make_post(community, age=timedelta(days=90))
    repo = _InMemoryRankRepo([recent, ancient], {community: 1})
    maintainer = RankMaintainer(repository=repo, horizon_days=7)  # type: ignore[arg-type]

    assert ancient.balanced_rank == ranker.RANK_FLOOR
    await maintainer.sweep(now=NOW)
    assert repo.calls == [recent.post_id]

    repo.calls.clear()
    await maintainer.backfill(now=NOW)
    assert set(repo.calls) == {recent.post_id, ancient.post_id}


@pytest.mark.asyncio
async def test_failed_post_does_not_abort_sweep_and_is_retried():
    community = uuid4()
    posts = [_make_post(community, score=i) for i in range(3)]
    repo = _InMemoryRankRepo(posts, {community: 0})
    broken = sorted(repo.posts)[1]
    repo.failing.add(broken)
    maintainer = RankMaintainer(repository=repo, batch_size=10)  # type: ignore[arg-type]

    result = await maintainer.sweep(now=NOW)

    assert result.processed == 2
    assert result.failed == 1
    assert maintainer.pending_retries == [broken]

    repo.failing.clear()
    retried = await maintainer.sweep(now=NOW)

    assert retried.retried == 1
    assert retried.failed == 0
    assert maintainer.pending_retries == []
    assert repo.posts[broken].balanced_rank_updated_at == NOW


@pytest.mark.asyncio
async def test_stopped_pass_resumes_from_checkpoint():
    community = uuid4()
    posts = [_make_post(community) for _ in range(5)]
    repo = _InMemoryRankRepo(posts, {community: 0})
    maintainer = RankMaintainer(repository=repo, batch_size=2)  # type: ignore[arg-type]
    ordered = sorted(repo.posts)

    async def _stop_on_third(post_id: UUID) -> None:
        if post_id == ordered[2]:
            maintainer.stop()

    repo.on_call = _stop_on_third
    first = await maintainer.backfill(now=NOW)

    assert first.interrupted
    assert first.processed == 3
    assert maintainer.checkpoint("backfill") == ordered[2]

    repo.on_call = None
    repo.calls.clear()
    second = await maintainer.backfill(now=NOW)

    assert not second.interrupted
    assert repo.calls == ordered[3:]
    assert maintainer.checkpoint("backfill") is None


@pytest.mark.asyncio
async def test_recompute_community_only_touches_that_community():
    target, other = uuid4(), uuid4()
    mine = [_make_post(target) for _ in range(3)]
    theirs = [_make_post(other) for _ in range(2)]
    repo = _InMemoryRankRepo(mine + theirs, {target: 10, other: 10})
    maintainer = RankMaintainer(repository=repo)  # type: ignore[arg-type]

    before = {post.post_id: post.balanced_rank for post in mine}
    await maintainer.recompute_community(target, now=NOW)
    repo.volumes[target] = 100000
    result = await maintainer.recompute_community(target, now=NOW)

    assert result.processed == 3
    assert set(repo.calls) == {post.post_id for post in mine}
    for post in mine:
        assert post.balanced_rank < ranker.scaled_rank(post.score, post.published, 10, NOW)
        assert post.balanced_rank != before[post.post_id]


@pytest.mark.asyncio
async def test_post_aged_past_horizon_keeps_decaying_until_floor():
    community = uuid4()
    viral = _make_post(community, score=10000, age=timedelta(days=6, hours=23))
    repo = _InMemoryRankRepo([viral], {community: 0})
    maintainer = RankMaintainer(repository=repo, horizon_days=7)  # type: ignore[arg-type]

    await maintainer.sweep(now=NOW)
    assert viral.balanced_rank > ranker.RANK_FLOOR

    later = NOW + timedelta(days=23)
    fresh = models.PostAggregates(
        post_id=uuid4(),
        community_id=community,
        score=10,
        upvotes=10,
        downvotes=0,
        comments=0,
        published=later - timedelta(days=5),
    )
    repo.posts[fresh.post_id] = fresh
    await maintainer.sweep(now=later)

    assert viral.balanced_rank == ranker.scaled_rank(10000, viral.published, 0, later)
    assert viral.balanced_rank == ranker.RANK_FLOOR
    assert fresh.balanced_rank > viral.balanced_rank

    repo.calls.clear()
    await maintainer.sweep(now=later + timedelta(hours=1))
    assert repo.calls == [fresh.post_id]


@pytest.mark.asyncio
async def test_stop_reaches_a_pass_overlapped_by_another():
    swept, other = uuid4(), uuid4()
    repo = _InMemoryRankRepo(
        [_make_post(swept) for _ in range(6)] + [_make_post(other) for _ in range(3)],
        {swept: 0, other: 0},
    )
    maintainer = RankMaintainer(repository=repo, batch_size=2)  # type: ignore[arg-type]
    ordered = sorted(repo.posts)
    overlapping: dict[str, object] = {}

    async def _stop_then_overlap(post_id: UUID) -> None:
        if post_id == ordered[1] and not overlapping:
            overlapping["started"] = True
            maintainer.stop()
            overlapping["result"] = await maintainer.recompute_community(other, now=NOW)

    repo.on_call = _stop_then_overlap
    result = await maintainer.sweep(now=NOW)

    nested = overlapping["result"]
    assert nested.interrupted is False
    assert nested.processed == 3
    assert result.interrupted
    assert result.processed == 2
    assert maintainer.checkpoint("sweep") == ordered[1]


@pytest.mark.asyncio
async def test_older_recompute_does_not_overwrite_newer_rank():
    community = uuid4()
    post = _make_post(community, score=10)
    repo = _InMemoryRankRepo([post], {community: 0})
    maintainer = RankMaintainer(repository=repo)  # type: ignore[arg-type]

    stored = await maintainer.recompute_post(post.post_id, now=NOW)
    post.score = 5000
    earlier = NOW - timedelta(minutes=5)

    assert await maintainer.recompute_post(post.post_id, now=earlier) == stored
    assert post.balanced_rank == stored
    assert post.balanced_rank_updated_at == NOW

    result = await maintainer.sweep(now=earlier)
    assert result.processed == 0
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_stale_recompute_has_its_own_outcome_and_metric():
    community = uuid4()
    post = _make_post(community)
    repo = _InMemoryRankRepo([post], {community: 0})
    maintainer = RankMaintainer(repository=repo)  # type: ignore[arg-type]
    labels = {"trigger": "score_changed", "result": OUTCOME_STALE}
    before = REGISTRY.get_sample_value("feedrank_rank_recomputes_total", labels) or 0.0

    assert await maintainer.recompute_post_isolated(post.post_id, now=NOW) == OUTCOME_WRITTEN
    assert await maintainer.recompute_post_isolated(post.post_id, now=NOW - timedelta(seconds=1)) == OUTCOME_STALE

    assert REGISTRY.get_sample_value("feedrank_rank_recomputes_total", labels) == before + 1
