"""Monthly interaction volume per community.

Volumes are rebuilt by periodic full recompute: every pass sums
``comments + upvotes + downvotes`` over the posts published inside the
activity window and replaces the stored value. Communities without posts in
the window get 0. When the aggregates cannot be read the stored values are
left untouched and the pass reports itself as stale; the next scheduled pass
retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from feedrank.obs import metrics as obs_metrics
from feedrank.ranking.domain import models
from feedrank.ranking.domain import repo as repo_module
from feedrank.ranking.domain.exceptions import DataUnavailable, NotFoundError

_LOG = logging.getLogger(__name__)


def activity_window_start(now: datetime) -> datetime:
    """First instant of the calendar month before ``now`` (UTC)."""

    current = now.astimezone(timezone.utc)
    if current.month == 1:
        return datetime(current.year - 1, 12, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month - 1, 1, tzinfo=timezone.utc)


@dataclass(slots=True)
class RefreshResult:
    """Outcome of an activity refresh pass."""

    communities: int = 0
    changed: list[UUID] = field(default_factory=list)
    stale: bool = False


class ActivityTracker:
    """Maintains ``community_aggregates.interactions_month``."""

    def __init__(self, *, repository: repo_module.RankingRepository | None = None) -> None:
        self.repo = repository or repo_module.RankingRepository()

    async def refresh_all(self, *, now: datetime | None = None) -> RefreshResult:
        current = now or datetime.now(timezone.utc)
        window_start = activity_window_start(current)
        try:
            volumes = await self.repo.fetch_community_volumes(window_start=window_start)
        except DataUnavailable:
            obs_metrics.ACTIVITY_REFRESH_RUNS.labels(scope="all", result="stale").inc()
            _LOG.warning(
                "activity_tracker.aggregates_unavailable",
                extra={"window_start": window_start.isoformat()},
                exc_info=True,
            )
            return RefreshResult(stale=True)

        changed = await self.repo.store_community_volumes(volumes, now=current)
        obs_metrics.ACTIVITY_REFRESH_RUNS.labels(scope="all", result="success").inc()
        obs_metrics.ACTIVITY_COMMUNITIES_CHANGED.inc(len(changed))
        _LOG.info(
            "activity_tracker.refreshed",
            extra={"communities": len(volumes), "changed": len(changed)},
        )
        return RefreshResult(communities=len(volumes), changed=list(changed))

    async def refresh_community(self, community_id: UUID, *, now: datetime | None = None) -> RefreshResult:
        current = now or datetime.now(timezone.utc)
        window_start = activity_window_start(current)
        try:
            volume = await self.repo.fetch_community_volume(community_id, window_start=window_start)
        except DataUnavailable:
            obs_metrics.ACTIVITY_REFRESH_RUNS.labels(scope="community", result="stale").inc()
            _LOG.warning(
                "activity_tracker.community_unavailable",
                extra={"community_id": str(community_id)},
                exc_info=True,
            )
            return RefreshResult(communities=1, stale=True)
        if volume is None:
            raise NotFoundError("community_not_found")

        changed = await self.repo.store_community_volume(community_id, volume, now=current)
        obs_metrics.ACTIVITY_REFRESH_RUNS.labels(scope="community", result="success").inc()
        if changed:
            obs_metrics.ACTIVITY_COMMUNITIES_CHANGED.inc()
        return RefreshResult(communities=1, changed=[community_id] if changed else [])

    async def get_activity(self, community_id: UUID) -> models.CommunityAggregates:
        record = await self.repo.get_community_aggregates(community_id)
        if record is None:
            raise NotFoundError("community_not_found")
        return record


__all__ = ["ActivityTracker", "RefreshResult", "activity_window_start"]
