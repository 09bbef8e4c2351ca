"""Keeps ``post_aggregates.balanced_rank`` in step with the rank function."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from feedrank.obs import metrics as obs_metrics
from feedrank.ranking.domain import models
from feedrank.ranking.domain import repo as repo_module
from feedrank.ranking.domain.exceptions import NotFoundError
from feedrank.ranking.services import ranker

_LOG = logging.getLogger(__name__)

TRIGGER_SCORE = "score_changed"
TRIGGER_ACTIVITY = "activity_changed"
TRIGGER_SWEEP = "sweep"
TRIGGER_BACKFILL = "backfill"
TRIGGER_RETRY = "retry"

OUTCOME_WRITTEN = "written"
OUTCOME_STALE = "skipped_stale"
OUTCOME_MISSING = "missing"
OUTCOME_FAILED = "error"


@dataclass(slots=True)
class SweepResult:
    """Counters for one pass over post aggregates.

    ``processed`` counts ranks written; ``skipped`` counts posts that vanished
    or already held a rank evaluated at a later time.
    """

    processed: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    interrupted: bool = False


def _rank_from_inputs(now: datetime):
    def _compute(inputs: models.RankInputs) -> float:
        return ranker.scaled_rank(inputs.score, inputs.published, inputs.interactions_month, now)

    return _compute


class RankMaintainer:
    """Recomputes and persists balanced ranks.

    Every recompute reads score, publication time and the community volume
    under the post's row lock and writes the rank in the same transaction.
    Batch passes walk post ids in order and remember the last id handled per
    mode, so a stopped pass resumes where it left off. Posts that fail are
    retried at the start of the next pass.

    Sweeps cover posts inside the horizon plus older posts whose stored rank
    is still above the floor, so every rank keeps decaying until it reaches
    the floor and stays there.
    """

    def __init__(
        self,
        *,
        repository: repo_module.RankingRepository | None = None,
        batch_size: int = 500,
        horizon_days: int = 7,
    ) -> None:
        self.repo = repository or repo_module.RankingRepository()
        self.batch_size = batch_size
        self.horizon_days = horizon_days
        self._checkpoints: dict[str, UUID] = {}
        self._retry: dict[UUID, None] = {}
        self._active_passes: set[asyncio.Event] = set()

    @property
    def pending_retries(self) -> list[UUID]:
        return list(self._retry)

    def checkpoint(self, mode: str) -> UUID | None:
        return self._checkpoints.get(mode)

    def stop(self) -> None:
        """Ask every running pass to stop after its current post.

        Passes started afterwards are not affected.
        """
        for stop_event in self._active_passes:
            stop_event.set()

    async def get_post(self, post_id: UUID) -> models.PostAggregates:
        record = await self.repo.get_post_aggregates(post_id)
        if record is None:
            raise NotFoundError("post_not_found")
        return record

    async def recompute_post(self, post_id: UUID, *, now: datetime | None = None, trigger: str = TRIGGER_SCORE) -> float | None:
        """Recompute one post and return its stored rank; errors propagate to the caller."""

        update = await self._recompute(post_id, now=now, trigger=trigger)
        return update.rank if update is not None else None

    async def recompute_post_isolated(self, post_id: UUID, *, now: datetime | None = None, trigger: str = TRIGGER_SCORE) -> str:
        """Recompute one post, queueing it for retry instead of raising.

        Returns one of the ``OUTCOME_*`` values.
        """

        try:
            update = await self._recompute(post_id, now=now, trigger=trigger)
        except Exception:
            obs_metrics.RANK_RECOMPUTES.labels(trigger=trigger, result=OUTCOME_FAILED).inc()
            _LOG.exception("rank_maintainer.recompute_failed", extra={"post_id": str(post_id), "trigger": trigger})
            self._retry[post_id] = None
            obs_metrics.RANK_RETRY_QUEUE.set(len(self._retry))
            return OUTCOME_FAILED
        if post_id in self._retry:
            del self._retry[post_id]
            obs_metrics.RANK_RETRY_QUEUE.set(len(self._retry))
        if update is None:
            return OUTCOME_MISSING
        return OUTCOME_WRITTEN if update.written else OUTCOME_STALE

    async def _recompute(self, post_id: UUID, *, now: datetime | None, trigger: str) -> models.RankUpdate | None:
        current = now or datetime.now(timezone.utc)
        update = await self.repo.recompute_post_rank(post_id, _rank_from_inputs(current), now=current)
        if update is None:
            outcome = OUTCOME_MISSING
        elif update.written:
            outcome = OUTCOME_WRITTEN
        else:
            outcome = OUTCOME_STALE
            _LOG.debug("rank_maintainer.stale_recompute_skipped", extra={"post_id": str(post_id), "trigger": trigger})
        obs_metrics.RANK_RECOMPUTES.labels(trigger=trigger, result=outcome).inc()
        return update

    async def recompute_community(self, community_id: UUID, *, now: datetime | None = None) -> SweepResult:
        """Recompute the live posts of a community after its volume changed."""

        current = now or datetime.now(timezone.utc)
        return await self._run_pass(
            mode=f"community:{community_id}",
            trigger=TRIGGER_ACTIVITY,
            now=current,
            published_since=current - timedelta(days=self.horizon_days),
            community_id=community_id,
        )

    async def sweep(self, *, now: datetime | None = None) -> SweepResult:
        """Periodic decay pass over posts inside the horizon or still above the floor."""

        current = now or datetime.now(timezone.utc)
        return await self._run_pass(
            mode=TRIGGER_SWEEP,
            trigger=TRIGGER_SWEEP,
            now=current,
            published_since=current - timedelta(days=self.horizon_days),
        )

    async def backfill(self, *, now: datetime | None = None) -> SweepResult:
        """Recompute every post from its current score and community volume.

        All posts are evaluated at the same ``now``, so two passes with no events
        in between write identical ranks.
        """

        current = now or datetime.now(timezone.utc)
        return await self._run_pass(mode=TRIGGER_BACKFILL, trigger=TRIGGER_BACKFILL, now=current)

    def _tally(self, result: SweepResult, outcome: str) -> None:
        if outcome == OUTCOME_WRITTEN:
            result.processed += 1
        elif outcome == OUTCOME_FAILED:
            result.failed += 1
        else:
            result.skipped += 1

    async def _retry_failed(self, now: datetime, result: SweepResult, stop_event: asyncio.Event) -> None:
        for post_id in list(self._retry):
            if stop_event.is_set():
                return
            result.retried += 1
            await self.recompute_post_isolated(post_id, now=now, trigger=TRIGGER_RETRY)

    async def _run_pass(
        self,
        *,
        mode: str,
        trigger: str,
        now: datetime,
        published_since: datetime | None = None,
        community_id: UUID | None = None,
    ) -> SweepResult:
        stop_event = asyncio.Event()
        self._active_passes.add(stop_event)
        started = time.perf_counter()
        result = SweepResult()
        try:
            await self._retry_failed(now, result, stop_event)

            cursor = self._checkpoints.get(mode)
            while not stop_event.is_set():
                post_ids = await self.repo.list_post_ids_page(
                    after=cursor,
                    limit=self.batch_size,
                    published_since=published_since,
                    community_id=community_id,
                    rank_above=ranker.RANK_FLOOR if published_since is not None else None,
                )
                for post_id in post_ids:
                    if stop_event.is_set():
                        break
                    self._tally(result, await self.recompute_post_isolated(post_id, now=now, trigger=trigger))
                    cursor = post_id
                    self._checkpoints[mode] = cursor
                if len(post_ids) < self.batch_size and not stop_event.is_set():
                    self._checkpoints.pop(mode, None)
                    break
        finally:
            self._active_passes.discard(stop_event)

        result.interrupted = stop_event.is_set()
        duration = time.perf_counter() - started
        obs_metrics.RANK_SWEEP_DURATION.labels(mode=trigger).observe(duration)
        _LOG.info(
            "rank_maintainer.pass_finished",
            extra={
                "mode": mode,
                "processed": result.processed,
                "failed": result.failed,
                "retried": result.retried,
                "skipped": result.skipped,
                "interrupted": result.interrupted,
                "duration": duration,
            },
        )
        return result


__all__ = [
    "OUTCOME_FAILED",
    "OUTCOME_MISSING",
    "OUTCOME_STALE",
    "OUTCOME_WRITTEN",
    "RankMaintainer",
    "SweepResult",
]
