"""Scheduled passes for community activity and rank decay."""

from __future__ import annotations

import time

from feedrank.obs import metrics as obs_metrics
from feedrank.obs.logging import bind_context, reset_context
from feedrank.ranking.services.activity import ActivityTracker, RefreshResult
from feedrank.ranking.services.rank_maintainer import RankMaintainer, SweepResult

ACTIVITY_JOB_NAME = "ranking-activity-refresh"
SWEEP_JOB_NAME = "ranking-rank-sweep"


class ActivityRefreshJob:
	"""Rebuilds every community's monthly volume, then re-ranks the communities that moved."""

	def __init__(self, *, tracker: ActivityTracker, maintainer: RankMaintainer) -> None:
		self.tracker = tracker
		self.maintainer = maintainer

	async def run_once(self) -> RefreshResult:
		started = time.perf_counter()
		tokens = bind_context(job=ACTIVITY_JOB_NAME)
		try:
			result = await self.tracker.refresh_all()
			for community_id in result.changed:
				await self.maintainer.recompute_community(community_id)
			obs_metrics.record_job_run(
				ACTIVITY_JOB_NAME,
				result="stale" if result.stale else "success",
				duration_seconds=time.perf_counter() - started,
			)
			return result
		except Exception:
			obs_metrics.record_job_run(ACTIVITY_JOB_NAME, result="error", duration_seconds=time.perf_counter() - started)
			raise
		finally:
			reset_context(tokens)


class RankSweepJob:
	"""Periodic decay pass over recent posts."""

	def __init__(self, *, maintainer: RankMaintainer) -> None:
		self.maintainer = maintainer

	async def run_once(self) -> SweepResult:
		started = time.perf_counter()
		tokens = bind_context(job=SWEEP_JOB_NAME)
		try:
			result = await self.maintainer.sweep()
			obs_metrics.record_job_run(
				SWEEP_JOB_NAME,
				result="interrupted" if result.interrupted else "success",
				duration_seconds=time.perf_counter() - started,
			)
			return result
		except Exception:
			obs_metrics.record_job_run(SWEEP_JOB_NAME, result="error", duration_seconds=time.perf_counter() - started)
			raise
		finally:
			reset_context(tokens)

	def stop(self) -> None:
		self.maintainer.stop()


__all__ = ["ACTIVITY_JOB_NAME", "SWEEP_JOB_NAME", "ActivityRefreshJob", "RankSweepJob"]
