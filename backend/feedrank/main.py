"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from feedrank.api import ops
from feedrank.infra import postgres
from feedrank.infra.scheduler import MaintenanceScheduler
from feedrank.obs.logging import configure_logging
from feedrank.ranking.api import maintenance as ranking_ops
from feedrank.ranking.domain.repo import RankingRepository
from feedrank.ranking.jobs.maintenance import (
	ACTIVITY_JOB_NAME,
	SWEEP_JOB_NAME,
	ActivityRefreshJob,
	RankSweepJob,
)
from feedrank.ranking.services.activity import ActivityTracker
from feedrank.ranking.services.rank_maintainer import RankMaintainer
from feedrank.ranking.workers.rank_events import RankEventConsumer
from feedrank.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger = configure_logging()
	await postgres.init_pool()
	repository = RankingRepository()
	tracker = ActivityTracker(repository=repository)
	maintainer = RankMaintainer(
		repository=repository,
		batch_size=settings.rank_sweep_batch_size,
		horizon_days=settings.rank_horizon_days,
	)
	app.state.activity_tracker = tracker
	app.state.rank_maintainer = maintainer

	worker_tasks: list[asyncio.Task] = []
	worker_instances: list[object] = []
	scheduler: MaintenanceScheduler | None = None
	if settings.workers_enabled:
		activity_job = ActivityRefreshJob(tracker=tracker, maintainer=maintainer)
		sweep_job = RankSweepJob(maintainer=maintainer)
		consumer = RankEventConsumer(
			tracker=tracker,
			maintainer=maintainer,
			batch_size=settings.rank_events_batch_size,
		)
		worker_instances.extend([consumer, sweep_job])
		worker_tasks.append(asyncio.create_task(consumer.run_forever(), name="ranking-event-consumer"))
		scheduler = MaintenanceScheduler()
		scheduler.start()
		scheduler.schedule_every(ACTIVITY_JOB_NAME, activity_job.run_once, minutes=settings.activity_refresh_minutes)
		scheduler.schedule_every(SWEEP_JOB_NAME, sweep_job.run_once, minutes=settings.rank_sweep_minutes)
		app.state.maintenance_scheduler = scheduler
		logger.info("feedrank.workers_started", extra={"jobs": scheduler.job_ids()})
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		for instance in worker_instances:
			stop = getattr(instance, "stop", None)
			if callable(stop):
				stop()
		if worker_tasks:
			for task in worker_tasks:
				task.cancel()
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await postgres.close_pool()


def create_app() -> FastAPI:
	application = FastAPI(title="Feedrank", lifespan=lifespan)
	application.include_router(ops.router)
	application.include_router(ranking_ops.router)
	return application


app = create_app()
