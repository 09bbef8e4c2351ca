"""Admin endpoints for rank maintenance and sort retirements."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from feedrank.api.ops import require_admin
from feedrank.ranking.api._errors import to_http_error
from feedrank.ranking.domain import exceptions
from feedrank.ranking.schemas import dto
from feedrank.ranking.services.activity import ActivityTracker
from feedrank.ranking.services.rank_maintainer import RankMaintainer
from feedrank.ranking.services.sort_migrator import SortPreferenceMigrator
from feedrank.settings import settings

router = APIRouter(prefix="/ops", tags=["ranking:ops"], dependencies=[Depends(require_admin)])


def get_tracker(request: Request) -> ActivityTracker:
	tracker = getattr(request.app.state, "activity_tracker", None)
	return tracker or ActivityTracker()


def get_maintainer(request: Request) -> RankMaintainer:
	maintainer = getattr(request.app.state, "rank_maintainer", None)
	return maintainer or RankMaintainer(
		batch_size=settings.rank_sweep_batch_size,
		horizon_days=settings.rank_horizon_days,
	)


def get_migrator(retired: str) -> SortPreferenceMigrator:
	try:
		return SortPreferenceMigrator(retired, batch_size=settings.retirement_batch_size)
	except exceptions.RankingError as exc:
		raise to_http_error(exc) from exc


def _retirement_response(migrator: SortPreferenceMigrator, record) -> dto.RetirementStatusResponse:
	if record is None:
		return dto.RetirementStatusResponse(
			retired_value=migrator.retired_value,
			replacement_value=migrator.replacement.value,
			state=dto.RetirementState.ACTIVE,
		)
	return dto.RetirementStatusResponse.model_validate(record.model_dump())


@router.get("/sort-retirements/{retired}", response_model=dto.RetirementStatusResponse)
async def get_retirement_status(migrator: SortPreferenceMigrator = Depends(get_migrator)) -> dto.RetirementStatusResponse:
	record = await migrator.ledger()
	return _retirement_response(migrator, record)


@router.post("/sort-retirements/{retired}/apply", response_model=dto.RetirementStatusResponse)
async def apply_retirement(migrator: SortPreferenceMigrator = Depends(get_migrator)) -> dto.RetirementStatusResponse:
	try:
		record = await migrator.apply_retirement()
	except exceptions.RankingError as exc:
		raise to_http_error(exc) from exc
	return _retirement_response(migrator, record)


@router.post("/ranks/backfill", response_model=dto.SweepResponse)
async def backfill_ranks(
	payload: dto.BackfillRequest | None = None,
	maintainer: RankMaintainer = Depends(get_maintainer),
) -> dto.SweepResponse:
	now = payload.now if payload else None
	try:
		result = await maintainer.backfill(now=now)
	except exceptions.RankingError as exc:
		raise to_http_error(exc) from exc
	return dto.SweepResponse(
		processed=result.processed,
		failed=result.failed,
		retried=result.retried,
		skipped=result.skipped,
		interrupted=result.interrupted,
	)


@router.post("/activity/refresh", response_model=dto.ActivityRefreshResponse)
async def refresh_activity(
	tracker: ActivityTracker = Depends(get_tracker),
	maintainer: RankMaintainer = Depends(get_maintainer),
) -> dto.ActivityRefreshResponse:
	result = await tracker.refresh_all()
	for community_id in result.changed:
		await maintainer.recompute_community(community_id)
	return dto.ActivityRefreshResponse(
		communities=result.communities,
		changed=result.changed,
		stale=result.stale,
	)


@router.get("/posts/{post_id}/rank", response_model=dto.PostRankResponse)
async def get_post_rank(post_id: UUID, maintainer: RankMaintainer = Depends(get_maintainer)) -> dto.PostRankResponse:
	try:
		post = await maintainer.get_post(post_id)
	except exceptions.RankingError as exc:
		raise to_http_error(exc) from exc
	return dto.PostRankResponse.model_validate(post.model_dump())


@router.get("/communities/{community_id}/activity", response_model=dto.CommunityActivityResponse)
async def get_community_activity(
	community_id: UUID,
	tracker: ActivityTracker = Depends(get_tracker),
) -> dto.CommunityActivityResponse:
	try:
		record = await tracker.get_activity(community_id)
	except exceptions.RankingError as exc:
		raise to_http_error(exc) from exc
	return dto.CommunityActivityResponse.model_validate(record.model_dump())
