"""Pydantic schemas for ranking ops API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from feedrank.ranking.domain.models import RetirementState


class RetirementStatusResponse(BaseModel):
	retired_value: str
	replacement_value: str
	state: RetirementState
	rows_rewritten: int = 0
	completed_at: Optional[datetime] = None
	last_error: Optional[str] = None


class BackfillRequest(BaseModel):
	now: Optional[datetime] = Field(default=None, description="Evaluation time; defaults to the current time.")


class SweepResponse(BaseModel):
	processed: int
	failed: int
	retried: int
	skipped: int = 0
	interrupted: bool


class ActivityRefreshResponse(BaseModel):
	communities: int
	changed: List[UUID] = Field(default_factory=list)
	stale: bool = False


class PostRankResponse(BaseModel):
	post_id: UUID
	community_id: UUID
	score: int
	published: datetime
	balanced_rank: float
	balanced_rank_updated_at: Optional[datetime] = None


class CommunityActivityResponse(BaseModel):
	community_id: UUID
	interactions_month: int
	interactions_month_updated_at: Optional[datetime] = None
