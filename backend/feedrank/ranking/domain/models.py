"""Domain models for ranking aggregates."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class PostAggregates(BaseModel):
	"""Counters and rank of a single post."""

	post_id: UUID
	community_id: UUID
	score: int
	upvotes: int = 0
	downvotes: int = 0
	comments: int = 0
	published: datetime
	balanced_rank: float = 0.0001
	balanced_rank_updated_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class CommunityAggregates(BaseModel):
	"""Activity counters of a community."""

	community_id: UUID
	interactions_month: int = 0
	interactions_month_updated_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class RankInputs(BaseModel):
	"""Inputs read together, under lock, for one rank recompute."""

	post_id: UUID
	community_id: UUID
	score: int
	published: datetime
	interactions_month: int


class RankUpdate(BaseModel):
	"""Result of one locked recompute. ``written`` is False when a newer rank was already stored."""

	post_id: UUID
	rank: float
	written: bool


class RetirementState(str, Enum):
	ACTIVE = "Active"
	REWRITING = "Rewriting"
	RETIRED = "Retired"


class SortRetirement(BaseModel):
	"""Ledger row for a declared sort type retirement."""

	retired_value: str
	replacement_value: str
	state: RetirementState
	rows_rewritten: int = 0
	declared_at: datetime
	completed_at: Optional[datetime] = None
	last_error: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


__all__ = [
	"CommunityAggregates",
	"PostAggregates",
	"RankInputs",
	"RetirementState",
	"SortRetirement",
]
