"""Async repository helpers for ranking aggregates."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Mapping, Optional
from uuid import UUID

import asyncpg

from feedrank.infra.postgres import get_pool
from feedrank.ranking.domain import models
from feedrank.ranking.domain.exceptions import DataUnavailable

RankCallback = Callable[[models.RankInputs], float]

# Connection loss, pool exhaustion and server-side failures all surface as one of these.
_UNAVAILABLE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_ACTIVITY_LOCK_KEY = "feedrank:community_activity"


class RankingRepository:
	"""Thin data-access layer around asyncpg."""

	# --- Community activity -----------------------------------------------

	async def fetch_community_volumes(self, *, window_start: datetime) -> dict[UUID, int]:
		"""Sum interactions of posts published since ``window_start`` for every community."""
		pool = await get_pool()
		try:
			async with pool.acquire() as conn:
				records = await conn.fetch(
					"""
					SELECT ca.community_id,
						COALESCE(SUM(pa.comments + pa.upvotes + pa.downvotes), 0)::bigint AS volume
					FROM community_aggregates ca
					LEFT JOIN post_aggregates pa
						ON pa.community_id = ca.community_id AND pa.published >= $1
					GROUP BY ca.community_id
					""",
					window_start,
				)
		except _UNAVAILABLE_ERRORS as exc:
			raise DataUnavailable("community_volumes_unavailable") from exc
		return {UUID(str(record["community_id"])): int(record["volume"]) for record in records}

	async def fetch_community_volume(self, community_id: UUID, *, window_start: datetime) -> Optional[int]:
		pool = await get_pool()
		try:
			async with pool.acquire() as conn:
				exists = await conn.fetchval(
					"SELECT 1 FROM community_aggregates WHERE community_id=$1",
					community_id,
				)
				if not exists:
					return None
				volume = await conn.fetchval(
					"""
					SELECT COALESCE(SUM(comments + upvotes + downvotes), 0)::bigint
					FROM post_aggregates
					WHERE community_id=$1 AND published >= $2
					""",
					community_id,
					window_start,
				)
		except _UNAVAILABLE_ERRORS as exc:
			raise DataUnavailable("community_volume_unavailable") from exc
		return int(volume or 0)

	async def store_community_volumes(self, volumes: Mapping[UUID, int], *, now: datetime) -> list[UUID]:
		"""Replace stored volumes in one transaction; returns the communities that changed."""
		if not volumes:
			return []
		ids = list(volumes.keys())
		values = [int(volumes[community_id]) for community_id in ids]
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", _ACTIVITY_LOCK_KEY)
				records = await conn.fetch(
					"""
					UPDATE community_aggregates ca
					SET interactions_month = v.volume,
						interactions_month_updated_at = $3
					FROM unnest($1::uuid[], $2::bigint[]) AS v(community_id, volume)
					WHERE ca.community_id = v.community_id
						AND ca.interactions_month IS DISTINCT FROM v.volume
					RETURNING ca.community_id
					""",
					ids,
					values,
					now,
				)
		return [UUID(str(record["community_id"])) for record in records]

	async def store_community_volume(self, community_id: UUID, volume: int, *, now: datetime) -> bool:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", _ACTIVITY_LOCK_KEY)
				current = await conn.fetchval(
					"SELECT interactions_month FROM community_aggregates WHERE community_id=$1 FOR UPDATE",
					community_id,
				)
				if current is None or int(current) == volume:
					return False
				await conn.execute(
					"""
					UPDATE community_aggregates
					SET interactions_month=$2, interactions_month_updated_at=$3
					WHERE community_id=$1
					""",
					community_id,
					volume,
					now,
				)
		return True

	async def get_community_aggregates(self, community_id: UUID) -> models.CommunityAggregates | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM community_aggregates WHERE community_id=$1",
				community_id,
			)
		return models.CommunityAggregates.model_validate(dict(record)) if record else None

	# --- Post rank ----------------------------------------------------------

	async def get_post_aggregates(self, post_id: UUID) -> models.PostAggregates | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow("SELECT * FROM post_aggregates WHERE post_id=$1", post_id)
		return models.PostAggregates.model_validate(dict(record)) if record else None

	async def recompute_post_rank(self, post_id: UUID, compute: RankCallback, *, now: datetime) -> models.RankUpdate | None:
		"""Read inputs under a row lock, compute and persist the rank in one transaction.

		Returns None when the post does not exist. A recompute evaluated at an
		older ``now`` than the stored one leaves the row alone and reports
		``written=False`` with the stored rank.
		"""
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				record = await conn.fetchrow(
					"""
					SELECT pa.post_id, pa.community_id, pa.score, pa.published,
						pa.balanced_rank, pa.balanced_rank_updated_at,
						COALESCE(ca.interactions_month, 0) AS interactions_month
					FROM post_aggregates pa
					LEFT JOIN community_aggregates ca ON ca.community_id = pa.community_id
					WHERE pa.post_id=$1
					FOR UPDATE OF pa
					""",
					post_id,
				)
				if record is None:
					return None
				updated_at = record["balanced_rank_updated_at"]
				if updated_at is not None and updated_at > now:
					return models.RankUpdate(post_id=post_id, rank=float(record["balanced_rank"]), written=False)
				rank = compute(models.RankInputs.model_validate(dict(record)))
				await conn.execute(
					"""
					UPDATE post_aggregates
					SET balanced_rank=$2, balanced_rank_updated_at=$3
					WHERE post_id=$1
					""",
					post_id,
					rank,
					now,
				)
		return models.RankUpdate(post_id=post_id, rank=rank, written=True)

	async def list_post_ids_page(
		self,
		*,
		after: UUID | None,
		limit: int,
		published_since: datetime | None = None,
		community_id: UUID | None = None,
		rank_above: float | None = None,
	) -> list[UUID]:
		"""Keyset page of post ids ordered by id, optionally filtered.

		With ``rank_above``, posts older than ``published_since`` are still listed
		while their stored rank is above that value.
		"""
		clauses: list[str] = []
		params: list[object] = []
		if after is not None:
			params.append(after)
			clauses.append(f"post_id > ${len(params)}")
		if published_since is not None:
			params.append(published_since)
			recent = f"published >= ${len(params)}"
			if rank_above is not None:
				params.append(rank_above)
				recent = f"({recent} OR balanced_rank > ${len(params)})"
			clauses.append(recent)
		if community_id is not None:
			params.append(community_id)
			clauses.append(f"community_id = ${len(params)}")
		where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
		params.append(limit)
		query = f"SELECT post_id FROM post_aggregates {where} ORDER BY post_id LIMIT ${len(params)}"
		pool = await get_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(query, *params)
		return [UUID(str(record["post_id"])) for record in records]

	# --- Sort preference retirement ---------------------------------------

	async def get_retirement(self, retired_value: str) -> models.SortRetirement | None:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"SELECT * FROM sort_type_retirement WHERE retired_value=$1",
				retired_value,
			)
		return models.SortRetirement.model_validate(dict(record)) if record else None

	async def declare_retirement(self, retired_value: str, replacement_value: str, *, now: datetime) -> models.SortRetirement:
		"""Record the retirement as rewriting unless it already completed."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				INSERT INTO sort_type_retirement (retired_value, replacement_value, state, declared_at)
				VALUES ($1, $2, 'Rewriting', $3)
				ON CONFLICT (retired_value) DO UPDATE
				SET replacement_value = EXCLUDED.replacement_value,
					last_error = NULL,
					state = CASE
						WHEN sort_type_retirement.state = 'Retired' THEN 'Retired'
						ELSE 'Rewriting'
					END
				RETURNING *
				""",
				retired_value,
				replacement_value,
				now,
			)
		return models.SortRetirement.model_validate(dict(record))

	async def rewrite_user_sort_batch(self, retired_value: str, replacement_value: str, *, limit: int) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				records = await conn.fetch(
					"""
					UPDATE local_user
					SET default_sort_type = $2
					WHERE id IN (
						SELECT id FROM local_user
						WHERE default_sort_type = $1
						LIMIT $3
						FOR UPDATE SKIP LOCKED
					)
					RETURNING id
					""",
					retired_value,
					replacement_value,
					limit,
				)
		return len(records)

	async def rewrite_site_sort(self, retired_value: str, replacement_value: str) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			records = await conn.fetch(
				"""
				UPDATE local_site
				SET default_sort_type = $2
				WHERE default_sort_type = $1
				RETURNING id
				""",
				retired_value,
				replacement_value,
			)
		return len(records)

	async def count_sort_references(self, retired_value: str) -> int:
		pool = await get_pool()
		async with pool.acquire() as conn:
			count = await conn.fetchval(
				"""
				SELECT (SELECT COUNT(*) FROM local_user WHERE default_sort_type = $1)
					+ (SELECT COUNT(*) FROM local_site WHERE default_sort_type = $1)
				""",
				retired_value,
			)
		return int(count or 0)

	async def update_retirement(
		self,
		retired_value: str,
		*,
		state: models.RetirementState,
		rows_added: int,
		completed_at: datetime | None = None,
		last_error: str | None = None,
	) -> models.SortRetirement:
		pool = await get_pool()
		async with pool.acquire() as conn:
			record = await conn.fetchrow(
				"""
				UPDATE sort_type_retirement
				SET state=$2,
					rows_rewritten = rows_rewritten + $3,
					completed_at = COALESCE($4, completed_at),
					last_error = $5
				WHERE retired_value=$1
				RETURNING *
				""",
				retired_value,
				state.value,
				rows_added,
				completed_at,
				last_error,
			)
		return models.SortRetirement.model_validate(dict(record))


__all__ = ["RankingRepository"]
