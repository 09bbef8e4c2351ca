"""Redis stream helpers for rank maintenance events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from feedrank.infra.redis import redis_client

STREAM_RANK_EVENTS = "rank:events"

EVENT_SCORE_CHANGED = "score_changed"
EVENT_INTERACTION = "interaction"


def _now_ts() -> str:
	return datetime.now(timezone.utc).isoformat()


async def publish_score_changed(post_id: UUID | str) -> None:
	payload: dict[str, Any] = {
		"event": EVENT_SCORE_CHANGED,
		"post_id": str(post_id),
		"ts": _now_ts(),
	}
	await redis_client.xadd(STREAM_RANK_EVENTS, payload)


async def publish_interaction(community_id: UUID | str) -> None:
	payload: dict[str, Any] = {
		"event": EVENT_INTERACTION,
		"community_id": str(community_id),
		"ts": _now_ts(),
	}
	await redis_client.xadd(STREAM_RANK_EVENTS, payload)
