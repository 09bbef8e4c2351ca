"""Redis stream consumer that reacts to score and interaction events."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict
from uuid import UUID

from feedrank.infra.redis import redis_client
from feedrank.obs import metrics as obs_metrics
from feedrank.ranking.domain.exceptions import NotFoundError
from feedrank.ranking.infra.redis_streams import EVENT_INTERACTION, EVENT_SCORE_CHANGED, STREAM_RANK_EVENTS
from feedrank.ranking.services.activity import ActivityTracker
from feedrank.ranking.services.rank_maintainer import TRIGGER_SCORE, RankMaintainer

_LOG = logging.getLogger(__name__)


class RankEventConsumer:
	"""Consumes ingestion events and keeps volumes and ranks current.

	Events of one batch are coalesced: each community is refreshed once and,
	when its volume moved, all its recent posts are recomputed. Posts with a
	score change are recomputed afterwards so they see the fresh volume.
	"""

	def __init__(
		self,
		*,
		tracker: ActivityTracker | None = None,
		maintainer: RankMaintainer | None = None,
		batch_size: int = 200,
		poll_interval: float = 1.0,
		start_id: str = "$",
	) -> None:
		self.tracker = tracker or ActivityTracker()
		self.maintainer = maintainer or RankMaintainer(repository=self.tracker.repo)
		self.batch_size = batch_size
		self.poll_interval = poll_interval
		self._last_id = start_id
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			try:
				processed = await self.process_once()
			except Exception:  # pragma: no cover - keep the consumer alive
				_LOG.exception("rank_events.process_failed")
				processed = 0
			if processed == 0:
				await asyncio.sleep(self.poll_interval)

	def stop(self) -> None:
		self._running = False

	async def process_once(self, *, block: int | None = 1000) -> int:
		streams: Dict[str, str] = {STREAM_RANK_EVENTS: self._last_id}
		messages = await redis_client.xread(streams=streams, count=self.batch_size, block=block)
		if not messages:
			return 0
		posts: dict[UUID, None] = {}
		communities: dict[UUID, None] = {}
		processed = 0
		for _stream_name, entries in messages:
			for entry_id, payload in entries:
				self._collect(dict(payload), posts, communities)
				self._last_id = entry_id
				processed += 1
		for community_id in communities:
			await self._handle_interaction(community_id)
		for post_id in posts:
			await self.maintainer.recompute_post_isolated(post_id, trigger=TRIGGER_SCORE)
		return processed

	def _collect(self, payload: dict[str, str], posts: dict[UUID, None], communities: dict[UUID, None]) -> None:
		event = payload.get("event")
		try:
			if event == EVENT_SCORE_CHANGED:
				posts[UUID(payload["post_id"])] = None
			elif event == EVENT_INTERACTION:
				communities[UUID(payload["community_id"])] = None
			else:
				_LOG.debug("rank_events.ignored", extra={"event": event})
				return
		except (KeyError, ValueError):
			_LOG.warning("rank_events.invalid_payload", extra={"payload": payload})
			return
		obs_metrics.RANK_EVENTS_CONSUMED.labels(event=event).inc()

	async def _handle_interaction(self, community_id: UUID) -> None:
		try:
			refreshed = await self.tracker.refresh_community(community_id)
		except NotFoundError:
			_LOG.debug("rank_events.missing_community", extra={"community_id": str(community_id)})
			return
		except Exception:
			_LOG.exception("rank_events.refresh_failed", extra={"community_id": str(community_id)})
			return
		if refreshed.changed:
			await self.maintainer.recompute_community(community_id)


__all__ = ["RankEventConsumer"]
