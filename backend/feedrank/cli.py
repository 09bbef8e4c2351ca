"""Command line entry points for one-off ranking maintenance."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Sequence

import uvicorn

from feedrank.infra import postgres
from feedrank.obs.logging import configure_logging
from feedrank.ranking.domain.exceptions import RankingError
from feedrank.ranking.services.activity import ActivityTracker
from feedrank.ranking.services.rank_maintainer import RankMaintainer
from feedrank.ranking.services.sort_migrator import SortPreferenceMigrator
from feedrank.settings import settings


async def _backfill(_args: argparse.Namespace) -> dict:
	maintainer = RankMaintainer(batch_size=settings.rank_sweep_batch_size, horizon_days=settings.rank_horizon_days)
	result = await maintainer.backfill()
	return {
		"processed": result.processed,
		"failed": result.failed,
		"skipped": result.skipped,
		"interrupted": result.interrupted,
	}


async def _refresh_activity(_args: argparse.Namespace) -> dict:
	tracker = ActivityTracker()
	maintainer = RankMaintainer(repository=tracker.repo, batch_size=settings.rank_sweep_batch_size, horizon_days=settings.rank_horizon_days)
	result = await tracker.refresh_all()
	for community_id in result.changed:
		await maintainer.recompute_community(community_id)
	return {"communities": result.communities, "changed": len(result.changed), "stale": result.stale}


async def _retire_sort(args: argparse.Namespace) -> dict:
	migrator = SortPreferenceMigrator(args.value, batch_size=settings.retirement_batch_size)
	record = await migrator.apply_retirement()
	return {"state": record.state.value, "rows_rewritten": record.rows_rewritten, "replacement": record.replacement_value}


async def _sort_status(args: argparse.Namespace) -> dict:
	migrator = SortPreferenceMigrator(args.value)
	return {"retired": args.value, "state": (await migrator.status()).value}


def _serve(_args: argparse.Namespace) -> int:
	uvicorn.run(
		"feedrank.main:app",
		host=settings.web_host,
		port=settings.web_port,
		log_level=settings.obs_log_level.lower(),
	)
	return 0


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="feedrank", description="Balanced rank maintenance")
	commands = parser.add_subparsers(dest="command", required=True)
	commands.add_parser("serve", help="Run the HTTP service and background workers").set_defaults(handler=_serve)
	commands.add_parser("backfill", help="Recompute every post's balanced rank").set_defaults(handler=_backfill)
	commands.add_parser("refresh-activity", help="Rebuild monthly community interaction volumes").set_defaults(
		handler=_refresh_activity
	)
	retire = commands.add_parser("retire-sort", help="Rewrite stored preferences holding a retired sort type")
	retire.add_argument("value")
	retire.set_defaults(handler=_retire_sort)
	status = commands.add_parser("sort-status", help="Show the retirement state of a sort type")
	status.add_argument("value")
	status.set_defaults(handler=_sort_status)
	return parser


async def _run(args: argparse.Namespace) -> dict:
	try:
		return await args.handler(args)
	finally:
		await postgres.close_pool()


def main(argv: Sequence[str] | None = None) -> int:
	args = build_parser().parse_args(argv)
	if args.handler is _serve:
		return _serve(args)
	configure_logging()
	try:
		output = asyncio.run(_run(args))
	except RankingError as exc:
		print(json.dumps({"error": exc.detail}), file=sys.stderr)
		return 1
	print(json.dumps(output))
	return 0


if __name__ == "__main__":
	sys.exit(main())
