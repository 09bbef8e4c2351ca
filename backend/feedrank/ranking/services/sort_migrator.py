"""Retirement of sort preference values."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from feedrank.obs import metrics as obs_metrics
from feedrank.ranking.domain import models
from feedrank.ranking.domain import repo as repo_module
from feedrank.ranking.domain.exceptions import InvalidInput, PartialRewrite
from feedrank.ranking.domain.sort_types import SortType, replacement_for

_LOG = logging.getLogger(__name__)


class SortPreferenceMigrator:
    """Rewrites every stored reference to a retired sort value.

    The replacement comes from the fixed retirement table. A retirement is
    ``Retired`` only once a re-scan finds no user or site row holding the old
    value; until then it stays ``Rewriting`` and ``apply_retirement`` can be
    called again. The original values are not kept anywhere.
    """

    def __init__(
        self,
        retired_value: str,
        replacement_value: str | SortType | None = None,
        *,
        repository: repo_module.RankingRepository | None = None,
        batch_size: int = 1000,
    ) -> None:
        expected = replacement_for(retired_value)
        if replacement_value is not None:
            try:
                declared = SortType(replacement_value)
            except ValueError as exc:
                raise InvalidInput(f"unknown_sort_type:{replacement_value}") from exc
            if declared is not expected:
                raise InvalidInput(f"replacement_mismatch:{retired_value}")
        self.retired_value = retired_value
        self.replacement = expected
        self.repo = repository or repo_module.RankingRepository()
        self.batch_size = batch_size

    async def ledger(self) -> models.SortRetirement | None:
        return await self.repo.get_retirement(self.retired_value)

    async def status(self) -> models.RetirementState:
        record = await self.ledger()
        if record is None:
            return models.RetirementState.ACTIVE
        return record.state

    async def apply_retirement(self) -> models.SortRetirement:
        now = datetime.now(timezone.utc)
        declared = await self.repo.declare_retirement(self.retired_value, self.replacement.value, now=now)
        _LOG.info(
            "sort_migrator.rewrite_started",
            extra={"retired": self.retired_value, "replacement": self.replacement.value, "state": declared.state.value},
        )
        rewritten = 0
        try:
            while True:
                batch = await self.repo.rewrite_user_sort_batch(
                    self.retired_value,
                    self.replacement.value,
                    limit=self.batch_size,
                )
                rewritten += batch
                if batch < self.batch_size:
                    break
            rewritten += await self.repo.rewrite_site_sort(self.retired_value, self.replacement.value)
            remaining = await self.repo.count_sort_references(self.retired_value)
        except Exception as exc:
            await self._record_failure(rewritten, repr(exc))
            raise PartialRewrite(rows_rewritten=rewritten) from exc

        obs_metrics.SORT_RETIREMENT_ROWS.labels(retired=self.retired_value).inc(rewritten)
        if remaining:
            # Rows locked by another writer were skipped; they are picked up on retry.
            await self._record_failure(rewritten, f"remaining_rows:{remaining}")
            raise PartialRewrite(f"remaining_rows:{remaining}", rows_rewritten=rewritten)

        completed = declared.completed_at or now
        record = await self.repo.update_retirement(
            self.retired_value,
            state=models.RetirementState.RETIRED,
            rows_added=rewritten,
            completed_at=completed,
        )
        _LOG.info(
            "sort_migrator.retired",
            extra={"retired": self.retired_value, "rows_rewritten": rewritten},
        )
        return record

    async def _record_failure(self, rewritten: int, error: str) -> None:
        _LOG.warning(
            "sort_migrator.rewrite_incomplete",
            extra={"retired": self.retired_value, "rows_rewritten": rewritten, "error": error},
        )
        try:
            await self.repo.update_retirement(
                self.retired_value,
                state=models.RetirementState.REWRITING,
                rows_added=rewritten,
                last_error=error,
            )
        except Exception:
            _LOG.exception("sort_migrator.ledger_update_failed", extra={"retired": self.retired_value})


__all__ = ["SortPreferenceMigrator"]
