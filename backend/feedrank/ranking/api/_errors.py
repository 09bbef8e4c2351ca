"""Error translation helpers for ranking API."""

from __future__ import annotations

from fastapi import HTTPException, status

from feedrank.ranking.domain import exceptions


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, exceptions.PartialRewrite):
		return HTTPException(
			status_code=exc.status_code,
			detail={"error": exc.detail, "rows_rewritten": exc.rows_rewritten},
		)
	if isinstance(exc, exceptions.RankingError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
