"""Custom exceptions for ranking services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class RankingError(Exception):
	"""Base class for ranking related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "ranking_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class InvalidInput(RankingError, ValueError):
	"""Raised when a caller passes values outside the accepted domain."""

	status_code = _HTTP_422
	detail = "invalid_input"


class DataUnavailable(RankingError):
	"""Raised when the underlying aggregates cannot be read."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "data_unavailable"


class PartialRewrite(RankingError):
	"""Raised when a sort retirement stops before every row was rewritten.

	The retirement stays in the rewriting state and is safe to retry.
	"""

	status_code = status.HTTP_409_CONFLICT
	detail = "partial_rewrite"

	def __init__(self, detail: str | None = None, *, rows_rewritten: int = 0) -> None:
		super().__init__(detail)
		self.rows_rewritten = rows_rewritten


class NotFoundError(RankingError):
	"""Thrown when a post or community is missing."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"
