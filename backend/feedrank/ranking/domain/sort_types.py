"""Sort preference enumeration and its retirement table."""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional

from feedrank.ranking.domain.exceptions import InvalidInput


class SortType(str, Enum):
	"""Currently valid feed ranking strategies."""

	ACTIVE = "Active"
	HOT = "Hot"
	NEW = "New"
	OLD = "Old"
	TOP_DAY = "TopDay"
	TOP_WEEK = "TopWeek"
	TOP_MONTH = "TopMonth"
	TOP_YEAR = "TopYear"
	TOP_ALL = "TopAll"
	MOST_COMMENTS = "MostComments"
	NEW_COMMENTS = "NewComments"
	CONTROVERSIAL = "Controversial"
	BALANCED = "Balanced"

	@property
	def rank_column(self) -> Optional[str]:
		"""Persisted rank column the query layer orders by, if this core owns it."""
		if self is SortType.BALANCED:
			return "balanced_rank"
		return None


# Retired value -> surviving replacement. Entries are never removed: rows written
# by older clients may still carry a retired value.
RETIRED_SORT_TYPES: Mapping[str, SortType] = {
	"Scaled": SortType.HOT,
}


def resolve_sort_type(value: str | SortType) -> SortType:
	"""Return the valid sort type for ``value``, following the retirement table."""

	if isinstance(value, SortType):
		return value
	replacement = RETIRED_SORT_TYPES.get(value)
	if replacement is not None:
		return replacement
	try:
		return SortType(value)
	except ValueError as exc:
		raise InvalidInput(f"unknown_sort_type:{value}") from exc


def replacement_for(retired: str) -> SortType:
	"""Look up the fixed replacement of a retired value."""

	try:
		return RETIRED_SORT_TYPES[retired]
	except KeyError as exc:
		raise InvalidInput(f"sort_type_not_retired:{retired}") from exc


def effective_sort_type(user_value: str | None, site_value: str | None, fallback: str | SortType) -> SortType:
	"""Resolve the sort a feed should use: user preference, then site default, then fallback."""

	for candidate in (user_value, site_value):
		if candidate:
			return resolve_sort_type(candidate)
	return resolve_sort_type(fallback)


__all__ = [
	"RETIRED_SORT_TYPES",
	"SortType",
	"effective_sort_type",
	"replacement_for",
	"resolve_sort_type",
]
