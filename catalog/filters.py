"""
catalog/filters.py -- Pagination, sorting and page metadata for list queries.

Sort values come from the client, so they are checked against a safelist
before they ever name a column. A leading "-" means descending.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from core.validator import Validator, permitted_value

MOVIE_SORT_SAFELIST: tuple[str, ...] = (
    "id",
    "title",
    "year",
    "runtime",
    "-id",
    "-title",
    "-year",
    "-runtime",
)


@dataclass
class Filters:
    page: int = 1
    page_size: int = 20
    sort: str = "id"
    sort_safelist: tuple[str, ...] = MOVIE_SORT_SAFELIST

    def sort_column(self) -> str:
        """Return the column name for sort. Raises ValueError if sort is not safelisted."""
        if self.sort not in self.sort_safelist:
            raise ValueError(f"unsafe sort parameter: {self.sort!r}")
        return self.sort.lstrip("-")

    def sort_direction(self) -> str:
        return "DESC" if self.sort.startswith("-") else "ASC"

    def limit(self) -> int:
        return self.page_size

    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def validate_filters(v: Validator, f: Filters) -> None:
    v.check(f.page > 0, "page", "must be greater than zero")
    v.check(f.page <= 10_000_000, "page", "must be a maximum of 10 million")
    v.check(f.page_size > 0, "page_size", "must be greater than zero")
    v.check(f.page_size <= 100, "page_size", "must be a maximum of 100")
    v.check(permitted_value(f.sort, *f.sort_safelist), "sort", "invalid sort value")


@dataclass
class Metadata:
    """Page metadata. last_page doubles as the total page count.

    All fields are zero when the query matched nothing.
    """

    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0

    @property
    def total_pages(self) -> int:
        return self.last_page


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    if total_records == 0:
        return Metadata()
    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=math.ceil(total_records / page_size),
        total_records=total_records,
    )
