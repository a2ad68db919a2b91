"""
catalog/models.py -- Domain dataclass for the versioned Movie record.

Movie is a pure data container; catalog/store.py does the work. version is
None until the store persists the record (then 1, +1 per successful update).
runtime is stored in minutes; the "<n> mins" wire format belongs to api/models.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from core.validator import Validator, unique


@dataclass
class Movie:
    title: str
    year: int
    runtime: int  # minutes
    genres: list[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: Optional[str] = None  # ISO 8601, set by store on insert
    version: Optional[int] = None


def validate_movie(v: Validator, movie: Movie) -> None:
    v.check(movie.title != "", "title", "must be provided")
    v.check(len(movie.title.encode("utf-8")) <= 500, "title", "must not be more than 500 bytes long")

    v.check(movie.year != 0, "year", "must be provided")
    v.check(movie.year >= 1888, "year", "must be greater than 1888")
    v.check(movie.year <= datetime.now(timezone.utc).year, "year", "must not be in the future")

    v.check(movie.runtime != 0, "runtime", "must be provided")
    v.check(movie.runtime > 0, "runtime", "must be a positive integer")

    v.check(movie.genres is not None and len(movie.genres) >= 1, "genres", "must contain at least 1 genre")
    v.check(len(movie.genres or []) <= 5, "genres", "must not contain more than 5 genres")
    v.check(unique(movie.genres or []), "genres", "must not contain duplicate values")
