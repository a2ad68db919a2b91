"""
catalog/store.py -- SQLAlchemy Core persistence for versioned Movie records.

Pattern: Repository + Data Mapper. MovieStore is the repository;
_row_to_movie is the mapper. Route handlers never touch SQL directly.

Optimistic concurrency:
  update() issues one conditional statement

      UPDATE movies SET title=?, year=?, runtime=?, genres=?, version=version+1
      WHERE id=? AND version=?

  and treats the affected-row count as the only signal. Zero rows means the
  version moved on (or the row was deleted) since the caller read it, and the
  caller gets EditConflictError. The field list is explicit; nothing is
  inferred from which attributes changed. No in-process locking is involved.

Listing:
  get_all() filters, counts, sorts and pages in a single statement. The total
  comes from COUNT(*) OVER () so it describes the same snapshot as the rows
  returned. Ordering always ends with id ASC so pages are stable.

  Title search is a word match: PostgreSQL uses to_tsvector/plainto_tsquery
  ('simple' config); SQLite requires every search word to appear in the title
  as a whole word (case-insensitive, punctuation treated as spaces), so "dead"
  does not match "Deadpool". Genre filtering is containment: PostgreSQL jsonb @>,
  SQLite one json_each probe per requested genre.

Security: all queries use bound parameters. Sort columns come from the
Filters safelist only.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Table, Text, cast, delete, false, func, literal, select
from sqlalchemy.dialects.postgresql import JSONB

from catalog.filters import Filters, Metadata, calculate_metadata
from catalog.models import Movie
from core.database import Database, metadata
from core.errors import EditConflictError, InternalError, NotFoundError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

movies = Table(
    "movies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("title", Text, nullable=False),
    Column("year", Integer, nullable=False),
    Column("runtime", Integer, nullable=False),
    Column("genres", Text, nullable=False),  # JSON array serialized as text
    Column("version", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# Characters that separate words in a title. SQLite search maps each to a space
# on both the stored title and the search text before matching whole words.
_WORD_SEPARATORS = "-:;,.!?'\"()[]/&"
_TO_SPACES = str.maketrans(_WORD_SEPARATORS, " " * len(_WORD_SEPARATORS))


def _title_words(text: str) -> list[str]:
    return text.lower().translate(_TO_SPACES).split()


def _spaced_title():
    """SQL for ' ' || lower(title) with separators replaced || ' '."""
    expr = func.lower(movies.c.title)
    for ch in _WORD_SEPARATORS:
        expr = func.replace(expr, ch, " ")
    return literal(" ").concat(expr).concat(" ")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MovieStore:
    """Repository for Movie records.

    Usage:
        store = MovieStore(db)
        movie = Movie(title="Casablanca", year=1942, runtime=102, genres=["drama", "romance"])
        store.insert(movie)            # movie.id / created_at / version=1 filled in
        movie.runtime = 103
        store.update(movie)            # EditConflictError if someone else updated first
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        db.create_all()

    def insert(self, movie: Movie) -> None:
        created_at = _now_iso()
        with self.db.connect() as conn:
            result = conn.execute(
                movies.insert().values(
                    created_at=created_at,
                    title=movie.title,
                    year=movie.year,
                    runtime=movie.runtime,
                    genres=json.dumps(movie.genres),
                    version=1,
                )
            )
            conn.commit()
        movie.id = result.inserted_primary_key[0]
        movie.created_at = created_at
        movie.version = 1

    def get(self, movie_id: int) -> Movie:
        """Fetch one movie. Raises NotFoundError for ids below 1 or missing rows."""
        if movie_id < 1:
            raise NotFoundError()
        with self.db.connect() as conn:
            row = conn.execute(movies.select().where(movies.c.id == movie_id)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_movie(row)

    def update(self, movie: Movie) -> None:
        """Persist movie if movie.version is still the stored version.

        On success movie.version becomes observed + 1. On EditConflictError
        the caller must re-fetch; retrying the same payload would fail again.
        """
        if movie.id is None or movie.version is None:
            raise InternalError("update requires a persisted movie")
        observed = movie.version
        with self.db.connect() as conn:
            result = conn.execute(
                movies.update()
                .where((movies.c.id == movie.id) & (movies.c.version == observed))
                .values(
                    title=movie.title,
                    year=movie.year,
                    runtime=movie.runtime,
                    genres=json.dumps(movie.genres),
                    version=movies.c.version + 1,
                )
            )
            conn.commit()
        if result.rowcount == 0:
            raise EditConflictError()
        movie.version = observed + 1

    def delete(self, movie_id: int) -> None:
        if movie_id < 1:
            raise NotFoundError()
        with self.db.connect() as conn:
            result = conn.execute(delete(movies).where(movies.c.id == movie_id))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError()

    def get_all(self, title: str, genres: list[str], filters: Filters) -> tuple[list[Movie], Metadata]:
        """Return one page of movies matching title and genres, plus page metadata.

        Empty title / empty genres mean "no constraint". filters must already
        have passed validate_filters().
        """
        order_col = getattr(movies.c, filters.sort_column())
        order = order_col.desc() if filters.sort_direction() == "DESC" else order_col.asc()

        query = select(movies, func.count().over().label("total_records"))
        conditions = self._title_conditions(title) + self._genre_conditions(genres)
        if conditions:
            query = query.where(*conditions)
        query = query.order_by(order, movies.c.id.asc()).limit(filters.limit()).offset(filters.offset())
        with self.db.connect() as conn:
            rows = conn.execute(query).fetchall()

        total = rows[0].total_records if rows else 0
        return [_row_to_movie(r) for r in rows], calculate_metadata(total, filters.page, filters.page_size)

    def _title_conditions(self, title: str) -> list:
        words = title.split()
        if not words:
            return []
        if self.db.dialect == "postgresql":
            return [func.to_tsvector("simple", movies.c.title).bool_op("@@")(func.plainto_tsquery("simple", title))]
        words = _title_words(title)
        if not words:
            # Only separators were given; nothing can match.
            return [false()]
        spaced = _spaced_title()
        return [spaced.like(f"% {_escape_like(w)} %", escape="\\") for w in words]

    def _genre_conditions(self, genres: list[str]) -> list:
        if not genres:
            return []
        if self.db.dialect == "postgresql":
            return [cast(movies.c.genres, JSONB).bool_op("@>")(cast(literal(json.dumps(genres)), JSONB))]
        conditions = []
        for genre in genres:
            each = func.json_each(movies.c.genres).table_valued("value")
            conditions.append(select(each.c.value).where(each.c.value == genre).exists())
        return conditions


# ---------------------------------------------------------------------------
# Row mapper (DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_movie(row) -> Movie:
    return Movie(
        id=row.id,
        created_at=row.created_at,
        title=row.title,
        year=row.year,
        runtime=row.runtime,
        genres=json.loads(row.genres) if row.genres else [],
        version=row.version,
    )
