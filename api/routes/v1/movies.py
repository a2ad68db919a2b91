"""
api/routes/v1/movies.py -- Movie catalog REST endpoints.

Routes:
  GET    /v1/movies        -- filtered, sorted, paginated list   (movies:read)
  POST   /v1/movies        -- create                             (movies:write)
  GET    /v1/movies/{id}   -- detail                             (movies:read)
  PATCH  /v1/movies/{id}   -- partial update, version-checked    (movies:write)
  DELETE /v1/movies/{id}   -- delete                             (movies:write)

Edit conflicts:
  PATCH reads the movie, applies the supplied fields and writes it back with
  the version it read. If another writer got in between, MovieStore.update()
  raises EditConflictError (409) and the client must re-fetch. Clients that
  want to pin the version they last saw send X-Expected-Version; a mismatch
  is reported as the same 409 before anything is written.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from api.limiter import limiter
from api.models import MovieCreate, MovieListResponse, MovieResponse, MovieUpdate, PageMetadata
from auth.dependencies import require_permission
from auth.models import User
from auth.permissions import MOVIES_READ, MOVIES_WRITE
from catalog.filters import Filters, validate_filters
from catalog.models import Movie, validate_movie
from catalog.store import MovieStore
from core.errors import EditConflictError
from core.validator import Validator

router = APIRouter()


def _to_response(movie: Movie) -> MovieResponse:
    return MovieResponse(
        id=movie.id,
        title=movie.title,
        year=movie.year,
        runtime=movie.runtime,
        genres=movie.genres,
        version=movie.version,
    )


@limiter.limit("60/minute")
@router.get("/movies", response_model=MovieListResponse)
def list_movies(
    request: Request,
    title: str = "",
    genres: str = "",
    page: int = 1,
    page_size: int = 20,
    sort: str = "id",
    user: User = Depends(require_permission(MOVIES_READ)),
) -> MovieListResponse:
    """genres is a comma-separated list; a movie must carry all of them."""
    filters = Filters(page=page, page_size=page_size, sort=sort)
    v = Validator()
    validate_filters(v, filters)
    v.raise_if_invalid()

    genre_list = [g.strip() for g in genres.split(",") if g.strip()]
    store: MovieStore = request.app.state.movies
    movies, metadata = store.get_all(title, genre_list, filters)
    return MovieListResponse(
        movies=[_to_response(m) for m in movies],
        metadata=PageMetadata(
            current_page=metadata.current_page,
            page_size=metadata.page_size,
            first_page=metadata.first_page,
            last_page=metadata.last_page,
            total_records=metadata.total_records,
        ),
    )


@limiter.limit("30/minute")
@router.post("/movies", response_model=MovieResponse, status_code=201)
def create_movie(
    request: Request,
    response: Response,
    body: MovieCreate,
    user: User = Depends(require_permission(MOVIES_WRITE)),
) -> MovieResponse:
    movie = Movie(title=body.title, year=body.year, runtime=body.runtime, genres=body.genres)
    v = Validator()
    validate_movie(v, movie)
    v.raise_if_invalid()

    request.app.state.movies.insert(movie)
    response.headers["Location"] = f"/v1/movies/{movie.id}"
    return _to_response(movie)


@router.get("/movies/{movie_id}", response_model=MovieResponse)
def show_movie(
    request: Request,
    movie_id: int,
    user: User = Depends(require_permission(MOVIES_READ)),
) -> MovieResponse:
    return _to_response(request.app.state.movies.get(movie_id))


@limiter.limit("30/minute")
@router.patch("/movies/{movie_id}", response_model=MovieResponse)
def update_movie(
    request: Request,
    movie_id: int,
    body: MovieUpdate,
    x_expected_version: Optional[int] = Header(default=None),
    user: User = Depends(require_permission(MOVIES_WRITE)),
) -> MovieResponse:
    store: MovieStore = request.app.state.movies
    movie = store.get(movie_id)

    if x_expected_version is not None and x_expected_version != movie.version:
        raise EditConflictError()

    if body.title is not None:
        movie.title = body.title
    if body.year is not None:
        movie.year = body.year
    if body.runtime is not None:
        movie.runtime = body.runtime
    if body.genres is not None:
        movie.genres = body.genres

    v = Validator()
    validate_movie(v, movie)
    v.raise_if_invalid()

    store.update(movie)
    return _to_response(movie)


@router.delete("/movies/{movie_id}", status_code=204)
def delete_movie(
    request: Request,
    movie_id: int,
    user: User = Depends(require_permission(MOVIES_WRITE)),
) -> Response:
    request.app.state.movies.delete(movie_id)
    return Response(status_code=204)
