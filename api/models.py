"""
API request and response models for Marquee REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Field-level business rules (lengths, ranges, uniqueness) are NOT declared
here: they live in the domain validate_* functions so every error comes back
through the same field -> message map. Pydantic only enforces shape and type.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer, StringConstraints

# ---------------------------------------------------------------------------
# Runtime wire format: "<minutes> mins"
# ---------------------------------------------------------------------------

_RUNTIME_RE = re.compile(r"^(\d+) mins$")


def _parse_runtime(value):
    if isinstance(value, str):
        m = _RUNTIME_RE.match(value)
        if m:
            return int(m.group(1))
    raise ValueError("invalid runtime format, expected \"<minutes> mins\"")


def _load_runtime(value):
    # Responses are built from stored minutes and re-validated from their own dump.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return _parse_runtime(value)


def _dump_runtime(minutes: int) -> str:
    return f"{minutes} mins"


# Request bodies: only the "<minutes> mins" string is accepted.
Runtime = Annotated[int, BeforeValidator(_parse_runtime), PlainSerializer(_dump_runtime, return_type=str)]

RuntimeOut = Annotated[int, BeforeValidator(_load_runtime), PlainSerializer(_dump_runtime, return_type=str)]

Stripped = Annotated[str, StringConstraints(strip_whitespace=True)]


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /v1/healthcheck."""

    model_config = ConfigDict(frozen=True)

    status: str = "available"
    environment: str
    version: str
    components: dict[str, str]


class MetricsResponse(BaseModel):
    """Response for GET /v1/debug/vars: runtime counters for operators."""

    version: str
    threads: int
    database: dict[str, Any]
    timestamp: int


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------


class UserRegister(BaseModel):
    """Request body for POST /v1/users.

    Only name and email are trimmed. The password is hashed exactly as sent so
    that the same string authenticates later.
    """

    name: Stripped
    email: Stripped
    password: str


class UserResponse(BaseModel):
    id: int
    created_at: str
    name: str
    email: str
    activated: bool


class ActivateRequest(BaseModel):
    """Request body for PUT /v1/users/activated."""

    token: str


class AuthenticationRequest(BaseModel):
    """Request body for POST /v1/tokens/authentication."""

    email: Stripped
    password: str


class ActivationTokenRequest(BaseModel):
    """Request body for POST /v1/tokens/activation."""

    email: Stripped


class TokenResponse(BaseModel):
    """A freshly issued bearer token. The only response that ever carries a plaintext token."""

    token: str
    expiry: datetime


# ---------------------------------------------------------------------------
# Movies
# ---------------------------------------------------------------------------


class MovieCreate(BaseModel):
    """Request body for POST /v1/movies."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = ""
    year: int = 0
    runtime: Runtime = 0
    genres: list[str] = []


class MovieUpdate(BaseModel):
    """Request body for PATCH /v1/movies/{id}. Omitted fields keep their stored value."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: Optional[str] = None
    year: Optional[int] = None
    runtime: Optional[Runtime] = None
    genres: Optional[list[str]] = None


class MovieResponse(BaseModel):
    id: int
    title: str
    year: int
    runtime: RuntimeOut
    genres: list[str]
    version: int


class PageMetadata(BaseModel):
    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0


class MovieListResponse(BaseModel):
    movies: list[MovieResponse]
    metadata: PageMetadata
