"""
auth/store.py -- SQLAlchemy Core persistence for users and tokens.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore and TokenStore are the repositories; _row_to_user is the mapper.
Route and gate code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Tokens are looked up by SHA-256 digest only. The plaintext never reaches
  the database, so a dump of the tokens table holds no usable bearer token.

Concurrency:
  UserStore.update() is a compare-and-swap on ``version``: the UPDATE only
  matches the row when the caller's observed version is still current. Zero
  affected rows means another writer got there first (EditConflictError).

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    delete,
    select,
)
from sqlalchemy.exc import IntegrityError

from auth.models import Token, User
from auth.passwords import Password
from auth.tokens import TOKEN_LENGTH, generate_token, hash_token
from core.database import Database, metadata
from core.errors import (
    DuplicateEmailError,
    EditConflictError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
)

logger = logging.getLogger("marquee.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("name", Text, nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", LargeBinary, nullable=False),
    Column("activated", Boolean, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="1"),
)

tokens = Table(
    "tokens",
    metadata,
    Column("hash", LargeBinary(32), primary_key=True),  # SHA-256 of the plaintext
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expiry", DateTime(timezone=True), nullable=False),
    Column("scope", String(30), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_email_violation(exc: IntegrityError) -> bool:
    # SQLite: "UNIQUE constraint failed: users.email"
    # PostgreSQL: 'duplicate key value violates unique constraint "users_email_key"'
    message = str(exc.orig).lower()
    return "email" in message and ("unique" in message or "duplicate" in message)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(db)
        user = User(name="Alice", email="alice@example.com", password=Password.set("pa55word!"))
        store.insert(user)          # user.id, user.created_at, user.version filled in
        store.get_by_email("alice@example.com")
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        db.create_all()

    def insert(self, user: User) -> None:
        """Persist a new user. Raises DuplicateEmailError if the email is taken."""
        if not user.password.hash:
            raise InternalError("refusing to persist a user without a password hash")
        created_at = _now().isoformat()
        with self.db.connect() as conn:
            try:
                result = conn.execute(
                    users.insert().values(
                        created_at=created_at,
                        name=user.name,
                        email=user.email,
                        password_hash=user.password.hash,
                        activated=user.activated,
                        version=1,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                if _is_email_violation(exc):
                    raise DuplicateEmailError() from exc
                logger.exception("Unexpected integrity error inserting user")
                raise InternalError() from exc
        user.id = result.inserted_primary_key[0]
        user.created_at = created_at
        user.version = 1

    def get(self, user_id: int) -> User:
        if user_id < 1:
            raise NotFoundError()
        with self.db.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row)

    def get_by_email(self, email: str) -> User:
        """Look up a user by exact email. Raises NotFoundError if absent."""
        with self.db.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        if row is None:
            raise NotFoundError()
        return _row_to_user(row)

    def update(self, user: User) -> None:
        """Write name, email, password hash and activated if user.version is still current.

        On success user.version is advanced to the persisted value.
        """
        if user.id is None or user.version is None:
            raise InternalError("update requires a persisted user")
        with self.db.connect() as conn:
            try:
                result = conn.execute(
                    users.update()
                    .where((users.c.id == user.id) & (users.c.version == user.version))
                    .values(
                        name=user.name,
                        email=user.email,
                        password_hash=user.password.hash,
                        activated=user.activated,
                        version=users.c.version + 1,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                if _is_email_violation(exc):
                    raise DuplicateEmailError() from exc
                logger.exception("Unexpected integrity error updating user %s", user.id)
                raise InternalError() from exc
        if result.rowcount == 0:
            raise EditConflictError()
        user.version += 1

    def get_for_token(self, scope: str, plaintext: str) -> User:
        """Resolve the owner of a valid, unexpired token with the given scope.

        Raises InvalidTokenError when no such token exists.
        """
        if len(plaintext) != TOKEN_LENGTH:
            raise InvalidTokenError()
        query = (
            select(users)
            .select_from(users.join(tokens, tokens.c.user_id == users.c.id))
            .where(
                (tokens.c.hash == hash_token(plaintext))
                & (tokens.c.scope == scope)
                & (tokens.c.expiry > _now())
            )
        )
        with self.db.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            raise InvalidTokenError()
        return _row_to_user(row)


class TokenStore:
    """Repository for bearer tokens. Stores digests, never plaintexts."""

    def __init__(self, db: Database) -> None:
        self.db = db
        db.create_all()

    def new(self, user_id: int, ttl: timedelta, scope: str) -> Token:
        """Issue and persist a token. The returned Token carries the plaintext."""
        token = generate_token(user_id, ttl, scope)
        self.insert(token)
        return token

    def insert(self, token: Token) -> None:
        with self.db.connect() as conn:
            try:
                conn.execute(
                    tokens.insert().values(
                        hash=token.hash,
                        user_id=token.user_id,
                        expiry=token.expiry,
                        scope=token.scope,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                # Unknown user_id (FK) or a digest collision; neither is expected.
                conn.rollback()
                logger.exception("Could not persist token for user %s", token.user_id)
                raise InternalError() from exc

    def validate(self, plaintext: str, scope: str) -> int:
        """Return the owning user ID for a valid token, else raise InvalidTokenError."""
        if len(plaintext) != TOKEN_LENGTH:
            raise InvalidTokenError()
        with self.db.connect() as conn:
            row = conn.execute(
                select(tokens.c.user_id).where(
                    (tokens.c.hash == hash_token(plaintext))
                    & (tokens.c.scope == scope)
                    & (tokens.c.expiry > _now())
                )
            ).fetchone()
        if row is None:
            raise InvalidTokenError()
        return row.user_id

    def delete_all_for_user(self, scope: str, user_id: int) -> int:
        """Revoke every token of this scope for user_id. Deleting nothing is fine."""
        with self.db.connect() as conn:
            result = conn.execute(delete(tokens).where((tokens.c.scope == scope) & (tokens.c.user_id == user_id)))
            conn.commit()
        return result.rowcount

    def delete_expired(self) -> int:
        """Purge rows whose expiry has passed. Returns the number removed."""
        with self.db.connect() as conn:
            result = conn.execute(delete(tokens).where(tokens.c.expiry <= _now()))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        created_at=row.created_at,
        name=row.name,
        email=row.email,
        password=Password.from_hash(row.password_hash),
        activated=bool(row.activated),
        version=row.version,
    )
