"""
auth/permissions.py -- Permission registry: which capability codes a user holds.

Pure data lookup. Authorization decisions are made by auth/gate.py, which
composes this registry with token verification.

Schema:
  permissions        -- the catalogue of known codes (seeded on startup)
  users_permissions  -- (user_id, permission_id) join, primary key on both

Grants are append-only. add_for_user() inserts through a join against the
catalogue filtered by NOT EXISTS, so granting a code twice writes nothing the
second time and unknown codes are silently skipped.
"""

from __future__ import annotations

import logging

from sqlalchemy import Column, ForeignKey, Integer, String, Table, and_, exists, literal, select
from sqlalchemy.exc import IntegrityError

from auth.models import Permissions
from auth.store import users  # noqa: F401 -- registers the users table for the FK below
from core.database import Database, metadata
from core.errors import InternalError, NotFoundError

logger = logging.getLogger("marquee.auth")

MOVIES_READ = "movies:read"
MOVIES_WRITE = "movies:write"

CATALOGUE: tuple[str, ...] = (MOVIES_READ, MOVIES_WRITE)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(100), nullable=False, unique=True),
)

users_permissions = Table(
    "users_permissions",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PermissionStore:
    def __init__(self, db: Database, catalogue: tuple[str, ...] = CATALOGUE) -> None:
        self.db = db
        db.create_all()
        self._seed(catalogue)

    def _seed(self, codes: tuple[str, ...]) -> None:
        """Insert any catalogue codes not yet present. Safe to call on every startup."""
        with self.db.connect() as conn:
            existing = set(conn.execute(select(permissions.c.code)).scalars())
            missing = [code for code in codes if code not in existing]
            if missing:
                conn.execute(permissions.insert(), [{"code": code} for code in missing])
                conn.commit()

    def get_all_for_user(self, user_id: int) -> Permissions:
        """Return the user's codes; an empty set if none have been granted."""
        with self.db.connect() as conn:
            codes = conn.execute(
                select(permissions.c.code)
                .select_from(permissions.join(users_permissions, users_permissions.c.permission_id == permissions.c.id))
                .where(users_permissions.c.user_id == user_id)
            ).scalars()
            return Permissions(codes)

    def add_for_user(self, user_id: int, *codes: str) -> None:
        """Grant codes to user_id. Already-held and unknown codes are skipped."""
        if not codes:
            return
        already_granted = exists().where(
            and_(
                users_permissions.c.user_id == user_id,
                users_permissions.c.permission_id == permissions.c.id,
            )
        )
        stmt = users_permissions.insert().from_select(
            ["user_id", "permission_id"],
            select(literal(user_id, Integer), permissions.c.id).where(
                permissions.c.code.in_(codes) & ~already_granted
            ),
        )
        # A concurrent grant of the same code can slip in between the NOT EXISTS
        # check and the insert; the second attempt then finds it and skips.
        for attempt in (1, 2):
            with self.db.connect() as conn:
                try:
                    conn.execute(stmt)
                    conn.commit()
                    return
                except IntegrityError as exc:
                    conn.rollback()
                    if "foreign key" in str(exc.orig).lower():
                        raise NotFoundError() from exc
                    if attempt == 2:
                        logger.exception("Could not grant %s to user %s", codes, user_id)
                        raise InternalError() from exc
