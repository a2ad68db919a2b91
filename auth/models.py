"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Stores and the access gate do the
work; the validate_* functions here only populate a Validator.

version is Optional: None means "not yet persisted", which is distinct from
any real version number (stored versions start at 1).

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from auth.passwords import Password, validate_password_plaintext
from core.errors import InternalError
from core.validator import EMAIL_RX, Validator, matches


@dataclass
class User:
    """A principal. email is unique across all users (enforced by the store)."""

    name: str
    email: str
    password: Password = field(default_factory=Password, repr=False)
    activated: bool = False
    id: Optional[int] = None
    created_at: Optional[str] = None  # ISO 8601, set by store on insert
    version: Optional[int] = None

    @property
    def is_anonymous(self) -> bool:
        return self is ANONYMOUS_USER


# Requests without an Authorization header resolve to this sentinel.
ANONYMOUS_USER = User(name="", email="")


@dataclass
class Token:
    """A bearer token.

    plaintext is populated only on the object returned at issuance; tokens
    loaded back from the store never have it. hash is the durable lookup key.
    """

    hash: bytes = field(repr=False)
    user_id: int
    expiry: datetime
    scope: str
    plaintext: str = field(default="", repr=False)


class Permissions(frozenset):
    """Capability codes granted to one principal. Membership is case-sensitive."""

    def include(self, code: str) -> bool:
        return code in self


def validate_email(v: Validator, email: str) -> None:
    v.check(email != "", "email", "must be provided")
    v.check(matches(email, EMAIL_RX), "email", "must be a valid email address")


def validate_user(v: Validator, user: User) -> None:
    v.check(user.name != "", "name", "must be provided")
    v.check(len(user.name.encode("utf-8")) <= 500, "name", "must not be more than 500 bytes long")

    validate_email(v, user.email)

    if user.password.plaintext is not None:
        validate_password_plaintext(v, user.password.plaintext)

    # Neither a plaintext to hash nor a hash is a programming error, not bad input.
    if user.password.hash is None and user.password.plaintext is None:
        raise InternalError("missing password for user")
