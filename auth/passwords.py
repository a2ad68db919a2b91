"""
auth/passwords.py -- The Password credential (bcrypt).

A Password holds the persisted bcrypt hash and, transiently, the plaintext it
was created from. The plaintext is kept only so validate_user() can check its
length after hashing; stores read ``hash`` and never look at ``plaintext``.

bcrypt is used directly (no passlib wrapper). Its checkpw() does the
constant-time comparison; we never compare hashes ourselves.

The caller enforces the 8..72 byte plaintext range (validate_password_plaintext).
bcrypt 5.x rejects inputs longer than 72 bytes outright, so matches() treats an
over-long candidate as a plain mismatch -- no stored hash can come from one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

import bcrypt

from core.config import get_settings
from core.errors import InternalError
from core.validator import Validator

logger = logging.getLogger("marquee.auth")

_MAX_PASSWORD_BYTES = 72


@dataclass
class Password:
    hash: Optional[bytes] = None
    plaintext: Optional[str] = field(default=None, repr=False, compare=False)

    @classmethod
    def set(cls, plaintext: str, rounds: int | None = None) -> "Password":
        """Hash plaintext with the configured work factor (bcrypt cost 12 by default)."""
        cost = rounds if rounds is not None else get_settings().bcrypt_rounds
        hashed = bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=cost))
        return cls(hash=hashed, plaintext=plaintext)

    @classmethod
    def from_hash(cls, hashed: bytes | str) -> "Password":
        if isinstance(hashed, str):
            hashed = hashed.encode("utf-8")
        return cls(hash=hashed)

    def matches(self, candidate: str) -> bool:
        """Return True if candidate matches the stored hash.

        A wrong password is expected traffic and returns False. A missing or
        malformed stored hash is a server fault and raises InternalError.
        """
        if not self.hash:
            raise InternalError("Credential has no password hash.")
        encoded = candidate.encode("utf-8")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, self.hash)
        except ValueError as exc:
            logger.error("Stored password hash could not be verified: %s", exc)
            raise InternalError() from exc


def validate_password_plaintext(v: Validator, plaintext: str) -> None:
    size = len(plaintext.encode("utf-8"))
    v.check(plaintext != "", "password", "must be provided")
    v.check(size >= 8, "password", "must be at least 8 bytes long")
    v.check(size <= _MAX_PASSWORD_BYTES, "password", "must not be more than 72 bytes long")


@lru_cache(maxsize=1)
def dummy_password() -> Password:
    """A throwaway credential for timing equalization.

    Computed on first use rather than at import so importing this module
    stays cheap. Comparing against it costs the same as a real check.
    """
    return Password.set("marquee_timing_dummy")
