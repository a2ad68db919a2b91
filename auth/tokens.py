"""
auth/tokens.py -- Opaque bearer token generation and hashing.

Security design decisions:
  Entropy: secrets.token_bytes(16) draws 128 bits from the OS CSPRNG. If the
       OS source fails the exception propagates -- issuance is aborted, never
       retried with a weaker source.

  Plaintext: base-32 (RFC 4648 alphabet A-Z2-7) with the padding stripped.
       16 bytes always encode to exactly 26 characters.

  Storage: only SHA-256(plaintext) is persisted. A plain (unkeyed) digest is
       enough because the input already carries 128 bits of entropy; the
       deterministic digest is what makes O(1) lookup by token possible.
       A leaked tokens table therefore holds no usable credential.

The plaintext is populated once, on the Token returned from generate_token(),
and is what the API hands back to the client. It is never written anywhere.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from auth.models import Token
from core.validator import Validator

SCOPE_ACTIVATION = "activation"
SCOPE_AUTHENTICATION = "authentication"

TOKEN_LENGTH = 26
_ENTROPY_BYTES = 16


def hash_token(plaintext: str) -> bytes:
    """Return the SHA-256 digest used as the durable lookup key."""
    return hashlib.sha256(plaintext.encode("utf-8")).digest()


def generate_token(user_id: int, ttl: timedelta, scope: str) -> Token:
    """Mint a new token for user_id. The returned Token is the only holder of the plaintext."""
    random_bytes = secrets.token_bytes(_ENTROPY_BYTES)
    plaintext = base64.b32encode(random_bytes).decode("ascii").rstrip("=")
    return Token(
        plaintext=plaintext,
        hash=hash_token(plaintext),
        user_id=user_id,
        expiry=datetime.now(timezone.utc) + ttl,
        scope=scope,
    )


def validate_token_plaintext(v: Validator, plaintext: str) -> None:
    v.check(plaintext != "", "token", "must be provided")
    v.check(len(plaintext) == TOKEN_LENGTH, "token", "must be 26 bytes long")
