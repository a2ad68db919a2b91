"""
auth/gate.py -- Access control: who is calling, and may they do this?

Two stages, two distinct failure kinds:
  1. authenticate()  -- token -> User. Failure is UnauthenticatedError (401).
  2. require_*()     -- User -> allowed? Failure is an UnauthorizedError
                        subclass (403): InactiveAccountError when the account
                        is not activated, NotPermittedError when the code is
                        missing from the user's permission set.

The resolved User is passed explicitly to every check; nothing is read from
ambient request state.
"""

from __future__ import annotations

import logging

from auth.models import ANONYMOUS_USER, User
from auth.passwords import dummy_password
from auth.permissions import PermissionStore
from auth.store import UserStore
from auth.tokens import SCOPE_AUTHENTICATION
from core.errors import (
    InactiveAccountError,
    InvalidTokenError,
    NotFoundError,
    NotPermittedError,
    UnauthenticatedError,
)

logger = logging.getLogger("marquee.auth")


class AccessGate:
    def __init__(self, users: UserStore, permissions: PermissionStore) -> None:
        self.users = users
        self.permissions = permissions

    def authenticate(self, authorization: str | None) -> User:
        """Resolve an Authorization header value to a User.

        No header at all is an anonymous request (ANONYMOUS_USER). A header
        that is present but malformed, or names an invalid or expired token,
        is rejected outright.
        """
        if not authorization:
            return ANONYMOUS_USER
        scheme, _, plaintext = authorization.partition(" ")
        if scheme != "Bearer" or not plaintext:
            raise UnauthenticatedError("Invalid or missing authentication token.")
        try:
            return self.users.get_for_token(SCOPE_AUTHENTICATION, plaintext.strip())
        except InvalidTokenError as exc:
            raise UnauthenticatedError("Invalid or missing authentication token.") from exc

    @staticmethod
    def require_authenticated(user: User) -> User:
        if user.is_anonymous:
            raise UnauthenticatedError()
        return user

    def require_activated(self, user: User) -> User:
        self.require_authenticated(user)
        if not user.activated:
            raise InactiveAccountError()
        return user

    def authorize(self, user: User, code: str) -> bool:
        """True iff code is in the user's granted permission set."""
        if user.is_anonymous:
            return False
        return self.permissions.get_all_for_user(user.id).include(code)

    def require_permission(self, user: User, code: str) -> User:
        self.require_activated(user)
        if not self.authorize(user, code):
            logger.info("User %s denied %s", user.id, code)
            raise NotPermittedError()
        return user


def authenticate_credentials(users: UserStore, email: str, password: str) -> User:
    """Check an email/password pair with timing equalization.

    bcrypt always runs, whether or not the email exists, so response time does
    not reveal which addresses have accounts:
    - Unknown email: compare against dummy_password() (same cost as a real check)
    - Wrong password: compare against the real hash (same cost)

    Raises UnauthenticatedError on any failure.
    """
    try:
        user = users.get_by_email(email)
    except NotFoundError:
        dummy_password().matches(password)
        raise UnauthenticatedError("Invalid authentication credentials.") from None
    if not user.password.matches(password):
        raise UnauthenticatedError("Invalid authentication credentials.")
    return user
