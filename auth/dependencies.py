"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every helper resolves the caller through the AccessGate stored on app.state
and hands the User to the route handler as an ordinary parameter.

get_current_user()       -- anonymous allowed, bad token -> 401
require_user()           -- 401 unless a valid token was presented
require_activated_user() -- 401 if anonymous, 403 if not activated
require_permission(code) -- as above, plus 403 without the capability code

Layer rule: no imports from catalog/. auth/dependencies.py may import from
fastapi because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.gate import AccessGate
from auth.models import User


def _gate(request: Request) -> AccessGate:
    return request.app.state.gate


def get_current_user(request: Request) -> User:
    """Resolve the Authorization header. Returns ANONYMOUS_USER when it is absent."""
    return _gate(request).authenticate(request.headers.get("Authorization"))


def require_user(request: Request, user: User = Depends(get_current_user)) -> User:
    return _gate(request).require_authenticated(user)


def require_activated_user(request: Request, user: User = Depends(get_current_user)) -> User:
    return _gate(request).require_activated(user)


def require_permission(code: str):
    """Build a dependency that requires an activated user holding ``code``.

    Use as a FastAPI dependency:
        @router.post("/movies")
        def route(user: User = Depends(require_permission("movies:write"))): ...
    """

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        return _gate(request).require_permission(user, code)

    return dependency
