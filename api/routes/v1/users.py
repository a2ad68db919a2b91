"""
api/routes/v1/users.py -- Registration and account activation.

Routes:
  POST /v1/users             -- register; grants movies:read; emails an activation token
  PUT  /v1/users/activated   -- redeem an activation token

Registration answers 202: the account exists immediately, but the welcome
email is sent on the BackgroundRunner after the response. A failed send is
logged there and never turns the registration into an error.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import ActivateRequest, UserRegister, UserResponse
from auth.models import User, validate_user
from auth.passwords import Password
from auth.permissions import MOVIES_READ
from auth.tokens import SCOPE_ACTIVATION, validate_token_plaintext
from core.config import get_settings
from core.errors import InvalidTokenError, ValidationFailed
from core.validator import Validator

router = APIRouter()


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        created_at=user.created_at,
        name=user.name,
        email=user.email,
        activated=user.activated,
    )


@limiter.limit("10/minute")
@router.post("/users", response_model=UserResponse, status_code=202)
def register_user(request: Request, body: UserRegister) -> UserResponse:
    """Create an unactivated account and email its activation token."""
    state = request.app.state
    settings = get_settings()

    user = User(name=body.name, email=body.email, password=Password(plaintext=body.password))
    v = Validator()
    validate_user(v, user)
    v.raise_if_invalid()

    # Hash only once the plaintext is known to be within bcrypt's limits.
    user.password = Password.set(body.password)
    state.users.insert(user)
    state.permissions.add_for_user(user.id, MOVIES_READ)

    ttl = timedelta(seconds=settings.activation_token_ttl_seconds)
    token = state.tokens.new(user.id, ttl, SCOPE_ACTIVATION)

    state.runner.run(
        state.mailer.send,
        user.email,
        "user_welcome.tmpl",
        {
            "user_id": user.id,
            "activation_token": token.plaintext,
            "ttl_hours": int(ttl.total_seconds() // 3600),
        },
    )
    return _to_response(user)


@router.put("/users/activated", response_model=UserResponse)
def activate_user(request: Request, body: ActivateRequest) -> UserResponse:
    """Activate the account owning the token, then revoke all its activation tokens."""
    state = request.app.state

    v = Validator()
    validate_token_plaintext(v, body.token)
    v.raise_if_invalid()

    try:
        user = state.users.get_for_token(SCOPE_ACTIVATION, body.token)
    except InvalidTokenError:
        raise ValidationFailed({"token": "invalid or expired activation token"}) from None

    user.activated = True
    state.users.update(user)  # EditConflictError -> 409
    state.tokens.delete_all_for_user(SCOPE_ACTIVATION, user.id)
    return _to_response(user)
