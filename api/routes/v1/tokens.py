"""
api/routes/v1/tokens.py -- Token issuance and revocation.

Routes:
  POST   /v1/tokens/authentication  -- email + password -> bearer token
  DELETE /v1/tokens/authentication  -- revoke every bearer token of the caller
  POST   /v1/tokens/activation      -- replace a user's activation token

Security:
  POST /tokens/authentication is rate-limited per IP and answers the same
  401 for an unknown email and a wrong password. authenticate_credentials()
  provides the timing equalization -- never inline get_by_email() + matches().
  Token responses carry Cache-Control: no-store.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ActivationTokenRequest, AuthenticationRequest, MessageResponse, TokenResponse
from auth.dependencies import require_user
from auth.gate import authenticate_credentials
from auth.models import User, validate_email
from auth.passwords import validate_password_plaintext
from auth.tokens import SCOPE_ACTIVATION, SCOPE_AUTHENTICATION
from core.config import get_settings
from core.errors import NotFoundError, ValidationFailed
from core.validator import Validator

router = APIRouter()


@limiter.limit("10/minute")
@router.post("/tokens/authentication", response_model=TokenResponse, status_code=201)
def create_authentication_token(request: Request, body: AuthenticationRequest) -> JSONResponse:
    state = request.app.state

    v = Validator()
    validate_email(v, body.email)
    validate_password_plaintext(v, body.password)
    v.raise_if_invalid()

    user = authenticate_credentials(state.users, body.email, body.password)
    ttl = timedelta(seconds=get_settings().authentication_token_ttl_seconds)
    token = state.tokens.new(user.id, ttl, SCOPE_AUTHENTICATION)

    resp = JSONResponse(
        status_code=201,
        content=TokenResponse(token=token.plaintext, expiry=token.expiry).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/tokens/authentication", status_code=204)
def revoke_authentication_tokens(request: Request, user: User = Depends(require_user)) -> Response:
    """Log out everywhere: every authentication token of the caller stops working."""
    request.app.state.tokens.delete_all_for_user(SCOPE_AUTHENTICATION, user.id)
    return Response(status_code=204)


@limiter.limit("5/minute")
@router.post("/tokens/activation", response_model=MessageResponse, status_code=202)
def create_activation_token(request: Request, body: ActivationTokenRequest) -> MessageResponse:
    """Issue a fresh activation token, invalidating any earlier ones."""
    state = request.app.state

    v = Validator()
    validate_email(v, body.email)
    v.raise_if_invalid()

    try:
        user = state.users.get_by_email(body.email)
    except NotFoundError:
        raise ValidationFailed({"email": "no matching email address found"}) from None
    if user.activated:
        raise ValidationFailed({"email": "user has already been activated"})

    ttl = timedelta(seconds=get_settings().activation_token_ttl_seconds)
    state.tokens.delete_all_for_user(SCOPE_ACTIVATION, user.id)
    token = state.tokens.new(user.id, ttl, SCOPE_ACTIVATION)

    state.runner.run(
        state.mailer.send,
        user.email,
        "token_activation.tmpl",
        {"activation_token": token.plaintext, "ttl_hours": int(ttl.total_seconds() // 3600)},
    )
    return MessageResponse(message="an email will be sent to you containing activation instructions")
