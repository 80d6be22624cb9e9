"""
api/routes/auth.py -- Registration, login and token validation endpoints.

Routes:
  POST /api/auth/register  -- create an account; returns {token, user}
  POST /api/auth/login     -- email-or-username + password; returns {token, user}
  GET  /api/auth/validate  -- resolve the bearer token to its user (requires auth)

Security:
  Register and login are rate-limited (LOGIN_RATE_LIMIT, per client IP).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
  Bad email and bad password produce the same error so login does not leak
  which accounts exist.

There is no logout endpoint: tokens are stateless, so logging out is the
client discarding its token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import AuthResponse, LoginRequest, RegisterRequest, UserResponse, ValidateResponse
from auth.dependencies import get_current_identity, get_user_store
from auth.models import Identity, User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password
from core.config import get_settings
from core.errors import Conflict, Unauthenticated

logger = logging.getLogger("proid.api")

_settings = get_settings()

router = APIRouter()


def _token_response(user: User, status_code: int) -> JSONResponse:
    token = create_access_token(user.id, user.email)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(token=token, user=UserResponse.from_user(user)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    user_store: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Create an account and log it in.

    The admin flag is only honoured while no account exists yet, so the first
    registration can bootstrap an administrator. Later requests asking for it
    get a regular account.
    """
    if user_store.get_by_email(body.email) is not None:
        raise Conflict("User already exists.")
    if body.username and user_store.get_by_username(body.username) is not None:
        raise Conflict("Username already taken.")

    is_admin = body.is_admin and not user_store.has_users()
    if body.is_admin and not is_admin:
        logger.warning("Ignoring is_admin on registration for %s: accounts already exist", body.email)

    new_user = User(
        email=body.email,
        name=body.name,
        username=body.username,
        hashed_password=hash_password(body.password),
        is_admin=is_admin,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # A concurrent registration won the race past the pre-checks above.
        raise Conflict("User already exists.") from exc

    logger.info("Registered user %d", user_id)
    return _token_response(user_store.get_by_id(user_id), status_code=201)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    user_store: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Authenticate with email (or username) and password."""
    user = authenticate_user(user_store, body.login, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"message": "Invalid credentials.", "code": "bad_credentials"},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _token_response(user, status_code=200)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/validate", response_model=ValidateResponse)
def validate(
    identity: Identity = Depends(get_current_identity),
    user_store: UserStore = Depends(get_user_store),
) -> ValidateResponse:
    """Return the account the presented token belongs to."""
    user = user_store.get_by_id(identity.user_id)
    if user is None:
        raise Unauthenticated("User not found.")
    return ValidateResponse(user=UserResponse.from_user(user))
