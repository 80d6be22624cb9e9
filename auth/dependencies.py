"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The request chain for every protected route:

  get_user_store()        -> UserStore constructed in the app lifespan
  get_current_identity()  -> Identity, or Unauthenticated / InvalidToken
  require_admin()         -> Identity with is_admin, or Forbidden

Failure mapping for Authorization: Bearer <token>:
  header missing, not Bearer, or empty token  -> Unauthenticated (401)
  signature / expiry / claim check fails      -> InvalidToken (403)
  token valid but the user row is gone        -> Unauthenticated (401)

The resolved Identity is returned to the handler as a parameter; nothing is
attached to the request object.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import Identity
from auth.store import UserStore
from auth.tokens import decode_access_token
from core.errors import Forbidden, InvalidToken, Unauthenticated


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_identity(
    request: Request,
    user_store: UserStore = Depends(get_user_store),
) -> Identity:
    """Require a valid bearer token that resolves to an existing user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthenticated("Authentication token required.")

    payload = decode_access_token(token)
    if payload is None:
        raise InvalidToken()

    user = user_store.get_by_id(payload["user_id"])
    if user is None:
        raise Unauthenticated("User not found.")

    return Identity(user_id=user.id, email=user.email, is_admin=user.is_admin)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Require the admin flag. Runs after get_current_identity, so 401/403
    token failures are reported before the admin check."""
    if not identity.is_admin:
        raise Forbidden("Admin access required.")
    return identity
