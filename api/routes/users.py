"""
api/routes/users.py -- Self-service account endpoints.

Routes:
  GET /api/users/me        -- the caller's own account
  PUT /api/users/profile   -- change own name, email or username
  PUT /api/users/password  -- change own password (current password required)

All three operate on the caller's own row only; the user id comes from the token,
never from the request body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError

from api.models import MessageResponse, PasswordChange, ProfileUpdate, UserResponse
from auth.dependencies import get_current_identity, get_user_store
from auth.models import Identity
from auth.store import UserStore
from auth.tokens import hash_password, verify_password
from core.errors import Conflict, NotFound, Unauthenticated, ValidationError

router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
def get_me(
    identity: Identity = Depends(get_current_identity),
    user_store: UserStore = Depends(get_user_store),
) -> UserResponse:
    user = user_store.get_by_id(identity.user_id)
    if user is None:
        raise NotFound("User not found.")
    return UserResponse.from_user(user)


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_identity),
    user_store: UserStore = Depends(get_user_store),
) -> UserResponse:
    """Update name, email and/or username for the current user."""
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")

    if "email" in updates:
        other = user_store.get_by_email(updates["email"])
        if other is not None and other.id != identity.user_id:
            raise Conflict("Email already in use.")
    if "username" in updates:
        other = user_store.get_by_username(updates["username"])
        if other is not None and other.id != identity.user_id:
            raise Conflict("Username already taken.")

    try:
        updated = user_store.update_user(identity.user_id, **updates)
    except IntegrityError as exc:
        raise Conflict("Email or username already in use.") from exc
    if not updated:
        raise NotFound("User not found.")
    return UserResponse.from_user(user_store.get_by_id(identity.user_id))


@router.put("/users/password", response_model=MessageResponse)
def change_password(
    body: PasswordChange,
    identity: Identity = Depends(get_current_identity),
    user_store: UserStore = Depends(get_user_store),
) -> MessageResponse:
    """Replace the caller's password after verifying the current one.

    Tokens issued before the change stay valid until they expire.
    """
    user = user_store.get_by_id(identity.user_id)
    if user is None:
        raise NotFound("User not found.")
    if not verify_password(body.current_password, user.hashed_password):
        raise Unauthenticated("Current password is incorrect.", code="bad_credentials")

    user_store.update_user(identity.user_id, hashed_password=hash_password(body.new_password))
    return MessageResponse(message="Password updated successfully.")
