"""
api/routes/admin.py -- User management for administrators.

Routes (all require the admin flag):
  GET    /api/admin/users
  GET    /api/admin/users/{id}
  PATCH  /api/admin/users/{id}  -- {name?, is_admin?}
  DELETE /api/admin/users/{id}  -- removes the user, their attributes and files

Guards:
  An admin cannot delete or demote their own account.
  The last remaining admin cannot be deleted or demoted.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_upload_storage, get_vault_store
from api.models import AdminUserPatch, UserResponse
from auth.dependencies import get_user_store, require_admin
from auth.models import Identity, User
from auth.store import UserStore
from core.errors import Forbidden, NotFound, ValidationError
from vault.files import UploadStorage
from vault.store import VaultStore

logger = logging.getLogger("proid.api")

router = APIRouter()


def _load_user(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def _guard_last_admin(user_store: UserStore, target: User) -> None:
    if target.is_admin and user_store.count_admins() <= 1:
        raise Forbidden("Cannot remove the last administrator.", code="last_admin")


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(
    _admin: Identity = Depends(require_admin),
    user_store: UserStore = Depends(get_user_store),
) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.get("/admin/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    _admin: Identity = Depends(require_admin),
    user_store: UserStore = Depends(get_user_store),
) -> UserResponse:
    return UserResponse.from_user(_load_user(user_store, user_id))


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
def patch_user(
    user_id: int,
    body: AdminUserPatch,
    admin: Identity = Depends(require_admin),
    user_store: UserStore = Depends(get_user_store),
) -> UserResponse:
    """Rename a user or change their admin flag."""
    target = _load_user(user_store, user_id)
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")

    if updates.get("is_admin") is False and target.is_admin:
        if target.id == admin.user_id:
            raise Forbidden("You cannot remove your own admin access.", code="self_demote")
        _guard_last_admin(user_store, target)

    user_store.update_user(user_id, **updates)
    if "is_admin" in updates and updates["is_admin"] != target.is_admin:
        logger.info("Admin %d set is_admin=%s on user %d", admin.user_id, updates["is_admin"], user_id)
    return UserResponse.from_user(_load_user(user_store, user_id))


@router.delete("/admin/users/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    admin: Identity = Depends(require_admin),
    user_store: UserStore = Depends(get_user_store),
    vault: VaultStore = Depends(get_vault_store),
    storage: UploadStorage = Depends(get_upload_storage),
) -> Response:
    """Delete a user together with their attributes and uploaded files.

    Data consumers the user created are kept. Admins can still update or
    delete them by id.
    """
    target = _load_user(user_store, user_id)
    if target.id == admin.user_id:
        raise Forbidden("You cannot delete your own account.", code="self_delete")
    _guard_last_admin(user_store, target)

    paths = vault.delete_attributes_for_user(user_id)
    if not user_store.delete_user(user_id):
        raise NotFound("User not found.")
    for path in paths:
        storage.remove(path)

    logger.info("Admin %d deleted user %d (%d files)", admin.user_id, user_id, len(paths))
    return Response(status_code=204)
