"""
api/routes/data_consumers.py -- Parties that attributes can be shared with.

Routes:
  GET    /api/data-consumers?q=  -- admin-defined consumers plus the caller's own
  GET    /api/data-consumers/{id}
  POST   /api/data-consumers     -- create; admins create admin-defined consumers
  PUT    /api/data-consumers/{id} -- creator or admin only
  DELETE /api/data-consumers/{id} -- creator or admin only, 204

Visibility: a consumer is visible when it is admin-defined or the caller
created it. Anything else, including a row the caller may not modify, is
reported as 404.

Names are globally unique; a duplicate is a Conflict.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.exc import IntegrityError

from api.dependencies import get_vault_store
from api.models import DataConsumerCreate, DataConsumerResponse, DataConsumerUpdate
from auth.dependencies import get_current_identity
from auth.models import Identity
from core.errors import Conflict, NotFound, ValidationError
from vault.models import DataConsumer
from vault.store import VaultStore

router = APIRouter()


@router.get("/data-consumers", response_model=list[DataConsumerResponse])
def list_data_consumers(
    q: Optional[str] = Query(default=None, max_length=255),
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> list[DataConsumerResponse]:
    """List visible consumers ordered by name, optionally filtered by a name substring."""
    search = q.strip() if q else None
    consumers = vault.list_visible_consumers(identity.user_id, search=search or None)
    return [DataConsumerResponse.from_consumer(c) for c in consumers]


@router.get("/data-consumers/{consumer_id}", response_model=DataConsumerResponse)
def get_data_consumer(
    consumer_id: int,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> DataConsumerResponse:
    consumer = vault.get_visible_consumer(consumer_id, identity.user_id)
    if consumer is None:
        raise NotFound("Data consumer not found.")
    return DataConsumerResponse.from_consumer(consumer)


@router.post("/data-consumers", response_model=DataConsumerResponse, status_code=201)
def create_data_consumer(
    body: DataConsumerCreate,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> DataConsumerResponse:
    """Create a consumer. It is admin-defined exactly when the creator is an admin."""
    if vault.get_consumer_by_name(body.name) is not None:
        raise Conflict("Data consumer with this name already exists.")

    consumer = DataConsumer(
        name=body.name,
        description=body.description,
        created_by=identity.user_id,
        is_admin_defined=identity.is_admin,
        is_private=body.is_private,
    )
    try:
        consumer_id = vault.create_consumer(consumer)
    except IntegrityError as exc:
        raise Conflict("Data consumer with this name already exists.") from exc
    return DataConsumerResponse.from_consumer(vault.get_consumer(consumer_id))


@router.put("/data-consumers/{consumer_id}", response_model=DataConsumerResponse)
def update_data_consumer(
    consumer_id: int,
    body: DataConsumerUpdate,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> DataConsumerResponse:
    """Update name, description or privacy. Only admins may change is_admin_defined."""
    updates = body.model_dump(exclude_none=True)
    if not identity.is_admin:
        updates.pop("is_admin_defined", None)
    if not updates:
        raise ValidationError("No fields to update.", code="no_changes")

    if "name" in updates:
        other = vault.get_consumer_by_name(updates["name"])
        if other is not None and other.id != consumer_id:
            raise Conflict("Data consumer with this name already exists.")

    try:
        updated = vault.update_consumer(consumer_id, identity.user_id, identity.is_admin, **updates)
    except IntegrityError as exc:
        raise Conflict("Data consumer with this name already exists.") from exc
    if not updated:
        raise NotFound("Data consumer not found.")
    return DataConsumerResponse.from_consumer(vault.get_consumer(consumer_id))


@router.delete("/data-consumers/{consumer_id}", status_code=204)
def delete_data_consumer(
    consumer_id: int,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> Response:
    if not vault.delete_consumer(consumer_id, identity.user_id, identity.is_admin):
        raise NotFound("Data consumer not found.")
    return Response(status_code=204)
