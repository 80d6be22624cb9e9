"""
api/routes/attributes.py -- CRUD for the caller's own attributes.

Routes:
  GET    /api/attributes       -- list own attributes, newest first
  GET    /api/attributes/{id}  -- one own attribute
  POST   /api/attributes       -- create (JSON or multipart with optional "file")
  PUT    /api/attributes/{id}  -- replace key/value/where_used (optional new file)
  PATCH  /api/attributes/{id}  -- change any subset (optional new file)
  DELETE /api/attributes/{id}  -- delete, 204

Bodies arrive either as JSON or as multipart/form-data. In forms, where_used
may be repeated or sent as a JSON-encoded string; both are flattened by
core.normalize before validation.

Ownership: every store call carries the caller's user id. Someone else's
attribute is reported as 404, the same as a missing one.

Files: a new upload is written before the database row changes. If the write
fails or the row vanished, the new file is removed again; once a replacement
has committed, the previous file is removed. Removal is best-effort.

The write handlers are async so they can await the request body; their store
calls run in the threadpool via run_in_threadpool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile

from api.dependencies import get_upload_storage, get_vault_store
from api.models import AttributePatch, AttributeResponse, AttributeWrite, validation_details
from auth.dependencies import get_current_identity
from auth.models import Identity
from core.errors import InternalError, NotFound, ValidationError
from vault.files import UploadStorage
from vault.models import Attribute, StoredFile
from vault.store import VaultStore

logger = logging.getLogger("proid.api")

router = APIRouter()

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


# ---------------------------------------------------------------------------
# Body parsing
# ---------------------------------------------------------------------------


def _form_payload(form: FormData) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name in ("key", "value"):
        value = form.get(name)
        if isinstance(value, str):
            payload[name] = value
    where_used = [v for v in form.getlist("where_used") if isinstance(v, str)]
    if where_used:
        payload["where_used"] = where_used
    return payload


def _form_upload(form: FormData) -> Optional[UploadFile]:
    upload = form.get("file")
    if isinstance(upload, UploadFile) and upload.filename:
        return upload
    return None


@asynccontextmanager
async def _attribute_body(request: Request) -> AsyncIterator[tuple[dict[str, Any], Optional[UploadFile]]]:
    """Yield (fields, upload) from a JSON or form request body.

    Form uploads are spooled by Starlette; the form is closed on exit, so the
    upload must be saved inside the block.
    """
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        try:
            yield _form_payload(form), _form_upload(form)
        finally:
            await form.close()
        return

    try:
        payload = await request.json()
    except (ValueError, RecursionError) as exc:
        raise ValidationError("Request body must be valid JSON.") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    yield payload, None


def _validate(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(details=validation_details(exc.errors())) from exc


def _file_fields(stored: StoredFile) -> dict[str, Any]:
    return {
        "file_path": stored.path,
        "file_name": stored.name,
        "file_type": stored.type,
        "file_size": stored.size,
    }


def _load_owned(vault: VaultStore, attribute_id: int, user_id: int) -> Attribute:
    attribute = vault.get_attribute(attribute_id, user_id)
    if attribute is None:
        raise NotFound("Attribute not found.")
    return attribute


def _apply_update(
    vault: VaultStore,
    storage: UploadStorage,
    existing: Attribute,
    user_id: int,
    fields: dict[str, Any],
    stored: Optional[StoredFile],
) -> AttributeResponse:
    if stored is not None:
        fields.update(_file_fields(stored))
    try:
        updated = vault.update_attribute(existing.id, user_id, **fields)
    except SQLAlchemyError as exc:
        if stored is not None:
            storage.remove(stored.path)
        logger.exception("Failed to update attribute %d", existing.id)
        raise InternalError("Failed to update attribute.") from exc

    if not updated:
        # Deleted between the ownership check and the write.
        if stored is not None:
            storage.remove(stored.path)
        raise NotFound("Attribute not found.")

    if stored is not None and existing.file_path and existing.file_path != stored.path:
        storage.remove(existing.file_path)
    return AttributeResponse.from_attribute(_load_owned(vault, existing.id, user_id))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/attributes", response_model=list[AttributeResponse])
def list_attributes(
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> list[AttributeResponse]:
    return [AttributeResponse.from_attribute(a) for a in vault.list_attributes(identity.user_id)]


@router.get("/attributes/{attribute_id}", response_model=AttributeResponse)
def get_attribute(
    attribute_id: int,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
) -> AttributeResponse:
    return AttributeResponse.from_attribute(_load_owned(vault, attribute_id, identity.user_id))


@router.post("/attributes", response_model=AttributeResponse, status_code=201)
async def create_attribute(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
    storage: UploadStorage = Depends(get_upload_storage),
) -> AttributeResponse:
    """Create an attribute, optionally with an attached file."""
    async with _attribute_body(request) as (payload, upload):
        body: AttributeWrite = _validate(AttributeWrite, payload)
        stored = await storage.save(upload) if upload is not None else None

    attribute = Attribute(
        user_id=identity.user_id,
        key=body.key,
        value=body.value,
        where_used=body.where_used,
    )
    if stored is not None:
        attribute.file_path = stored.path
        attribute.file_name = stored.name
        attribute.file_type = stored.type
        attribute.file_size = stored.size

    try:
        attribute_id = await run_in_threadpool(vault.create_attribute, attribute)
    except SQLAlchemyError as exc:
        if stored is not None:
            storage.remove(stored.path)
        logger.exception("Failed to create attribute for user %d", identity.user_id)
        raise InternalError("Failed to create attribute.") from exc

    created = await run_in_threadpool(_load_owned, vault, attribute_id, identity.user_id)
    return AttributeResponse.from_attribute(created)


@router.put("/attributes/{attribute_id}", response_model=AttributeResponse)
async def replace_attribute(
    attribute_id: int,
    request: Request,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
    storage: UploadStorage = Depends(get_upload_storage),
) -> AttributeResponse:
    """Replace key, value and where_used. The stored file is kept unless a new one is sent."""
    existing = await run_in_threadpool(_load_owned, vault, attribute_id, identity.user_id)
    async with _attribute_body(request) as (payload, upload):
        body: AttributeWrite = _validate(AttributeWrite, payload)
        stored = await storage.save(upload) if upload is not None else None

    fields = {"key": body.key, "value": body.value, "where_used": body.where_used}
    return await run_in_threadpool(_apply_update, vault, storage, existing, identity.user_id, fields, stored)


@router.patch("/attributes/{attribute_id}", response_model=AttributeResponse)
async def patch_attribute(
    attribute_id: int,
    request: Request,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
    storage: UploadStorage = Depends(get_upload_storage),
) -> AttributeResponse:
    """Change only the fields present in the body."""
    existing = await run_in_threadpool(_load_owned, vault, attribute_id, identity.user_id)
    async with _attribute_body(request) as (payload, upload):
        body: AttributePatch = _validate(AttributePatch, payload)
        fields = body.model_dump(exclude_none=True)
        if not fields and upload is None:
            raise ValidationError("No fields to update.", code="no_changes")
        stored = await storage.save(upload) if upload is not None else None

    return await run_in_threadpool(_apply_update, vault, storage, existing, identity.user_id, fields, stored)


@router.delete("/attributes/{attribute_id}", status_code=204)
def delete_attribute(
    attribute_id: int,
    identity: Identity = Depends(get_current_identity),
    vault: VaultStore = Depends(get_vault_store),
    storage: UploadStorage = Depends(get_upload_storage),
) -> Response:
    existing = _load_owned(vault, attribute_id, identity.user_id)
    if not vault.delete_attribute(attribute_id, identity.user_id):
        raise NotFound("Attribute not found.")
    storage.remove(existing.file_path)
    return Response(status_code=204)
