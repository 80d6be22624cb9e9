"""
api/dependencies.py -- FastAPI Depends() providers for the vault resources.

The stores and upload storage are constructed once in the application lifespan
(api/main.py) and parked on app.state. Handlers never reach into app.state
themselves; they declare these providers as parameters so tests can override
any of them through app.dependency_overrides.
"""

from fastapi import Request

from vault.files import UploadStorage
from vault.store import VaultStore


def get_vault_store(request: Request) -> VaultStore:
    return request.app.state.vault


def get_upload_storage(request: Request) -> UploadStorage:
    return request.app.state.uploads
