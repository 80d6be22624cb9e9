"""
vault/files.py -- Local filesystem storage for attribute attachments.

Uploads are written to UPLOAD_DIR under a generated name and referenced from
the attributes table by their public URL path ("/uploads/<name>"). asgi.py
serves that directory as static files under the same prefix.

Size guard: at most max_bytes + 1 bytes are read from the upload; anything
longer is rejected with PayloadTooLarge before it touches the disk.

Removal is best-effort. The database is the source of truth: a stale file that
cannot be deleted is logged and left behind, never reported as a request
failure.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from pathlib import Path

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from core.errors import PayloadTooLarge
from vault.models import StoredFile

logger = logging.getLogger("proid.vault")

URL_PREFIX = "/uploads"

_SAFE_EXT = re.compile(r"^\.[A-Za-z0-9]{1,10}$")

_DOCUMENT_TYPES = {
    "application/msword",
    "application/rtf",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
}


def classify_content_type(content_type: str | None) -> str:
    """Map a MIME type to the coarse category stored in attributes.file_type."""
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime.startswith("image/"):
        return "image"
    if mime == "application/pdf":
        return "pdf"
    if mime.startswith("text/"):
        return "text"
    if mime in _DOCUMENT_TYPES or mime.startswith(
        ("application/vnd.openxmlformats-officedocument.", "application/vnd.oasis.opendocument.")
    ):
        return "document"
    return "other"


class UploadStorage:
    """Writes uploads to a directory and removes them again.

    Usage:
        storage = UploadStorage(Path("uploads"), max_bytes=3 * 1024 * 1024)
        stored = await storage.save(upload)     # StoredFile(path="/uploads/...", ...)
        storage.remove(stored.path)
    """

    def __init__(self, base_dir: Path, max_bytes: int) -> None:
        self.base_dir = Path(base_dir)
        self.max_bytes = max_bytes
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _generate_name(self, original: str) -> str:
        ext = Path(original).suffix
        if not _SAFE_EXT.match(ext):
            ext = ""
        return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext.lower()}"

    def _resolve(self, public_path: str) -> Path | None:
        """Map "/uploads/<name>" back to a file inside base_dir, or None."""
        prefix = URL_PREFIX + "/"
        if not public_path.startswith(prefix):
            return None
        name = public_path[len(prefix) :]
        # Only bare file names are ever generated; reject anything else.
        if not name or Path(name).name != name:
            return None
        return self.base_dir / name

    async def save(self, upload: UploadFile) -> StoredFile:
        """Persist an upload and return its metadata.

        Raises PayloadTooLarge if the upload exceeds max_bytes.
        """
        raw = await upload.read(self.max_bytes + 1)
        if len(raw) > self.max_bytes:
            raise PayloadTooLarge(f"Upload must be {self.max_bytes // (1024 * 1024)} MB or smaller.")

        original = upload.filename or "upload"
        name = self._generate_name(original)
        await run_in_threadpool((self.base_dir / name).write_bytes, raw)
        logger.info("Stored upload %s (%d bytes)", name, len(raw))
        return StoredFile(
            path=f"{URL_PREFIX}/{name}",
            name=Path(original).name,
            type=classify_content_type(upload.content_type),
            size=len(raw),
        )

    def remove(self, public_path: str | None) -> bool:
        """Delete a stored file. Returns True if a file was removed."""
        if not public_path:
            return False
        path = self._resolve(public_path)
        if path is None:
            logger.warning("Refusing to remove file outside upload dir: %s", public_path)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning("Could not remove stale upload %s", path, exc_info=True)
            return False
        return True
