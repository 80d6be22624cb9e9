"""
vault/models.py -- Domain dataclasses for the proID attribute vault.

These are pure data containers with zero logic. where_used normalization lives
in core/normalize.py; ownership and visibility rules live in vault/store.py.

id is None before the record is written to the database.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Attribute:
    """A key/value record owned by one user.

    where_used is always the normalized flat list (see core/normalize.py).
    The file_* fields are all set together when an attachment was uploaded,
    and all None otherwise. file_path is the public URL path ("/uploads/...").
    """

    user_id: int
    key: str
    value: str
    where_used: list[str] = field(default_factory=list)
    id: Optional[int] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None  # original client-side filename
    file_type: Optional[str] = None  # "image" | "pdf" | "text" | "document" | "other"
    file_size: Optional[int] = None  # bytes
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class DataConsumer:
    """A named party that attributes are shared with.

    Admin-defined consumers are visible to every user; all others only to
    their creator. Names are globally unique.
    """

    name: str
    created_by: int
    description: Optional[str] = None
    is_admin_defined: bool = False
    is_private: bool = False
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class StoredFile:
    """Metadata for an upload written by vault/files.UploadStorage."""

    path: str  # public URL path, e.g. "/uploads/1712345678901-123456789.png"
    name: str
    type: str
    size: int
