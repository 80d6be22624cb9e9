"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach in
vault/models.py -- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    email is the login identity and is unique. username is an optional second
    login handle; it is unique when present. hashed_password is the bcrypt hash
    and is never serialized into API responses.
    """

    email: str
    name: str
    hashed_password: str
    id: int | None = None
    username: str | None = None
    is_admin: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, resolved once per request by auth/dependencies.py.

    Route handlers receive this as an explicit parameter. Values are read fresh
    from the user record on every request, so an admin flag change takes effect
    on the next call without re-issuing tokens.
    """

    user_id: int
    email: str
    is_admin: bool = False
