"""
API request and response models for proID REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
vault/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User
from core.normalize import normalize_where_used
from vault.models import Attribute, DataConsumer

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_email(value: str) -> str:
    value = value.strip().lower()
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError("Invalid email format.")
    return value


def validation_details(errors: list[dict]) -> list[dict]:
    """Reduce pydantic error dicts to JSON-safe {field, message} pairs."""
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value."),
        }
        for err in errors
    ]


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses.

    error and details are only populated when DEBUG=true.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    code: str
    error: Optional[str] = None
    details: Optional[Any] = None


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    timestamp: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth / users
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    is_admin is honoured only for the very first account (see routes/auth.py).
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    is_admin: bool = False

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _check_email(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login. Either email or username identifies the account."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def require_identity(self) -> "LoginRequest":
        if not self.email and not self.username:
            raise ValueError("Email or username is required.")
        return self

    @property
    def login(self) -> str:
        return self.email or self.username or ""


class UserResponse(BaseModel):
    """Public view of an account. The password hash is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: Optional[str]
    name: str
    email: str
    is_admin: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            name=user.name,
            email=user.email,
            is_admin=user.is_admin,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class AuthResponse(BaseModel):
    """Response for register and login."""

    model_config = ConfigDict(frozen=True)

    token: str
    user: UserResponse


class ValidateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/users/profile."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value) if value is not None else None


class PasswordChange(BaseModel):
    """Request body for PUT /api/users/password.

    Accepts the camelCase names the browser client sends as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=255)
    new_password: str = Field(alias="newPassword", min_length=1, max_length=255)


class AdminUserPatch(BaseModel):
    """Request body for PATCH /api/admin/users/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_admin: Optional[bool] = None


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------


class AttributeWrite(BaseModel):
    """Body for POST /api/attributes and PUT /api/attributes/{id}.

    Arrives either as JSON or as multipart form fields. where_used accepts any
    of the shapes handled by core.normalize and is reduced to a flat list
    before validation.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=255)
    value: str = Field(min_length=1, max_length=10_000)
    where_used: list[str] = Field(default_factory=list)

    @field_validator("where_used", mode="before")
    @classmethod
    def normalize(cls, value: Any) -> list[str]:
        return normalize_where_used(value)


class AttributePatch(BaseModel):
    """Body for PATCH /api/attributes/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    key: Optional[str] = Field(default=None, min_length=1, max_length=255)
    value: Optional[str] = Field(default=None, min_length=1, max_length=10_000)
    where_used: Optional[list[str]] = None

    @field_validator("where_used", mode="before")
    @classmethod
    def normalize(cls, value: Any) -> Optional[list[str]]:
        return normalize_where_used(value) if value is not None else None


class AttributeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    key: str
    value: str
    where_used: list[str]
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_attribute(cls, attribute: Attribute) -> "AttributeResponse":
        return cls(
            id=attribute.id,
            user_id=attribute.user_id,
            key=attribute.key,
            value=attribute.value,
            where_used=attribute.where_used,
            file_path=attribute.file_path,
            file_name=attribute.file_name,
            file_type=attribute.file_type,
            file_size=attribute.file_size,
            created_at=attribute.created_at,
            updated_at=attribute.updated_at,
        )


# ---------------------------------------------------------------------------
# Data consumers
# ---------------------------------------------------------------------------


class DataConsumerCreate(BaseModel):
    """Request body for POST /api/data-consumers."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_private: bool = False


class DataConsumerUpdate(BaseModel):
    """Request body for PUT /api/data-consumers/{id}.

    is_admin_defined is ignored unless the caller is an admin.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_private: Optional[bool] = None
    is_admin_defined: Optional[bool] = None


class DataConsumerResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    created_by: int
    is_admin_defined: bool
    is_private: bool
    source: str  # "Admin Defined" | "User Created"
    created_at: str
    updated_at: str

    @classmethod
    def from_consumer(cls, consumer: DataConsumer) -> "DataConsumerResponse":
        return cls(
            id=consumer.id,
            name=consumer.name,
            description=consumer.description,
            created_by=consumer.created_by,
            is_admin_defined=consumer.is_admin_defined,
            is_private=consumer.is_private,
            source="Admin Defined" if consumer.is_admin_defined else "User Created",
            created_at=consumer.created_at,
            updated_at=consumer.updated_at,
        )
