"""
API request and response models for Campus RBAC REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
rbac/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from core.config import BCRYPT_MAX_PASSWORD_BYTES
from rbac.bootstrap import RBACReport
from rbac.models import Permission, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    # max_length bounds request size; over-long candidates fail verification.
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=BCRYPT_MAX_PASSWORD_BYTES)

    @field_validator("new_password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        # max_length counts characters; bcrypt's limit is in bytes.
        if len(value.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError(f"must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes (UTF-8)")
        return value


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str
    role: str
    must_change_password: bool


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: str
    status: str
    full_name: str
    user_code: Optional[str]
    must_change_password: bool
    permissions: list[str]

    @classmethod
    def from_user(cls, user: User, permissions: list[str]) -> "MeResponse":
        return cls(
            user_id=user.id,
            email=user.email,
            role=user.role,
            status=user.status,
            full_name=user.full_name,
            user_code=user.user_code,
            must_change_password=user.must_change_password,
            permissions=permissions,
        )


# ---------------------------------------------------------------------------
# RBAC -- response models
# ---------------------------------------------------------------------------


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    resource: str
    action: str
    description: str
    category: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            key=permission.key,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
            category=permission.category,
        )


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    category: str
    level: int
    is_system_role: bool
    permission_ids: list[int]

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            category=role.category,
            level=role.level,
            is_system_role=role.is_system_role,
            permission_ids=sorted(role.permission_ids),
        )


class CheckResponse(BaseModel):
    """Response for GET /api/v1/rbac/check."""

    model_config = ConfigDict(frozen=True)

    resource: str
    action: str
    allowed: bool


class InitializeRequest(BaseModel):
    """Optional body for POST /api/v1/rbac/initialize.

    catalog is validated by rbac.catalog.load_catalog(), not by this model,
    so the error message lists catalog problems in catalog terms.
    """

    catalog: Optional[dict[str, Any]] = None


class SectionReportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    created: int
    updated: int
    errors: list[dict[str, str]] = Field(default_factory=list)


class AdminReportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    created: bool


class InitializeResponse(BaseModel):
    """Response for POST /api/v1/rbac/initialize. Never includes a password."""

    model_config = ConfigDict(frozen=True)

    permissions: SectionReportResponse
    roles: SectionReportResponse
    admin: Optional[AdminReportResponse] = None

    @classmethod
    def from_report(cls, report: RBACReport) -> "InitializeResponse":
        return cls.model_validate(report.to_dict())


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
