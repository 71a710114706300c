"""
Pydantic schemas for User endpoints.

These schemas control what identity data flows in and out of the API.
Notice that password_hash (and the lockout bookkeeping) is NEVER included
in any response schema — this is a critical security boundary.

Update schemas use model_dump(exclude_unset=True) in the service layer, so
only fields the client actually sent are applied (PATCH-style semantics on
PUT, matching the existing API clients).
"""

import uuid
from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field, model_validator

from app.models.user import Role

# Columns that are NOT NULL: an update may omit them but not clear them
REQUIRED_ON_UPDATE = ("username", "role", "first_name", "last_name", "email", "is_active")


class UserCreateRequest(BaseModel):
    """Request body for POST /users."""
    username: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=8)
    role: Role = Role.USER
    manager_id: uuid.UUID | None = None
    first_name: str = Field(min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    telephone: str | None = Field(None, max_length=50)
    is_active: bool = True
    valid_from: date | None = None
    valid_to: date | None = None
    # Omitted or empty: the next free address is assigned automatically
    vpn_ip: str | None = Field(None, max_length=45)

    @model_validator(mode="after")
    def check_validity_window(self):
        _check_window(self.valid_from, self.valid_to)
        return self


class UserUpdateRequest(BaseModel):
    """Request body for PUT /users/{id} (all fields optional)."""
    username: str | None = Field(None, min_length=3, max_length=100)
    password: str | None = Field(None, min_length=8)
    role: Role | None = None
    manager_id: uuid.UUID | None = None
    first_name: str | None = Field(None, min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    telephone: str | None = Field(None, max_length=50)
    is_active: bool | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    # Empty string or null releases the address
    vpn_ip: str | None = Field(None, max_length=45)

    @model_validator(mode="after")
    def check_required_not_null(self):
        nulled = sorted(
            field for field in REQUIRED_ON_UPDATE
            if field in self.model_fields_set and getattr(self, field) is None
        )
        if nulled:
            raise ValueError(f"{', '.join(nulled)} cannot be null")
        return self

    @model_validator(mode="after")
    def check_validity_window(self):
        _check_window(self.valid_from, self.valid_to)
        return self


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /users/profile — the fields anyone may edit on themselves."""
    first_name: str | None = Field(None, min_length=1, max_length=100)
    middle_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    telephone: str | None = Field(None, max_length=50)


class PasswordChangeRequest(BaseModel):
    """Request body for PUT /users/password."""
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class UserResponse(BaseModel):
    """Public representation of a User (never includes password hash)."""
    id: uuid.UUID
    username: str
    role: Role
    manager_id: uuid.UUID | None
    first_name: str
    middle_name: str | None
    last_name: str
    email: str
    telephone: str | None
    is_active: bool
    valid_from: date | None
    valid_to: date | None
    vpn_ip: str | None
    created_at: datetime
    updated_at: datetime
    created_by: uuid.UUID | None
    updated_by: uuid.UUID | None

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    """Paginated list of users."""
    users: list[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def _check_window(valid_from: date | None, valid_to: date | None) -> None:
    if valid_from is not None and valid_to is not None and valid_from > valid_to:
        raise ValueError("valid_from must not be after valid_to")
