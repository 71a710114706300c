"""
Pydantic schemas for authentication endpoints (login).

Pydantic validates incoming data automatically — if a required field is
missing or the wrong type, the request is rejected with 400 before our
code even runs.
"""

from pydantic import BaseModel, Field

from app.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    """Response body for a successful login — the bearer token plus the user."""
    token: str
    expires_in: int  # seconds
    user: UserResponse

