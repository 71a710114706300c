"""
FastAPI dependencies for authentication and authorization.

Dependencies are reusable functions that FastAPI injects into route handlers.
They form a dependency chain that enforces both authentication and
role-based access control:

  get_current_user (bearer token / cookie -> AuthUser)
      ├── require_role(*roles)        [403 unless the role is listed]
      │     ├── require_admin
      │     └── require_manager_or_admin
      └── (routers then call app.permissions for per-identity checks)

  require_vpn_token (X-VPN-Token -> None)   [OpenVPN server scripts only]

  enforce_login_rate_limit (client IP -> None)  [POST /auth/login only]

The two authentication schemes are never mixed: human-facing routes take a
bearer token, the /vpn-auth routes take the shared VPN token.

Shared components (token codec, blacklist, rate limiter, IP allocator,
audit sink, auth service) are built once in create_app() and live on
app.state; the getters below hand them to routes so tests can build an
app with whatever settings they need.
"""

import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, Request

from app.audit import AuditSink
from app.blacklist import TokenBlacklist
from app.config import Settings
from app.exceptions import (
    ForbiddenError,
    RateLimitExceededError,
    ServiceUnavailableError,
    UnauthorizedError,
)
from app.models.user import Role
from app.rate_limiter import RateLimiter, client_ip_from
from app.security import TokenClaims, TokenCodec, TokenError
from app.services.auth_service import AuthService
from app.services.vpn_ip_service import VpnIpAllocator

TOKEN_COOKIE = "token"


@dataclass(frozen=True)
class AuthUser:
    """The caller identity, as carried by a verified bearer token."""
    id: uuid.UUID
    username: str
    role: Role
    token: str
    expires_at: datetime | None = None

    @classmethod
    def from_claims(cls, claims: TokenClaims, token: str) -> "AuthUser":
        return cls(
            id=claims.subject_id,
            username=claims.username,
            role=claims.role,
            token=token,
            expires_at=claims.expires_at,
        )


# ---------------------------------------------------------------------------
# app.state accessors
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_codec(request: Request) -> TokenCodec:
    return request.app.state.codec


def get_blacklist(request: Request) -> TokenBlacklist:
    return request.app.state.blacklist


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_allocator(request: Request) -> VpnIpAllocator:
    return request.app.state.allocator


def get_audit(request: Request) -> AuditSink:
    return request.app.state.audit


def get_client_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_ip_from(request.headers, peer)


# ---------------------------------------------------------------------------
# Bearer authentication
# ---------------------------------------------------------------------------

def extract_token(request: Request) -> str | None:
    """
    Find the caller's token: the Authorization header first, then the
    session cookie set at login (browser clients).
    """
    header = request.headers.get("authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value:
            return value.strip()
        return header.strip()
    return request.cookies.get(TOKEN_COOKIE) or None


async def get_current_user(
    request: Request,
    codec: TokenCodec = Depends(get_codec),
    blacklist: TokenBlacklist = Depends(get_blacklist),
) -> AuthUser:
    """
    Validate the presented token and return the caller.

    This dependency is the first line of defense: if the token is missing,
    revoked, expired, or tampered with, the request is rejected with 401.
    The identity comes from the token claims alone; no database lookup.
    """
    token = extract_token(request)
    if not token:
        raise UnauthorizedError("Authorization required")

    if blacklist.is_blacklisted(token):
        raise UnauthorizedError("Token has been revoked")

    try:
        claims = codec.parse(token)
    except TokenError:
        raise UnauthorizedError("Invalid or expired token")

    user = AuthUser.from_claims(claims, token)
    request.state.auth_user = user
    return user


def require_role(*roles: Role):
    """
    Build a dependency that admits only the listed roles.

    Usage:
        @router.delete("/{id}", dependencies=[Depends(require_role(Role.ADMIN))])
    """
    allowed = frozenset(roles)

    async def guard(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in allowed:
            raise ForbiddenError("Insufficient permissions")
        return user

    return guard


require_admin = require_role(Role.ADMIN)
require_manager_or_admin = require_role(Role.MANAGER, Role.ADMIN)


# ---------------------------------------------------------------------------
# VPN server authentication
# ---------------------------------------------------------------------------

async def require_vpn_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Admit the OpenVPN server by its shared secret.

    503 when no VPN_TOKEN is configured (the integration is switched off),
    401 when the X-VPN-Token header is missing or wrong.
    """
    expected = settings.VPN_TOKEN
    if not expected:
        raise ServiceUnavailableError("VPN authentication is not configured")

    presented = request.headers.get("x-vpn-token")
    if not presented:
        raise UnauthorizedError("VPN token required")
    if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise UnauthorizedError("Invalid VPN token")


# ---------------------------------------------------------------------------
# Login rate limiting
# ---------------------------------------------------------------------------

async def enforce_login_rate_limit(
    request: Request,
    client_ip: str = Depends(get_client_ip),
) -> None:
    limiter: RateLimiter | None = request.app.state.rate_limiter
    if limiter is None:
        return
    if not limiter.allow(client_ip):
        raise RateLimitExceededError(limiter.retry_after)
