"""
Authentication router — login, logout and the current identity.

Endpoints:
  POST /auth/login   — Authenticate and get a token (rate limited per client IP)
  POST /auth/logout  — Revoke the presented token and clear the session cookie
  GET  /auth/me      — The caller's identity record

Login returns the bearer token in the body AND sets it as an http-only,
same-site=lax cookie named "token", so both API clients and the browser UI
can use the same endpoint.

Security audit notes:
  - Plaintext passwords exist only in memory during request processing;
    they are never logged, and neither are tokens.
  - The request-logging middleware records method, path, status and
    latency only. No request bodies are written to any log.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import AuditSink
from app.blacklist import TokenBlacklist
from app.config import Settings
from app.database import get_db
from app.dependencies import (
    TOKEN_COOKIE,
    AuthUser,
    enforce_login_rate_limit,
    get_audit,
    get_auth_service,
    get_blacklist,
    get_client_ip,
    get_codec,
    get_current_user,
    get_settings,
)
from app.exceptions import VPNManagerError
from app.schemas.auth import LoginRequest, LoginResponse
from app.schemas.common import MessageResponse
from app.schemas.user import UserResponse
from app.security import TokenCodec
from app.services import user_service
from app.services.auth_service import AuthService

logger = logging.getLogger("openvpn_mng.auth")

router = APIRouter()


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Authenticate and get a token",
    dependencies=[Depends(enforce_login_rate_limit)],
)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    client_ip: str = Depends(get_client_ip),
):
    """
    Authenticate with username and password.

    Returns a bearer token that must be included in the Authorization
    header for all subsequent requests:

        Authorization: Bearer <token>

    The token expires after TOKEN_EXPIRE_HOURS (default: 24). Repeated
    failures lock the account for LOCKOUT_DURATION_MINUTES; a locked
    account answers 429 with Retry-After even for the right password.
    """
    try:
        token, user = await auth_service.authenticate(
            db, credentials.username, credentials.password,
        )
    except VPNManagerError:
        logger.info("Failed login for %r from %s", credentials.username, client_ip)
        raise

    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        max_age=settings.SESSION_EXPIRE_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
        path="/",
    )
    audit.log_login(user.id, user.username, client_ip)

    return LoginResponse(
        token=token,
        expires_in=settings.TOKEN_EXPIRE_HOURS * 3600,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Revoke the current token",
)
async def logout(
    response: Response,
    user: AuthUser = Depends(get_current_user),
    codec: TokenCodec = Depends(get_codec),
    blacklist: TokenBlacklist = Depends(get_blacklist),
    audit: AuditSink = Depends(get_audit),
    client_ip: str = Depends(get_client_ip),
):
    """
    Blacklist the presented token until it would have expired anyway,
    and clear the session cookie.

    Requires a valid token: a missing, forged, expired or already revoked
    one is rejected with 401.
    """
    # The token is already verified; only its own exp is needed here
    claims = codec.parse_unverified(user.token)
    blacklist.add(user.token, claims.expires_at)
    audit.log_logout(user.id, user.username, client_ip)

    response.delete_cookie(TOKEN_COOKIE, path="/")
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get the current identity",
)
async def me(
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's identity record; 404 once it has been deleted."""
    return await user_service.get_user(db, user.id)
