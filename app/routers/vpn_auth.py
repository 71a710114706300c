"""
VPN auth router — endpoints for the OpenVPN server's hook scripts.

These authenticate with the shared X-VPN-Token header, never with a
bearer token (see dependencies.require_vpn_token).

Endpoints:
  POST /vpn-auth/authenticate                  — Check a connecting user's credentials
  GET  /vpn-auth/users                         — Active users holding a VPN address
  GET  /vpn-auth/users/by-username/{username}  — Look up a user by username
  GET  /vpn-auth/users/{user_id}               — Look up a user by id

/authenticate answers 200 with success=false when the credentials are
refused, and 401 only when the request body can't be read at all. The
deployed auth-user-pass-verify scripts depend on that split.
"""

import logging
import uuid
from datetime import date

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_auth_service, require_vpn_token
from app.exceptions import InvalidCredentialsError, UnauthorizedError
from app.schemas.vpn import VpnAuthRequest, VpnAuthResponse, VpnUserResponse
from app.services import user_service
from app.services.auth_service import AuthService

logger = logging.getLogger("openvpn_mng.vpn_auth")

router = APIRouter(dependencies=[Depends(require_vpn_token)])


@router.post("/authenticate", response_model=VpnAuthResponse, summary="Authenticate a VPN client")
async def authenticate(
    request: Request,
    db: AsyncSession = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        body = VpnAuthRequest.model_validate_json(await request.body())
    except ValidationError:
        raise UnauthorizedError("Invalid request body")

    try:
        user = await auth_service.authenticate_user(db, body.username, body.password)
    except InvalidCredentialsError:
        logger.info("VPN authentication refused for %r", body.username)
        return VpnAuthResponse(success=False, message="Invalid credentials")

    today = date.today()
    if not user.is_active:
        return VpnAuthResponse(success=False, message="User account is disabled")
    if user.valid_from is not None and today < user.valid_from:
        return VpnAuthResponse(success=False, message="User account is not yet valid")
    if user.valid_to is not None and today > user.valid_to:
        return VpnAuthResponse(success=False, message="User account has expired")

    return VpnAuthResponse(
        success=True,
        user_id=user.id,
        username=user.username,
        vpn_ip=user.vpn_ip,
    )


@router.get("/users", response_model=list[VpnUserResponse], summary="List VPN users")
async def list_vpn_users(db: AsyncSession = Depends(get_db)):
    return await user_service.list_vpn_users(db)


@router.get(
    "/users/by-username/{username}",
    response_model=VpnUserResponse,
    summary="Get a VPN user by username",
)
async def get_vpn_user_by_username(username: str, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user_by_username(db, username)


@router.get("/users/{user_id}", response_model=VpnUserResponse, summary="Get a VPN user by id")
async def get_vpn_user(user_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)
