"""
Pydantic schemas for the VPN endpoints.

Two audiences:
  - /vpn/*       — administrators choosing addresses (bearer token)
  - /vpn-auth/*  — the OpenVPN server's auth scripts (X-VPN-Token)
"""

import uuid
from datetime import date

from pydantic import BaseModel, Field


class NextIPResponse(BaseModel):
    ip: str


class ValidateIPRequest(BaseModel):
    """Request body for POST /vpn/validate-ip."""
    ip: str = Field(min_length=1, max_length=45)
    exclude_user_id: uuid.UUID | None = None


class ValidateIPResponse(BaseModel):
    valid: bool
    message: str


class NetworkInfoResponse(BaseModel):
    network: str
    server_ip: str
    total_ips: int
    used_ips: int
    # Negative when more addresses are assigned than the network holds
    available_ips: int


class UsedIPsResponse(BaseModel):
    ips: list[str]


class VpnAuthRequest(BaseModel):
    """Credentials relayed by the OpenVPN server's auth-user-pass-verify script."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class VpnAuthResponse(BaseModel):
    success: bool
    user_id: uuid.UUID | None = None
    username: str | None = None
    vpn_ip: str | None = None
    message: str | None = None


class VpnUserResponse(BaseModel):
    """What the OpenVPN server needs to know about an identity."""
    id: uuid.UUID
    username: str
    first_name: str
    last_name: str
    email: str
    is_active: bool
    vpn_ip: str | None
    valid_from: date | None
    valid_to: date | None

    model_config = {"from_attributes": True}
