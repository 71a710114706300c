"""
VPN router — address allocation helpers for administrators.

Endpoints:
  GET  /vpn/next-ip       — Lowest free address in VPN_NETWORK
  GET  /vpn/network-info  — Size and usage of the tunnel network
  POST /vpn/validate-ip   — Check an address before assigning it
  GET  /vpn/used-ips      — Every assigned address, in numeric order

All endpoints require a bearer token. Nothing here reserves an address;
assignment happens when a user is created or updated.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_allocator, get_current_user
from app.exceptions import VPNNetworkError
from app.schemas.vpn import (
    NetworkInfoResponse,
    NextIPResponse,
    UsedIPsResponse,
    ValidateIPRequest,
    ValidateIPResponse,
)
from app.services.vpn_ip_service import VpnIpAllocator

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/next-ip", response_model=NextIPResponse, summary="Next available VPN IP")
async def next_ip(
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
):
    """400 if no network is configured, 409 if the network is full."""
    return NextIPResponse(ip=await allocator.next_available(db))


@router.get("/network-info", response_model=NetworkInfoResponse, summary="VPN network usage")
async def network_info(
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
):
    return await allocator.network_info(db)


@router.post("/validate-ip", response_model=ValidateIPResponse, summary="Validate a VPN IP")
async def validate_ip(
    request: ValidateIPRequest,
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
):
    """
    Always 200: the verdict is in the body.

    Pass exclude_user_id when checking the address a user already holds.
    """
    try:
        await allocator.validate(db, request.ip, exclude_user_id=request.exclude_user_id)
    except VPNNetworkError as exc:
        return ValidateIPResponse(valid=False, message=exc.detail)
    return ValidateIPResponse(valid=True, message="IP address is valid and available")


@router.get("/used-ips", response_model=UsedIPsResponse, summary="Assigned VPN IPs")
async def used_ips(
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
):
    return UsedIPsResponse(ips=await allocator.used_ips(db))
