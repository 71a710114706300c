"""
Users router — identity management endpoints.

Every request requires a valid bearer token. What a caller may see and
change depends on its role (see app.permissions):

Endpoints:
  GET    /users            — List visible users (paginated)
  POST   /users            — Create a user                [MANAGER, ADMIN]
  PUT    /users/profile    — Update own name/contact fields
  PUT    /users/password   — Change own password
  GET    /users/{user_id}  — Get a user the caller manages
  PUT    /users/{user_id}  — Update a user the caller manages
  DELETE /users/{user_id}  — Soft-delete a user           [ADMIN]

/profile and /password are declared before /{user_id} so they are not
swallowed by the path parameter.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.audit import AuditSink
from app.database import get_db
from app.dependencies import (
    AuthUser,
    get_allocator,
    get_audit,
    get_current_user,
    require_admin,
    require_manager_or_admin,
)
from app.schemas.common import MessageResponse
from app.schemas.user import (
    PasswordChangeRequest,
    ProfileUpdateRequest,
    UserCreateRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from app.services import user_service
from app.services.vpn_ip_service import VpnIpAllocator

router = APIRouter()


@router.get(
    "",
    response_model=UserListResponse,
    summary="List users",
)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=user_service.MAX_PAGE_SIZE),
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    ADMIN sees every user, MANAGER its subordinates, USER only itself.
    """
    users, total = await user_service.list_users(db, user, page, page_size)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=user_service.total_pages(total, page_size),
    )


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
)
async def create_user(
    request: UserCreateRequest,
    user: AuthUser = Depends(require_manager_or_admin),
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
    audit: AuditSink = Depends(get_audit),
):
    """
    Create a new identity.

    - **vpn_ip**: validated if given; otherwise the next free address in
      VPN_NETWORK is assigned (left empty if no network is configured)
    - A MANAGER becomes the new user's manager and cannot create an ADMIN
    """
    created = await user_service.create_user(db, allocator, user, request)
    audit.log_create(
        user.id, "user", created.id,
        {"username": created.username, "role": created.role.value},
    )
    return created


@router.put(
    "/profile",
    response_model=UserResponse,
    summary="Update own profile",
)
async def update_profile(
    request: ProfileUpdateRequest,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    updated = await user_service.update_profile(db, user.id, request)
    audit.log_update(
        user.id, "user", user.id,
        {"fields": sorted(request.model_fields_set)},
    )
    return updated


@router.put(
    "/password",
    response_model=MessageResponse,
    summary="Change own password",
)
async def update_password(
    request: PasswordChangeRequest,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    """Requires the current password; a wrong one is rejected with 400."""
    await user_service.update_password(db, user.id, request)
    audit.log_update(user.id, "user", user.id, {"fields": ["password"]})
    return MessageResponse(message="Password updated successfully")


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get a user",
)
async def get_user(
    user_id: uuid.UUID,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_managed_user(db, user, user_id)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    summary="Update a user",
)
async def update_user(
    user_id: uuid.UUID,
    request: UserUpdateRequest,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    allocator: VpnIpAllocator = Depends(get_allocator),
    audit: AuditSink = Depends(get_audit),
):
    """
    Update the fields present in the body.

    Non-admins editing themselves may only change profile fields; managers
    cannot grant ADMIN or move a subordinate to another manager.
    """
    updated = await user_service.update_user(db, allocator, user, user_id, request)
    audit.log_update(user.id, "user", user_id, {"fields": sorted(request.model_fields_set)})
    return updated


@router.delete(
    "/{user_id}",
    response_model=MessageResponse,
    summary="Delete a user",
)
async def delete_user(
    user_id: uuid.UUID,
    user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
):
    await user_service.delete_user(db, user, user_id)
    audit.log_delete(user.id, "user", user_id)
    return MessageResponse(message="User deleted successfully")
