"""
User service — business logic for identity management.

This module handles:
  - Identity creation (with VPN address validation or auto-assignment)
  - Retrieval, scoped by the caller's place in the role hierarchy
  - Updates: full (PUT /users/{id}), profile-only and password
  - Soft deletion

Ownership enforcement:
  Every function that acts on behalf of a caller takes the authenticated
  `actor` and checks app.permissions before touching the target, so a
  router can't forget the check. Role guards on the routes decide who may
  call an endpoint at all.

Uniqueness:
  username, email and vpn_ip are checked up front for a friendly error,
  but the partial unique indexes are what actually decide. Two requests
  racing for the same address both pass validation; the second flush hits
  the index and is reported as ConflictError.
"""

import logging
import math
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    ConflictError,
    InvalidCurrentPasswordError,
    InvalidRequestError,
    NetworkNotConfiguredError,
    NotFoundError,
)
from app.models.user import Role, User
from app.permissions import Actor, check_create, check_update, ensure_can_manage
from app.schemas.user import (
    PasswordChangeRequest,
    ProfileUpdateRequest,
    UserCreateRequest,
    UserUpdateRequest,
)
from app.security import hash_password, verify_password
from app.services.vpn_ip_service import VpnIpAllocator

logger = logging.getLogger("openvpn_mng.users")

MAX_PAGE_SIZE = 100


def _live():
    return User.deleted_at.is_(None)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    """
    Get a non-deleted user by id.

    Raises:
        NotFoundError: If no live user has this id.
    """
    result = await db.execute(select(User).where(User.id == user_id, _live()))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username, _live()))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_managed_user(db: AsyncSession, actor: Actor, user_id: uuid.UUID) -> User:
    """Get a user the actor is allowed to manage (ForbiddenError otherwise)."""
    user = await get_user(db, user_id)
    ensure_can_manage(actor, user)
    return user


async def list_users(
    db: AsyncSession,
    actor: Actor,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[User], int]:
    """
    List the users visible to actor, newest first.

    ADMIN sees everyone, MANAGER sees its non-admin subordinates, USER sees
    itself; the same rule as permissions.can_manage.

    Returns:
        Tuple of (users on this page, total matching users).
    """
    page = max(1, page)
    page_size = min(max(1, page_size), MAX_PAGE_SIZE)

    conditions = [_live()]
    if actor.role == Role.MANAGER:
        conditions.append(User.manager_id == actor.id)
        conditions.append(User.role != Role.ADMIN)
    elif actor.role == Role.USER:
        conditions.append(User.id == actor.id)

    total = (
        await db.execute(select(func.count()).select_from(User).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.username)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


async def list_vpn_users(db: AsyncSession) -> list[User]:
    """Active, live identities that hold a VPN address."""
    result = await db.execute(
        select(User)
        .where(
            _live(),
            User.is_active.is_(True),
            User.vpn_ip.is_not(None),
            User.vpn_ip != "",
        )
        .order_by(User.username)
    )
    return list(result.scalars().all())


async def create_user(
    db: AsyncSession,
    allocator: VpnIpAllocator,
    actor: Actor,
    data: UserCreateRequest,
) -> User:
    """
    Create a new identity.

    A MANAGER always becomes the manager of what it creates and can never
    create an ADMIN. Without an explicit vpn_ip the next free address is
    assigned; an unconfigured VPN network simply leaves it empty.

    Raises:
        ForbiddenError: Manager restrictions.
        NotFoundError: manager_id does not name a live user.
        ConflictError: username, email or vpn_ip already taken.
        VPNNetworkError subclasses: vpn_ip rejected by the allocator.
    """
    check_create(actor, data.role)

    manager_id = data.manager_id
    if actor.role == Role.MANAGER:
        manager_id = actor.id
    elif manager_id is not None:
        await get_user(db, manager_id)

    await _ensure_unique(db, username=data.username, email=data.email)

    if data.vpn_ip:
        vpn_ip = await allocator.validate(db, data.vpn_ip)
    else:
        try:
            vpn_ip = await allocator.next_available(db)
        except NetworkNotConfiguredError:
            vpn_ip = None

    user = User(
        username=data.username,
        password_hash=hash_password(data.password),
        role=data.role,
        manager_id=manager_id,
        first_name=data.first_name,
        middle_name=data.middle_name,
        last_name=data.last_name,
        email=data.email,
        telephone=data.telephone,
        is_active=data.is_active,
        valid_from=data.valid_from,
        valid_to=data.valid_to,
        vpn_ip=vpn_ip,
        created_by=actor.id,
    )
    db.add(user)
    await _flush_unique(db)
    logger.info("User %s created by %s", user.username, actor.id)
    return user


async def update_user(
    db: AsyncSession,
    allocator: VpnIpAllocator,
    actor: Actor,
    user_id: uuid.UUID,
    data: UserUpdateRequest,
) -> User:
    """
    Apply the fields the client sent to a user the actor manages.

    Fields sent with their current value are not counted as changes, so a
    client can echo back a full record it fetched.
    """
    user = await get_managed_user(db, actor, user_id)

    requested = data.model_dump(exclude_unset=True)
    changes = {
        field: value
        for field, value in requested.items()
        if field == "password" or getattr(user, field) != value
    }
    if "vpn_ip" in changes and not changes["vpn_ip"] and not user.vpn_ip:
        del changes["vpn_ip"]

    check_update(actor, user, requested, changes)
    if not changes:
        return user

    # A partial update may move only one end of the window
    valid_from = changes.get("valid_from", user.valid_from)
    valid_to = changes.get("valid_to", user.valid_to)
    if valid_from is not None and valid_to is not None and valid_from > valid_to:
        raise InvalidRequestError("valid_from must not be after valid_to")

    if "manager_id" in changes and changes["manager_id"] is not None:
        if changes["manager_id"] == user.id:
            raise ConflictError("A user cannot be their own manager")
        await get_user(db, changes["manager_id"])

    await _ensure_unique(
        db,
        username=changes.get("username"),
        email=changes.get("email"),
        exclude_id=user.id,
    )

    if "vpn_ip" in changes:
        if changes["vpn_ip"]:
            changes["vpn_ip"] = await allocator.validate(
                db, changes["vpn_ip"], exclude_user_id=user.id,
            )
        else:
            changes["vpn_ip"] = None

    if "password" in changes:
        password = changes.pop("password")
        if password is not None:
            user.password_hash = hash_password(password)

    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_by = actor.id

    await _flush_unique(db)
    return user


async def update_profile(
    db: AsyncSession,
    user_id: uuid.UUID,
    data: ProfileUpdateRequest,
) -> User:
    """Update the caller's own name and contact fields."""
    user = await get_user(db, user_id)
    changes = data.model_dump(exclude_unset=True)
    # first/last name and email can't be cleared
    for field in ("first_name", "last_name", "email"):
        if changes.get(field, "") is None:
            del changes[field]

    if "email" in changes and changes["email"] != user.email:
        await _ensure_unique(db, email=changes["email"], exclude_id=user.id)

    for field, value in changes.items():
        setattr(user, field, value)
    user.updated_by = user.id
    await _flush_unique(db)
    return user


async def update_password(
    db: AsyncSession,
    user_id: uuid.UUID,
    data: PasswordChangeRequest,
) -> None:
    """
    Change the caller's password after re-checking the current one.

    Raises:
        InvalidCurrentPasswordError: current_password does not match.
    """
    user = await get_user(db, user_id)
    if not verify_password(data.current_password, user.password_hash):
        raise InvalidCurrentPasswordError()
    user.password_hash = hash_password(data.new_password)
    user.updated_by = user.id
    await db.flush()


async def delete_user(db: AsyncSession, actor: Actor, user_id: uuid.UUID) -> User:
    """
    Soft-delete a user.

    The row stays for the audit trail; its username, email and VPN address
    become available again.
    """
    user = await get_user(db, user_id)
    user.deleted_at = datetime.now(timezone.utc)
    user.updated_by = actor.id
    await db.flush()
    logger.info("User %s deleted by %s", user.username, actor.id)
    return user


async def _ensure_unique(
    db: AsyncSession,
    username: str | None = None,
    email: str | None = None,
    exclude_id: uuid.UUID | None = None,
) -> None:
    clauses = []
    if username is not None:
        clauses.append(User.username == username)
    if email is not None:
        clauses.append(User.email == email)
    if not clauses:
        return

    query = select(User).where(_live(), or_(*clauses))
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    existing = (await db.execute(query.limit(1))).scalar_one_or_none()
    if existing is None:
        return
    if username is not None and existing.username == username:
        raise ConflictError(f"Username '{username}' is already taken")
    raise ConflictError(f"Email '{email}' is already registered")


async def _flush_unique(db: AsyncSession) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        logger.info("Uniqueness violation on write: %s", exc.orig)
        raise ConflictError("Username, email or VPN IP is already in use")
