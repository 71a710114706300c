"""
Ownership rules — who may act on which identity.

The role hierarchy is not stored anywhere; it is recomputed per request from
the actor's role and the target's manager_id:

  - ADMIN manages every identity
  - MANAGER manages itself and the non-admin identities whose manager_id
    is the manager
  - USER manages only itself

Role guards (app.dependencies.require_role) decide whether an actor may call
an endpoint at all; the functions here decide whether it may touch one
particular identity, and which fields it may change.
"""

import uuid
from typing import Protocol

from app.exceptions import ForbiddenError
from app.models.user import Role


class Actor(Protocol):
    id: uuid.UUID
    role: Role


class Target(Protocol):
    id: uuid.UUID
    role: Role
    manager_id: uuid.UUID | None


# Fields a non-admin may change on their own record
PROFILE_FIELDS = frozenset({"first_name", "middle_name", "last_name", "email", "telephone"})


def can_manage(actor: Actor, target: Target) -> bool:
    if actor.role == Role.ADMIN:
        return True
    if actor.id == target.id:
        return True
    if actor.role == Role.MANAGER:
        # an ADMIN is never a subordinate, whatever its manager_id says
        return target.role != Role.ADMIN and target.manager_id == actor.id
    return False


def ensure_can_manage(actor: Actor, target: Target) -> None:
    if not can_manage(actor, target):
        raise ForbiddenError("Access denied")


def check_create(actor: Actor, role: Role) -> None:
    """A manager can create identities, but never an ADMIN."""
    if actor.role == Role.MANAGER and role == Role.ADMIN:
        raise ForbiddenError("Managers cannot create admin users")


def check_update(actor: Actor, target: Target, requested: dict, changes: dict) -> None:
    """
    Validate an update that already passed can_manage().

    `requested` is every field the client sent; `changes` is the subset that
    differs from the stored record. Self-edits are judged on `changes`, so a
    client may echo back its own record. Manager restrictions are judged on
    `requested`: sending role=ADMIN is refused even if the target already
    holds it.

    Raises:
        ForbiddenError: if the actor tries to change a field its role doesn't
            allow on this target.
    """
    if actor.role == Role.ADMIN:
        return

    if actor.id == target.id:
        # Self-edit by a non-admin: profile only
        privileged = sorted(set(changes) - PROFILE_FIELDS)
        if privileged:
            raise ForbiddenError(
                f"Cannot change {', '.join(privileged)} on your own account"
            )
        return

    # MANAGER editing a subordinate
    if requested.get("role") == Role.ADMIN:
        raise ForbiddenError("Managers cannot assign the admin role")
    if "manager_id" in requested and requested["manager_id"] != actor.id:
        raise ForbiddenError("Managers cannot reassign users to another manager")
