"""
User model — the VPN identity.

Each User is a login credential (username + hashed password) with a role,
an optional manager, an optional validity window, and optionally an
address inside the VPN tunnel network.

Roles:
  - ADMIN: Manages every identity, the only role that can delete
  - MANAGER: Manages itself and the identities whose manager_id points to it
  - USER: Manages only itself

The manager relation is a plain nullable self-reference. Who may act on
whom is decided per request by app.permissions.can_manage, never stored.

Soft delete:
  Deleting a user sets deleted_at. Every query filters on
  deleted_at IS NULL, and the unique indexes on username, email and vpn_ip
  are partial indexes over non-deleted rows, so a deleted identity frees
  its username, email and VPN address for reuse.

Lockout:
  failed_login_attempts counts consecutive bad passwords and is reset on a
  successful login. locked_until, while in the future, blocks every login
  attempt regardless of password correctness.
"""

import enum
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Role(str, enum.Enum):
    """
    Defines the role a user holds within the system.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


_NOT_DELETED = text("deleted_at IS NULL")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index(
            "uq_users_username_live", "username", unique=True,
            sqlite_where=_NOT_DELETED, postgresql_where=_NOT_DELETED,
        ),
        Index(
            "uq_users_email_live", "email", unique=True,
            sqlite_where=_NOT_DELETED, postgresql_where=_NOT_DELETED,
        ),
        # Authoritative guard against two identities racing for the same address
        Index(
            "uq_users_vpn_ip_live", "vpn_ip", unique=True,
            sqlite_where=text("deleted_at IS NULL AND vpn_ip IS NOT NULL"),
            postgresql_where=text("deleted_at IS NULL AND vpn_ip IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    username: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Argon2id hash of the password (never store plaintext!)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[Role] = mapped_column(
        Enum(Role),
        default=Role.USER,
        nullable=False,
    )

    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    telephone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Deactivated users can't log in but their data is preserved
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Validity window, date granularity, both ends inclusive
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    # 45 chars fits the longest textual IPv6 form
    vpn_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)

    # --- Lockout bookkeeping ---
    failed_login_attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False,
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # --- Audit columns ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True,
    )
