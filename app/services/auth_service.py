"""
Authentication service — login business logic with account lockout.

This module contains the core auth logic, separated from HTTP concerns.
The router calls it and translates the results into HTTP responses, so the
rules here can be tested without spinning up a web server.

Login flow:
  1. Look up the non-deleted user by username
  2. If lockout is enabled and the account is locked, refuse BEFORE the
     password is checked (a locked account can't be brute-forced)
  3. Verify the password; on mismatch bump the failure counter and lock
     the account once it reaches the threshold
  4. Check the account is active and inside its validity window
  5. Reset the lockout bookkeeping and issue a bearer token

Security notes:
  - "No such user" and "wrong password" raise the same error, so login
    can't be used to enumerate usernames
  - Failure counters are flushed before the error is raised; get_db()
    commits on domain errors, so the counter survives the failed request
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    AccountLockedError,
    InvalidCredentialsError,
    UserExpiredError,
    UserInactiveError,
    UserNotYetValidError,
)
from app.models.user import User
from app.security import TokenCodec, verify_password

logger = logging.getLogger("openvpn_mng.auth")


@dataclass(frozen=True)
class LockoutPolicy:
    """Lock an account for `duration` after `max_attempts` consecutive failures."""
    max_attempts: int
    duration: timedelta


class AuthService:
    def __init__(
        self,
        codec: TokenCodec,
        token_ttl: timedelta,
        lockout: LockoutPolicy | None = None,
    ):
        self.codec = codec
        self.token_ttl = token_ttl
        self.lockout = lockout

    async def authenticate(
        self,
        db: AsyncSession,
        username: str,
        password: str,
    ) -> tuple[str, User]:
        """
        Authenticate a user and issue a bearer token.

        Returns:
            Tuple of (token string, User instance).

        Raises:
            InvalidCredentialsError: Unknown username or wrong password.
            AccountLockedError: Lockout in force; carries the remaining seconds.
            UserInactiveError, UserNotYetValidError, UserExpiredError:
                Correct password, but the account may not log in today.
        """
        user = await _find_live_user(db, username)
        if user is None:
            raise InvalidCredentialsError()

        now = datetime.now(timezone.utc)

        if self.lockout is not None and user.locked_until is not None:
            locked_until = _as_utc(user.locked_until)
            if locked_until > now:
                remaining = int((locked_until - now).total_seconds())
                logger.info("Login refused for locked account %s", user.username)
                raise AccountLockedError(remaining)

        if not verify_password(password, user.password_hash):
            if self.lockout is not None:
                await self._record_failure(db, user, now)
            raise InvalidCredentialsError()

        if not user.is_active:
            raise UserInactiveError()
        today = date.today()
        if user.valid_from is not None and today < user.valid_from:
            raise UserNotYetValidError()
        if user.valid_to is not None and today > user.valid_to:
            raise UserExpiredError()

        # Only write when there is something to reset
        if self.lockout is not None and (
            user.failed_login_attempts != 0 or user.locked_until is not None
        ):
            user.failed_login_attempts = 0
            user.locked_until = None
            await db.flush()

        token = self.codec.issue(user.id, user.username, user.role, self.token_ttl)
        return token, user

    async def authenticate_user(
        self,
        db: AsyncSession,
        username: str,
        password: str,
    ) -> User:
        """
        Plain credential check for machine callers (the OpenVPN server).

        No token, no lockout bookkeeping, no validity checks: callers
        apply whatever account checks they need themselves.
        """
        user = await _find_live_user(db, username)
        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()
        return user

    async def _record_failure(self, db: AsyncSession, user: User, now: datetime) -> None:
        user.failed_login_attempts += 1
        if user.failed_login_attempts >= self.lockout.max_attempts:
            user.locked_until = now + self.lockout.duration
            logger.warning(
                "Account %s locked for %s after %d failed attempts",
                user.username, self.lockout.duration, user.failed_login_attempts,
            )
        await db.flush()


async def _find_live_user(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(
        select(User).where(User.username == username, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
