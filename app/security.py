"""
Security primitives: password hashing and bearer tokens.

This module centralizes all cryptographic operations so they're easy to
audit and update. Two concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - Argon2id is salted and adaptive (memory-hard and time-hard), so two
     hashes of the same password differ and brute force stays expensive
   - We use passlib's CryptContext for safe, high-level Argon2 operations

2. BEARER TOKENS (JSON Web Tokens)
   - After login, the user receives a signed JWT carrying their id,
     username and role
   - The token is signed with JWT_SECRET using HS256 (HMAC-SHA256)
   - iat and nbf are set to the issue time, exp to issue time + TTL
   - TokenCodec.parse() reports *why* a token was rejected through a small
     exception hierarchy; the request layer collapses all of them into 401

Revocation before expiry is handled by app.blacklist, not here.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError
from passlib.context import CryptContext

from app.models.user import Role


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# If we ever need to migrate from argon2 to a future scheme, passlib handles
# the transition automatically: old hashes are verified with the original
# scheme, and new passwords use the new one ("deprecated='auto'").
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Args:
        plain_password: The user's raw password input.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
        A fresh random salt is used on every call.
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    This is a constant-time comparison. A malformed or unrecognised hash
    is treated as a mismatch instead of raising, so a corrupted row can
    never turn a login attempt into a 500.

    Returns:
        True if the password matches, False otherwise.
    """
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# 2. Bearer Tokens
# ---------------------------------------------------------------------------

class TokenError(Exception):
    """Base class for every reason a bearer token can be rejected."""


class MalformedTokenError(TokenError):
    pass


class InvalidTokenSignatureError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


class TokenNotYetValidError(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    """Decoded token payload."""
    subject_id: uuid.UUID
    username: str
    role: Role
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


class TokenCodec:
    """
    Issues and parses signed, time-bound bearer tokens.

    One instance is built from settings at startup and shared through
    app.state; it holds the signing secret so nothing else has to.
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    def issue(
        self,
        subject_id: uuid.UUID,
        username: str,
        role: Role,
        ttl: timedelta,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(subject_id),
            "username": username,
            "role": Role(role).value,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def parse(self, token: str) -> TokenClaims:
        """
        Verify signature and time window, then decode the claims.

        Raises:
            MalformedTokenError: Not a JWT, or required claims missing/invalid.
            InvalidTokenSignatureError: Signature does not match the secret.
            TokenExpiredError: exp is in the past.
            TokenNotYetValidError: nbf is in the future.
        """
        # Structural check first so a garbage string is reported as malformed,
        # not as a signature failure.
        self._unverified_payload(token)

        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError(str(exc)) from exc
        except JWTClaimsError as exc:
            if "nbf" in str(exc):
                raise TokenNotYetValidError(str(exc)) from exc
            raise MalformedTokenError(str(exc)) from exc
        except JWTError as exc:
            raise InvalidTokenSignatureError(str(exc)) from exc

        return self._to_claims(payload)

    def parse_unverified(self, token: str) -> TokenClaims:
        """
        Decode claims WITHOUT verifying the signature or time window.

        Only used at logout, on a token get_current_user already accepted,
        to learn how long it must stay blacklisted. Never base an
        authorization decision on the result.
        """
        return self._to_claims(self._unverified_payload(token))

    @staticmethod
    def _unverified_payload(token: str) -> dict:
        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError(str(exc)) from exc
        if not isinstance(payload, dict):
            raise MalformedTokenError("Token payload is not an object")
        return payload

    @staticmethod
    def _to_claims(payload: dict) -> TokenClaims:
        try:
            return TokenClaims(
                subject_id=uuid.UUID(str(payload["sub"])),
                username=str(payload["username"]),
                role=Role(payload["role"]),
                issued_at=_from_timestamp(payload["iat"]),
                not_before=_from_timestamp(payload["nbf"]),
                expires_at=_from_timestamp(payload["exp"]),
            )
        except (KeyError, ValueError, TypeError, OverflowError, OSError) as exc:
            raise MalformedTokenError(f"Invalid token claims: {exc}") from exc


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
