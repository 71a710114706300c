"""
Custom exception classes and FastAPI exception handlers.

Why custom exceptions?
  The service layer raises domain-specific errors (like AccountLockedError or
  IPAlreadyUsedError) without importing HTTP concepts. The handlers registered
  here translate them into HTTP responses with one consistent body:

      {"error": "Unauthorized", "message": "Invalid username or password", "code": 401}

Exception hierarchy:
    VPNManagerError (base)
    ├── InvalidCredentialsError      — unknown username or wrong password (401)
    ├── UserInactiveError            — deactivated account (401)
    ├── UserNotYetValidError         — today precedes valid_from (401)
    ├── UserExpiredError             — today follows valid_to (401)
    ├── UnauthorizedError            — missing/invalid/blacklisted token (401)
    ├── AccountLockedError           — too many failed logins (429 + Retry-After)
    ├── RateLimitExceededError       — per-IP bucket empty (429 + Retry-After)
    ├── ForbiddenError               — authenticated but not allowed (403)
    ├── NotFoundError                — unknown identity (404)
    ├── ConflictError                — duplicate username/email/vpn_ip (409)
    ├── InvalidCurrentPasswordError  — password change with wrong current password (400)
    ├── InvalidRequestError          — update inconsistent with the stored record (400)
    ├── ServiceUnavailableError      — feature not configured (503)
    └── VPNNetworkError              — VPN IP allocation/validation family
        ├── NetworkNotConfiguredError (400)
        ├── InvalidNetworkError       (500)
        ├── InvalidIPAddressError     (400)
        ├── IPOutOfRangeError         (400)
        ├── IPReservedForServerError  (400)
        ├── IPAlreadyUsedError        (409)
        └── NoAvailableIPError        (409)
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("openvpn_mng.errors")


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class VPNManagerError(Exception):
    """Base exception for all domain errors.

    Subclasses set status_code and error; the handler uses both to build
    the response body, so adding a new error type needs no new handler.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "Bad Request"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class InvalidCredentialsError(VPNManagerError):
    """Raised when login credentials are incorrect.

    Same message for "no such user" and "wrong password".
    """

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"

    def __init__(self):
        super().__init__("Invalid username or password")


class UserInactiveError(VPNManagerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"

    def __init__(self):
        super().__init__("User account is inactive")


class UserNotYetValidError(VPNManagerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"

    def __init__(self):
        super().__init__("User account is not yet valid")


class UserExpiredError(VPNManagerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"

    def __init__(self):
        super().__init__("User account has expired")


class UnauthorizedError(VPNManagerError):
    """Raised when a request carries no usable credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(detail)


class AccountLockedError(VPNManagerError):
    """
    Raised when a login targets an account whose lockout has not expired.

    Attributes:
        retry_after: Whole seconds until the lockout ends (at least 1).
    """

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Too Many Requests"

    def __init__(self, retry_after: int):
        self.retry_after = max(1, retry_after)
        super().__init__(
            f"Account is locked due to too many failed login attempts. "
            f"Try again in {self.retry_after} seconds"
        )


class RateLimitExceededError(VPNManagerError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Too Many Requests"

    def __init__(self, retry_after: int):
        self.retry_after = max(1, retry_after)
        super().__init__("Rate limit exceeded. Please try again later.")


# ---------------------------------------------------------------------------
# Authorization and resources
# ---------------------------------------------------------------------------

class ForbiddenError(VPNManagerError):
    """Raised when a user attempts to act on a resource they don't manage."""

    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"

    def __init__(self, detail: str = "Access denied"):
        super().__init__(detail)


class NotFoundError(VPNManagerError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail)


class ConflictError(VPNManagerError):
    """Raised when a write would violate a uniqueness rule."""

    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(detail)


class InvalidCurrentPasswordError(VPNManagerError):
    def __init__(self):
        super().__init__("Invalid current password")


class InvalidRequestError(VPNManagerError):
    """A request that is well-formed but inconsistent with the stored record."""

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(detail)


class ServiceUnavailableError(VPNManagerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service Unavailable"


# ---------------------------------------------------------------------------
# VPN IP allocation
# ---------------------------------------------------------------------------

class VPNNetworkError(VPNManagerError):
    """Base class for VPN address allocation and validation failures."""


class NetworkNotConfiguredError(VPNNetworkError):
    def __init__(self):
        super().__init__("VPN network not configured")


class InvalidNetworkError(VPNNetworkError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal Server Error"

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"Invalid VPN network CIDR: {network}")


class InvalidIPAddressError(VPNNetworkError):
    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"Invalid IP address format: {ip}")


class IPOutOfRangeError(VPNNetworkError):
    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"IP address {ip} is outside VPN network range")


class IPReservedForServerError(VPNNetworkError):
    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"IP address {ip} is reserved for VPN server")


class IPAlreadyUsedError(VPNNetworkError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"

    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"IP address {ip} is already in use")


class NoAvailableIPError(VPNNetworkError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"

    def __init__(self):
        super().__init__("No available IP addresses in VPN network")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def error_body(status_code: int, error: str, message: str) -> dict:
    return {"error": error, "message": message, "code": status_code}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Every error leaves the API as {"error", "message", "code"}, including
    FastAPI's own HTTPException and request validation failures, so clients
    only ever parse one shape.

    This is called once from create_app() in main.py.
    """

    @app.exception_handler(AccountLockedError)
    @app.exception_handler(RateLimitExceededError)
    async def retry_later_handler(request: Request, exc: VPNManagerError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, exc.error, exc.detail),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(VPNManagerError)
    async def domain_error_handler(request: Request, exc: VPNManagerError) -> JSONResponse:
        headers = None
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, exc.error, exc.detail),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.status_code, _reason(exc.status_code), str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(
                status.HTTP_400_BAD_REQUEST, "Bad Request", _summarize(exc.errors())
            ),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", str(exc)
            ),
        )


def _reason(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _summarize(errors) -> str:
    """Flatten pydantic's error list into one readable line."""
    parts = []
    for err in errors:
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"
