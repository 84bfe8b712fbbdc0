import email.utils
import json
import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SpotifyError(Exception):
    """Base exception for everything raised by spotify_web."""


# -----------------
# Authorization flow
# -----------------


class AuthorizationError(SpotifyError):
    """An authorization attempt (or the credentials behind it) failed."""


class AuthorizationDenied(AuthorizationError):
    """The redirect carried an ``error`` parameter instead of a code."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"Authorization denied: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class StateMismatch(AuthorizationError):
    def __init__(self, expected: str, received: Optional[str]):
        self.expected = expected
        self.received = received
        super().__init__("State returned with the authorization code does not match the one sent")


class AuthorizationTimeout(AuthorizationError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"No authorization redirect received within {timeout:g} seconds")


class AuthorizationCancelled(AuthorizationError):
    """The redirect wait was cancelled before a redirect arrived."""


class AuthExchangeFailed(AuthorizationError):
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Token exchange failed (HTTP {status}): {message}")


class ReauthorizationRequired(AuthorizationError):
    """Stored credentials can no longer be renewed; run the authorization flow again."""


class InsufficientScope(AuthorizationError):
    def __init__(self, missing):
        self.missing = tuple(missing)
        super().__init__(f"Missing required scope(s): {' '.join(self.missing)}")


# -----------------
# API responses
# -----------------


class ErrorKind(Enum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    REMOTE_FAULT = "remote_fault"
    MALFORMED_RESPONSE = "malformed_response"
    UNEXPECTED_STATUS = "unexpected_status"


class ApiError(SpotifyError):
    """A non-success outcome of an API call.

    ``http_status`` is the status of the response that produced the error
    (for ``MalformedResponse`` it is the 2xx status whose body could not be
    understood). ``retry_after`` is only set for rate limiting.
    """

    kind = ErrorKind.UNEXPECTED_STATUS

    def __init__(
        self,
        http_status: int,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        retry_after: Optional[timedelta] = None,
    ):
        if kind is not None:
            self.kind = kind
        self.http_status = int(http_status)
        self.message = message
        self.retry_after = retry_after
        super().__init__(f"Spotify API error {self.http_status} ({self.kind.value}): {message}")


class RateLimited(ApiError):
    kind = ErrorKind.RATE_LIMITED


class Unauthorized(ApiError):
    kind = ErrorKind.UNAUTHORIZED


class Forbidden(ApiError):
    kind = ErrorKind.FORBIDDEN


class NotFound(ApiError):
    kind = ErrorKind.NOT_FOUND


class BadRequest(ApiError):
    kind = ErrorKind.BAD_REQUEST


class RemoteFault(ApiError):
    kind = ErrorKind.REMOTE_FAULT


class MalformedResponse(ApiError):
    kind = ErrorKind.MALFORMED_RESPONSE


class UnsupportedVariant(SpotifyError):
    """A polymorphic payload carried a discriminant this client does not model."""

    def __init__(self, discriminant: Any, *, index: Optional[int] = None):
        self.discriminant = discriminant
        self.index = index
        super().__init__(f"Unsupported item type: {discriminant!r}")


class NetworkError(SpotifyError):
    """The transport failed before an HTTP response was received. Retryable."""


class InvalidSpotifyId(SpotifyError, ValueError):
    pass


_STATUS_ERRORS = {
    400: BadRequest,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
}


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP-date)."""

    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        try:
            return timedelta(seconds=max(0.0, seconds))
        except OverflowError:
            return None

    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(timedelta(0), when - now)


def error_message_from_body(body: bytes, status: int) -> str:
    """Pull a human message out of an error body.

    Understands the Web API envelope ``{"error": {"status", "message"}}`` and the
    accounts service shape ``{"error": "...", "error_description": "..."}``.
    Anything else falls back to the raw text.
    """

    text = (body or b"").decode("utf-8", errors="replace").strip()
    try:
        payload: Dict[str, Any] = json.loads(text) if text else {}
    except json.JSONDecodeError:
        payload = {}

    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            description = payload.get("error_description")
            return f"{err}: {description}" if description else err

    return text or f"HTTP {status} with empty body"


def api_error_from_response(status: int, headers: Any, body: bytes) -> ApiError:
    """Map a non-success HTTP response to the matching ``ApiError`` subclass."""

    message = error_message_from_body(body, status)

    if status == 429:
        return RateLimited(status, message, retry_after=parse_retry_after(_header(headers, "Retry-After")))
    if status in _STATUS_ERRORS:
        return _STATUS_ERRORS[status](status, message)
    if 500 <= status <= 599:
        return RemoteFault(status, message)
    return ApiError(status, message, kind=ErrorKind.UNEXPECTED_STATUS)


def _header(headers: Any, name: str) -> Optional[str]:
    if headers is None:
        return None
    getter = getattr(headers, "get", None)
    if getter is None:
        return None
    value = getter(name)
    if value is None and isinstance(headers, dict):
        lowered = name.lower()
        for key, candidate in headers.items():
            if str(key).lower() == lowered:
                return candidate
    return value
