"""Error taxonomy and the failure normalizer.

Every terminal failure leaves the client as exactly one FerryError subclass
whose ``kind`` callers can branch on. ``normalize`` is pure: the same Failure
(and the same ``now`` for HTTP-date Retry-After values) always yields an equal
error.
"""

import email.utils as eut
import math
import time
from collections.abc import Mapping
from typing import Any, Union

from .types import ErrorKind, Failure

DEFAULT_RATE_LIMIT_DELAY = 5.0
# Longest Retry-After hint honoured; larger hints are clamped
MAX_RETRY_AFTER = 3600.0

TIMEOUT_MESSAGE = "Request timed out. Please try again later."
NETWORK_MESSAGE = "Network error. Please check your connection."
UNEXPECTED_MESSAGE = "An unexpected error occurred"


class FerryError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        status: Union[int, None] = None,
        retry_after: Union[float, None] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retry_after = retry_after
        # Filled in by the client once the call is terminal
        self.attempts = 0

    def __eq__(self, other):
        if not isinstance(other, FerryError):
            return NotImplemented
        return (self.kind, self.message, self.status, self.retry_after) == (
            other.kind,
            other.message,
            other.status,
            other.retry_after,
        )

    def __hash__(self):
        return hash((self.kind, self.message, self.status, self.retry_after))

    def __repr__(self):
        return (
            f"{type(self).__name__}(kind={self.kind.value}, "
            f"status={self.status}, message={self.message!r})"
        )


class NetworkError(FerryError):
    kind = ErrorKind.NETWORK


class RequestTimeoutError(FerryError):
    kind = ErrorKind.TIMEOUT


class RateLimitedError(FerryError):
    kind = ErrorKind.RATE_LIMITED


class ServerError(FerryError):
    kind = ErrorKind.SERVER


class ClientError(FerryError):
    kind = ErrorKind.CLIENT


class AuthError(FerryError):
    kind = ErrorKind.AUTH


class UnknownError(FerryError):
    kind = ErrorKind.UNKNOWN


_ERROR_TYPES: dict[ErrorKind, type[FerryError]] = {
    cls.kind: cls
    for cls in (
        NetworkError,
        RequestTimeoutError,
        RateLimitedError,
        ServerError,
        ClientError,
        AuthError,
        UnknownError,
    )
}


def error_for(kind: ErrorKind, message: str, **kwargs) -> FerryError:
    return _ERROR_TYPES[ErrorKind(kind)](message, **kwargs)


def parse_retry_after(headers: Mapping[str, str], now: float) -> Union[float, None]:
    """Return the Retry-After hint in seconds, or None when absent/unusable."""
    ra = None
    for k, v in headers.items():
        if k.lower() == "retry-after":
            ra = v
            break
    if ra is None:
        return None
    try:
        seconds = float(ra)
    except ValueError:
        pass
    else:
        # "inf", "nan" and "1e400" parse as floats but are not usable delays
        if not math.isfinite(seconds):
            return None
        return min(MAX_RETRY_AFTER, max(0.0, seconds))
    # HTTP-date per RFC7231
    try:
        ts = eut.parsedate_to_datetime(ra)
    except (TypeError, ValueError):
        return None
    if ts is None:
        return None
    # Round up so short delays are not truncated to zero
    return min(MAX_RETRY_AFTER, max(0.0, float(math.ceil(ts.timestamp() - now))))


def extract_message(body: Any, status: int) -> str:
    fallback = f"Server error: {status}"
    if not isinstance(body, Mapping):
        return fallback
    error = body.get("error")
    if isinstance(error, Mapping) and isinstance(error.get("message"), str) and error["message"]:
        return error["message"]
    if isinstance(error, str) and error:
        return error
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    return fallback


def classify_status(status: int) -> ErrorKind:
    if status == 429:  # noqa: PLR2004
        return ErrorKind.RATE_LIMITED
    if status == 401:  # noqa: PLR2004
        return ErrorKind.AUTH
    if status >= 500 or status == 408:  # noqa: PLR2004
        return ErrorKind.SERVER
    if 400 <= status < 500:  # noqa: PLR2004
        return ErrorKind.CLIENT
    return ErrorKind.UNKNOWN


def normalize(
    failure: Failure,
    *,
    default_retry_after: float = DEFAULT_RATE_LIMIT_DELAY,
    now: Union[float, None] = None,
) -> FerryError:
    """Map one failed attempt onto the error taxonomy.

    Args:
        failure (Failure): what the transport observed
        default_retry_after (float): suggested delay for a 429 without a usable hint
        now (float | None): reference time for HTTP-date Retry-After values

    Returns:
        FerryError: an instance of the subclass matching the failure kind (not raised)
    """
    if failure.status is None:
        if failure.reason == "timeout":
            return RequestTimeoutError(TIMEOUT_MESSAGE)
        if failure.reason == "network":
            return NetworkError(NETWORK_MESSAGE)
        return UnknownError(failure.detail or UNEXPECTED_MESSAGE)

    status = failure.status
    kind = classify_status(status)
    message = extract_message(failure.body, status)
    if kind is ErrorKind.RATE_LIMITED:
        hint = parse_retry_after(failure.headers, time.time() if now is None else now)
        return RateLimitedError(
            message,
            status=status,
            retry_after=default_retry_after if hint is None else hint,
        )
    return error_for(kind, message, status=status)
