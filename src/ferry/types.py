from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, TypedDict, Union

DEFAULT_BASE_URL = "http://localhost:8000/api"

# Call classes used by the endpoint builders; usable in ClientConfig.serialize_calls
CALL_CLASSES = frozenset(
    {
        "auth",
        "product",
        "order",
        "inventory",
        "delivery",
        "analytics",
        "dashboard",
        "simulation",
        "health",
    }
)


class ErrorKind(str, Enum):
    NETWORK = "NetworkError"
    TIMEOUT = "TimeoutError"
    RATE_LIMITED = "RateLimited"
    SERVER = "ServerError"
    CLIENT = "ClientError"
    AUTH = "AuthError"
    UNKNOWN = "UnknownError"


class Envelope(TypedDict, total=False):
    """Uniform response wrapper every endpoint is expected to return."""

    success: bool
    data: Any
    error: Union[str, dict]
    message: str


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    # Where on_redirect is pointed after the session is cleared
    login_path: str = "/login"


@dataclass(frozen=True)
class RetryConfig:
    # Automatic retries beyond the first attempt
    max_attempts: int = 3
    # Seconds to wait before retry 1, 2, 3...; the last value is reused past the end
    backoff_schedule: tuple[float, ...] = (1.0, 3.0, 5.0)
    # 429 without a usable Retry-After hint
    rate_limit_delay: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if not self.backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")
        schedule = tuple(float(d) for d in self.backoff_schedule)
        if any(d < 0 for d in schedule):
            raise ValueError("backoff_schedule delays must be >= 0")
        if any(b < a for a, b in zip(schedule, schedule[1:])):
            raise ValueError("backoff_schedule must be non-decreasing")
        if self.rate_limit_delay < 0:
            raise ValueError("rate_limit_delay must be >= 0")
        object.__setattr__(self, "backoff_schedule", schedule)


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    # Multipart uploads carry binary payloads and server-side processing
    upload_timeout: float = 60.0
    serialize: bool = False
    serialize_calls: frozenset[str] = frozenset()
    auth: AuthConfig = field(default_factory=AuthConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self):
        object.__setattr__(self, "serialize_calls", frozenset(self.serialize_calls))
        unknown = self.serialize_calls - CALL_CLASSES
        if unknown:
            raise ValueError(f"Unknown call classes in serialize_calls: {sorted(unknown)}")
        if self.timeout <= 0 or self.upload_timeout <= 0:
            raise ValueError("timeouts must be > 0")

    def serializes(self, call_class: str) -> bool:
        return self.serialize or call_class in self.serialize_calls


@dataclass
class RequestDescriptor:
    method: str
    path: str
    json: Any = None
    params: Union[dict[str, Any], None] = None
    files: Union[dict[str, tuple[str, bytes, str]], None] = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    call_class: str = "default"
    # None -> follow the client configuration for call_class
    serialize: Union[bool, None] = None
    # Retries made so far; advanced only by the retry loop
    attempt: int = 0


@dataclass(frozen=True)
class RawResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    # False when a non-empty body was not valid JSON
    decoded: bool = True
    text: str = ""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300  # noqa: PLR2004


@dataclass(frozen=True)
class Failure:
    """Transport-neutral description of one failed attempt."""

    status: Union[int, None] = None
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    # Set only when no response was received
    reason: Union[Literal["timeout", "network"], None] = None
    detail: str = ""

    @classmethod
    def from_response(cls, resp: RawResponse) -> "Failure":
        return cls(status=resp.status, headers=dict(resp.headers), body=resp.body)
