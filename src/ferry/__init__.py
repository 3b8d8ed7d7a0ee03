from .adapters import (
    AiohttpTransport,
    AsyncHttpxTransport,
    HttpxTransport,
    RequestsTransport,
    TransportFailure,
    coerce_transport,
)
from .auth import BearerAuth, MemoryTokenStore, TokenStore
from .client import AsyncClient, Client
from .env import load_config_from_env
from .errors import (
    AuthError,
    ClientError,
    FerryError,
    NetworkError,
    RateLimitedError,
    RequestTimeoutError,
    ServerError,
    UnknownError,
    normalize,
    parse_retry_after,
)
from .policies import (
    BackoffPolicy,
    ExponentialBackoff,
    FunctionalBackoff,
    RetryPolicy,
    ScheduleBackoff,
    coerce_backoff,
    delay_for,
    should_retry,
)
from .queue import RequestSerializer, SyncRequestSerializer
from .state import CallState, RetryState
from .types import (
    AuthConfig,
    ClientConfig,
    Envelope,
    ErrorKind,
    Failure,
    RawResponse,
    RequestDescriptor,
    RetryConfig,
)

__all__ = [
    "Client",
    "AsyncClient",
    "ClientConfig",
    "AuthConfig",
    "RetryConfig",
    "RequestDescriptor",
    "RawResponse",
    "Failure",
    "Envelope",
    "ErrorKind",
    "FerryError",
    "NetworkError",
    "RequestTimeoutError",
    "RateLimitedError",
    "ServerError",
    "ClientError",
    "AuthError",
    "UnknownError",
    "normalize",
    "parse_retry_after",
    "RetryPolicy",
    "BackoffPolicy",
    "ScheduleBackoff",
    "ExponentialBackoff",
    "FunctionalBackoff",
    "coerce_backoff",
    "should_retry",
    "delay_for",
    "CallState",
    "RetryState",
    "TokenStore",
    "MemoryTokenStore",
    "BearerAuth",
    "RequestSerializer",
    "SyncRequestSerializer",
    "HttpxTransport",
    "AsyncHttpxTransport",
    "RequestsTransport",
    "AiohttpTransport",
    "TransportFailure",
    "coerce_transport",
    "load_config_from_env",
]
