import inspect
from collections.abc import Sequence
from typing import Callable, Union

from .errors import DEFAULT_RATE_LIMIT_DELAY
from .types import ErrorKind, RetryConfig

# Defaults used when inspect.signature cannot determine argument counts
DEFAULT_BACKOFF_ARGC = 1  # fn(attempt)

# Threshold for dispatch decisions
BACKOFF_WITH_KIND_ARGC = 2  # backoff fns receive the error kind at 2+ args

DEFAULT_SCHEDULE = (1.0, 3.0, 5.0)

RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER}
)


def _count_positional_args(fn, default: int) -> int:
    """Return count of positional params for fn; fall back to default on failure."""
    try:
        sig = inspect.signature(fn)
        return len(
            [
                p
                for p in sig.parameters.values()
                if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
            ]
        )
    except (TypeError, ValueError):
        return default


class BackoffPolicy:
    """Decides how long to wait before a retry of a non rate-limited failure.

    ``attempt`` is the 1-based number of the retry about to happen.
    """

    def delay(self, attempt: int, kind: ErrorKind) -> float:
        raise NotImplementedError


class ScheduleBackoff(BackoffPolicy):
    def __init__(self, schedule: Sequence[float] = DEFAULT_SCHEDULE):
        if not schedule:
            raise ValueError("schedule must not be empty")
        delays = tuple(float(d) for d in schedule)
        if any(d < 0 for d in delays):
            raise ValueError("schedule delays must be >= 0")
        if any(b < a for a, b in zip(delays, delays[1:])):
            raise ValueError("schedule must be non-decreasing")
        self.schedule = delays

    def delay(self, attempt: int, kind: ErrorKind) -> float:
        idx = min(max(attempt, 1), len(self.schedule)) - 1
        return self.schedule[idx]


class ExponentialBackoff(BackoffPolicy):
    def __init__(self, base: float = 1.0, growth: float = 2.0, cap: float = 30.0):
        self.base = base
        self.growth = growth
        self.cap = cap

    def delay(self, attempt: int, kind: ErrorKind) -> float:
        return min(self.cap, self.base * (self.growth ** max(0, attempt - 1)))


class FunctionalBackoff(BackoffPolicy):
    """Wrap a user-supplied delay function into a BackoffPolicy.

    Accepted function signatures:
        - fn(attempt) -> seconds
        - fn(attempt, kind) -> seconds
    """

    def __init__(self, fn: Callable):
        self.fn = fn

    def delay(self, attempt, kind):
        argc = _count_positional_args(self.fn, DEFAULT_BACKOFF_ARGC)
        value = self.fn(attempt, kind) if argc >= BACKOFF_WITH_KIND_ARGC else self.fn(attempt)
        value = float(value)
        if value < 0:
            raise ValueError("Custom backoff function returned a negative delay")
        return value


def coerce_backoff(backoff: Union[object, None]) -> BackoffPolicy:
    """Turn None | str | sequence | BackoffPolicy | callable into a BackoffPolicy.

    Accepted inputs:
      - None           -> ScheduleBackoff with the default 1s/3s/5s table
      - "schedule"     -> ScheduleBackoff with the default table
      - "exponential"  -> ExponentialBackoff
      - sequence of seconds -> ScheduleBackoff over that sequence
      - BackoffPolicy instance (returned as-is)
      - callable: fn(attempt) or fn(attempt, kind), wrapped into FunctionalBackoff
    """
    if backoff is None:
        return ScheduleBackoff()
    if isinstance(backoff, BackoffPolicy):
        return backoff
    if isinstance(backoff, str):
        name = backoff.lower()
        if name == "schedule":
            return ScheduleBackoff()
        if name == "exponential":
            return ExponentialBackoff()
        raise ValueError(
            "Unknown backoff string. Use 'schedule' or 'exponential', or pass a sequence/callable."
        )
    if isinstance(backoff, Sequence):
        return ScheduleBackoff(backoff)
    if callable(backoff):
        return FunctionalBackoff(backoff)
    raise TypeError(
        "backoff must be None, 'schedule'|'exponential', a sequence, BackoffPolicy, or a callable"
    )


def should_retry(kind: ErrorKind, attempt_count: int, max_attempts: int) -> bool:
    """Retry only transient kinds, and only while the budget has room."""
    return ErrorKind(kind) in RETRYABLE_KINDS and attempt_count < max_attempts


def delay_for(
    kind: ErrorKind,
    attempt_count: int,
    suggested_delay: Union[float, None] = None,
    *,
    backoff: Union[BackoffPolicy, None] = None,
    rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
) -> float:
    if ErrorKind(kind) is ErrorKind.RATE_LIMITED:
        if suggested_delay is not None and suggested_delay >= 0:
            return float(suggested_delay)
        return rate_limit_delay
    return (backoff or ScheduleBackoff()).delay(attempt_count, ErrorKind(kind))


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Union[object, None] = None,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
    ):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        self.max_attempts = max_attempts
        self.backoff = coerce_backoff(backoff)
        self.rate_limit_delay = rate_limit_delay

    @classmethod
    def from_config(cls, config: RetryConfig, backoff: Union[object, None] = None):
        return cls(
            max_attempts=config.max_attempts,
            backoff=backoff if backoff is not None else config.backoff_schedule,
            rate_limit_delay=config.rate_limit_delay,
        )

    def should_retry(self, kind: ErrorKind, attempt_count: int) -> bool:
        return should_retry(kind, attempt_count, self.max_attempts)

    def delay_for(
        self, kind: ErrorKind, attempt_count: int, suggested_delay: Union[float, None] = None
    ) -> float:
        return delay_for(
            kind,
            attempt_count,
            suggested_delay,
            backoff=self.backoff,
            rate_limit_delay=self.rate_limit_delay,
        )
