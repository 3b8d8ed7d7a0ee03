from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .errors import FerryError


class CallState(str, Enum):
    CREATED = "created"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"
    TERMINAL_FAILURE = "terminal_failure"


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.CREATED: frozenset({CallState.SENDING}),
    CallState.SENDING: frozenset({CallState.SUCCESS, CallState.FAILED}),
    CallState.FAILED: frozenset({CallState.SENDING, CallState.TERMINAL_FAILURE}),
    CallState.SUCCESS: frozenset(),
    CallState.TERMINAL_FAILURE: frozenset(),
}


@dataclass
class RetryState:
    """Retry bookkeeping for one logical call; never shared between calls."""

    max_attempts: int
    attempts: int = 0  # retries already made
    exhausted: bool = False
    next_delay: Union[float, None] = None
    last_error: Union[FerryError, None] = None
    state: CallState = CallState.CREATED
    history: list[CallState] = field(default_factory=lambda: [CallState.CREATED])

    @property
    def total_attempts(self) -> int:
        return self.attempts + 1

    @property
    def done(self) -> bool:
        return self.state in (CallState.SUCCESS, CallState.TERMINAL_FAILURE)

    def _move(self, target: CallState):
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal call transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def sending(self):
        self._move(CallState.SENDING)

    def succeeded(self):
        self._move(CallState.SUCCESS)
        self.next_delay = None

    def failed(self, error: FerryError):
        self._move(CallState.FAILED)
        self.last_error = error

    def schedule_retry(self, delay: float):
        if self.attempts >= self.max_attempts:
            raise RuntimeError("retry budget already spent")
        self.attempts += 1
        self.next_delay = delay

    def give_up(self):
        self.exhausted = self.attempts >= self.max_attempts
        self.next_delay = None
        self._move(CallState.TERMINAL_FAILURE)
