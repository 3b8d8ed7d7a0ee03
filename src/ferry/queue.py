"""Serialize calls so at most one is in flight per serializer.

Admission is FIFO: a task starts only after the previously admitted task has
settled (returned or raised). The serializer never drops, reorders or retries
tasks; retrying happens inside the task.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger("ferry")


class RequestSerializer:
    """asyncio flavour; bound to the event loop it is first used on."""

    def __init__(self):
        self._pending: deque = deque()
        self._busy = False
        self._drain_task = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def busy(self) -> bool:
        return self._busy

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        fut = asyncio.get_running_loop().create_future()
        self._pending.append((task, fut))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.ensure_future(self._drain())
        return await fut

    async def _drain(self):
        try:
            while self._pending:
                task, fut = self._pending.popleft()
                if fut.done():
                    # caller went away before admission
                    continue
                self._busy = True
                try:
                    result = await task()
                except asyncio.CancelledError:
                    if not fut.done():
                        fut.cancel()
                    raise
                except Exception as e:
                    if not fut.done():
                        fut.set_exception(e)
                else:
                    if not fut.done():
                        fut.set_result(result)
                finally:
                    self._busy = False
        except asyncio.CancelledError:
            while self._pending:
                _, fut = self._pending.popleft()
                fut.cancel()
            raise


class SyncRequestSerializer:
    """Thread flavour; tickets keep admission in arrival order."""

    def __init__(self):
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        # tickets whose callers left before being served
        self._abandoned: set[int] = set()

    @property
    def pending(self) -> int:
        with self._cond:
            waiting = self._next_ticket - self._serving - 1 - len(self._abandoned)
            return max(0, waiting)

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._next_ticket > self._serving

    def _advance(self) -> None:
        # caller holds self._cond
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()

    def enqueue(self, task: Callable[[], T]) -> T:
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            if ticket != self._serving:
                logger.debug(f"serializer: ticket {ticket} waiting behind {ticket - self._serving}")
            try:
                while ticket != self._serving:
                    self._cond.wait()
            except BaseException:
                # interrupted while waiting: give the ticket up so later callers proceed
                if ticket == self._serving:
                    self._advance()
                else:
                    self._abandoned.add(ticket)
                raise
        try:
            return task()
        finally:
            with self._cond:
                self._advance()
