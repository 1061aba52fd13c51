"""Per-request execution context and admission control."""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Deque, Optional, TypeVar, Union

from ..error_handling import RequestCancelledError, ToolTimeoutError
from ..git.models import RepositoryContext

if TYPE_CHECKING:
    from .services import ServerServices

logger = logging.getLogger(__name__)

T = TypeVar("T")

RequestId = Union[str, int]


def _consume(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class AdmissionQueue:
    """Counting gate that admits waiters strictly in arrival order.

    A released slot is handed directly to the oldest waiter, so a late arrival
    can never overtake a queued one. A waiter cancelled while queued leaves the
    queue without consuming a slot.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._active = 0
        self._waiters: Deque["asyncio.Future[None]"] = deque()

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._active < self.capacity and not self.waiting:
            self._active += 1
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # slot was already handed over; pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self._active <= 0:
            raise RuntimeError("AdmissionQueue released more times than acquired")
        self._active -= 1


class ExecutionContext:
    """
    Request-scoped state handed to a tool handler.

    Carries the cancellation signal and deadline of one request, plus
    accessors for the cached repository context and auth decision. Handlers
    wrap every external call in :meth:`guard` so cancellation and deadline
    expiry interrupt them promptly.
    """

    def __init__(
        self,
        request_id: Optional[RequestId],
        tool_name: str,
        deadline: float,
        timeout: float,
        services: "ServerServices",
    ):
        self.request_id = request_id
        self.tool_name = tool_name
        self.deadline = deadline
        self.timeout = timeout
        self.services = services
        self.cancel_reason: Optional[str] = None
        self._token: Optional[str] = None
        self._cancelled = asyncio.Event()
        self._loop = asyncio.get_running_loop()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self, reason: str) -> None:
        if not self._cancelled.is_set():
            self.cancel_reason = reason
            self._cancelled.set()
            logger.debug(f"Request {self.request_id!r} ({self.tool_name}) cancelled: {reason}")

    def remaining(self) -> float:
        return max(0.0, self.deadline - self._loop.time())

    def check(self) -> None:
        """Raise if the request has been cancelled or its deadline has passed."""
        if self.cancelled:
            raise RequestCancelledError(f"Request cancelled: {self.cancel_reason}")
        if self._loop.time() >= self.deadline:
            raise self._timeout_error()

    def _timeout_error(self) -> ToolTimeoutError:
        return ToolTimeoutError(
            f"Tool '{self.tool_name}' did not complete within {self.timeout:g}s",
            {"timeout": self.timeout},
        )

    async def guard(self, awaitable: Awaitable[T], detach: bool = False) -> T:
        """Await ``awaitable`` unless the request is cancelled or times out first.

        On cancellation or expiry the awaited task is cancelled, unless
        ``detach`` is set, in which case it is left running.

        Raises:
            RequestCancelledError: the request was cancelled.
            ToolTimeoutError: the deadline passed.
        """
        try:
            self.check()
        except (RequestCancelledError, ToolTimeoutError):
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise

        task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait}, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            if not detach:
                task.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if task in done:
            return task.result()

        if not detach:
            task.cancel()
            task.add_done_callback(_consume)
        self.check()
        raise self._timeout_error()

    async def repository(self, directory: str) -> RepositoryContext:
        """Repository identity for ``directory``, from cache or fresh detection."""
        return await self.guard(self.services.context_resolver.resolve(directory))

    async def authenticate(self) -> str:
        """Validate the configured credential and return it for API calls.

        Validation happens at most once per request.

        Raises:
            AuthMissingError / AuthInvalidError / AuthUnreachableError
        """
        if self._token is None:
            token = self.services.token
            await self.guard(self.services.auth_validator.validate(token))
            self._token = token
        return self._token
