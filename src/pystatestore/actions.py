"""Actions and the async action executor.

Actions orchestrate mutators and may have side effects (network calls,
logging, analytics). They never write the container themselves.

Async actions run on the asyncio event loop, which is the single-threaded
cooperative scheduler stores assume. Between two ``await`` points nothing
else runs; during a suspension other actions, mutators, or a second call of
the same action may run. There is no deduplication of concurrent calls and
the last committed mutation wins, so an async action must re-read
``store.snapshot`` after every ``await`` instead of trusting a value read
before it.

The executor does not map failures into state and has no default timeout.
An action that wants a failure to be visible to getters records it through
a mutator before raising.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar

from pystatestore.exceptions import ActionCancelledError, ActionError, ActionTimeoutError
from pystatestore.reactive import Signal
from pystatestore.store import Store

_logger = logging.getLogger(__name__)

StoreT = TypeVar("StoreT", bound=Store[Any])
StoreT_contra = TypeVar("StoreT_contra", bound=Store[Any], contravariant=True)
O = TypeVar("O")
O_co = TypeVar("O_co", covariant=True)
I = TypeVar("I")  # noqa: E741

CancelSignal = asyncio.Event


class ActionState(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_idle(self) -> bool:
        return self is ActionState.IDLE

    @property
    def is_pending(self) -> bool:
        return self is ActionState.PENDING

    @property
    def is_success(self) -> bool:
        return self is ActionState.SUCCESS

    @property
    def is_error(self) -> bool:
        return self is ActionState.ERROR

    @property
    def is_finished(self) -> bool:
        return self in (ActionState.SUCCESS, ActionState.ERROR)


class Action(Protocol[StoreT_contra, O_co]):
    """Synchronous orchestration over a store."""

    def execute(self, store: StoreT_contra) -> O_co: ...


def dispatch(store: StoreT, action: Action[StoreT, O]) -> O:
    """Run a synchronous action against *store*."""
    return action.execute(store)


class AsyncAction(ABC, Generic[StoreT, O]):
    """Asynchronous orchestration over a store.

    ``execute`` returns the output or raises an :class:`ActionError`.
    *cancel* is the caller's cancellation signal; the action decides where
    to honour it (see :func:`raise_if_cancelled`).
    """

    @abstractmethod
    async def execute(self, store: StoreT, cancel: CancelSignal | None = None) -> O:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return type(self).__name__


class CallableAsyncAction(AsyncAction[StoreT, O]):
    """Adapt a ``fn(store, cancel)`` coroutine function to :class:`AsyncAction`."""

    def __init__(self, fn: Callable[[StoreT, CancelSignal | None], Awaitable[O]], *, name: str = "") -> None:
        self._fn = fn
        self._name = name or getattr(fn, "__name__", type(self).__name__)

    async def execute(self, store: StoreT, cancel: CancelSignal | None = None) -> O:
        return await self._fn(store, cancel)

    @property
    def name(self) -> str:
        return self._name


def raise_if_cancelled(cancel: CancelSignal | None) -> None:
    """Raise :class:`ActionCancelledError` when *cancel* has been set."""
    if cancel is not None and cancel.is_set():
        raise ActionCancelledError("Action cancelled")


@dataclass(frozen=True, slots=True)
class AsyncActionOptions:
    """Opt-in execution policy for :func:`run_async_action`.

    Parameters
    ----------
    timeout : float or None
        Seconds before the attempt fails with :class:`ActionTimeoutError`.
    retries : int
        Extra attempts after an :class:`ActionError`. Cancellation is never
        retried.
    retry_delay : float
        Seconds to sleep between attempts.
    """

    timeout: float | None = None
    retries: int = 0
    retry_delay: float = 0.0

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")


class AsyncActionBuilder:
    """Fluent construction of :class:`AsyncActionOptions`."""

    def __init__(self) -> None:
        self._timeout: float | None = None
        self._retries = 0
        self._retry_delay = 0.0

    def with_timeout(self, seconds: float) -> AsyncActionBuilder:
        self._timeout = seconds
        return self

    def with_retry(self, count: int, *, delay: float = 0.0) -> AsyncActionBuilder:
        self._retries = count
        self._retry_delay = delay
        return self

    def build(self) -> AsyncActionOptions:
        return AsyncActionOptions(timeout=self._timeout, retries=self._retries, retry_delay=self._retry_delay)


async def _execute_once(
    store: StoreT,
    action: AsyncAction[StoreT, O],
    cancel: CancelSignal | None,
    timeout: float | None,
) -> O:
    if timeout is None:
        return await action.execute(store, cancel)

    timeout_cm = asyncio.timeout(timeout)
    try:
        async with timeout_cm:
            return await action.execute(store, cancel)
    except TimeoutError as exc:
        if timeout_cm.expired():
            raise ActionTimeoutError(timeout) from exc
        raise


async def run_async_action(
    store: StoreT,
    action: AsyncAction[StoreT, O],
    *,
    cancel: CancelSignal | None = None,
    options: AsyncActionOptions | None = None,
) -> O:
    """Execute *action* against *store* on the running event loop.

    Returns the action's output; errors propagate unchanged to the caller.
    """
    opts = options or AsyncActionOptions()
    attempts = opts.retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return await _execute_once(store, action, cancel, opts.timeout)
        except ActionCancelledError:
            raise
        except ActionError as exc:
            if attempt >= attempts:
                raise
            _logger.debug(
                "Async action %s on %s failed (attempt %d/%d): %s",
                action.name,
                store.id,
                attempt,
                attempts,
                exc,
            )
            if opts.retry_delay:
                await asyncio.sleep(opts.retry_delay)
    raise AssertionError("unreachable")  # pragma: no cover


class ActionHandle(Generic[O]):
    """Tracks one scheduled async action.

    Awaiting the handle returns the action's output or raises its error.
    """

    def __init__(self, task: asyncio.Task[O]) -> None:
        self._task = task

    @property
    def state(self) -> ActionState:
        if not self._task.done():
            return ActionState.PENDING
        if self._task.cancelled() or self._task.exception() is not None:
            return ActionState.ERROR
        return ActionState.SUCCESS

    @property
    def task(self) -> asyncio.Task[O]:
        return self._task

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Cancel the underlying task (hard cancellation at the next await)."""
        return self._task.cancel()

    def __await__(self) -> Generator[Any, None, O]:
        return self._task.__await__()


def spawn_async_action(
    store: StoreT,
    action: AsyncAction[StoreT, O],
    *,
    cancel: CancelSignal | None = None,
    options: AsyncActionOptions | None = None,
) -> ActionHandle[O]:
    """Schedule *action* as a task and return a handle to it."""
    task = asyncio.create_task(
        run_async_action(store, action, cancel=cancel, options=options),
        name=f"{store.store_key}:{action.name}",
    )
    return ActionHandle(task)


class ReactiveAction(Generic[I, O]):
    """Reactive bookkeeping for an action driven from UI code.

    Exposes the last input, the last output, a pending flag and a version
    counter (incremented each time the action starts), each backed by its
    own container so UI code can subscribe to them.
    """

    def __init__(self) -> None:
        self._input: Signal[I | None] = Signal(None)
        self._value: Signal[O | None] = Signal(None)
        self._pending: Signal[bool] = Signal(False)
        self._version: Signal[int] = Signal(0)

    @property
    def input(self) -> I | None:
        return self._input.read()

    @property
    def value(self) -> O | None:
        return self._value.read()

    @property
    def pending(self) -> bool:
        return self._pending.read()

    @property
    def version(self) -> int:
        return self._version.read()

    def set_input(self, value: I) -> None:
        self._input.replace(value)

    def set_pending(self) -> None:
        self._pending.replace(True)
        self._version.replace(self._version.read() + 1)

    def set_value(self, value: O) -> None:
        self._value.replace(value)
        self._pending.replace(False)

    def clear(self) -> None:
        self._input.replace(None)
        self._value.replace(None)
        self._pending.replace(False)

    def subscribe_pending(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        return self._pending.subscribe(listener)

    async def run(self, value: I, fn: Callable[[I], Awaitable[O]]) -> O:
        """Record *value*, run ``fn(value)`` and record its result.

        On error the pending flag is cleared and the error re-raised; the
        previous value is kept.
        """
        self.set_input(value)
        self.set_pending()
        try:
            result = await fn(value)
        except BaseException:
            self._pending.replace(False)
            raise
        self.set_value(result)
        return result
