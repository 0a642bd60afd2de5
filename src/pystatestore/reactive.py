"""Reactive container primitives.

Stores do not implement reactive propagation themselves. They wrap any
object satisfying :class:`ReactiveContainer` and only ever hand out a
:class:`ReadView` of it. :class:`Signal` is the default container used when
no host framework container is supplied.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, Protocol, TypeVar, runtime_checkable

_logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class ReactiveContainer(Protocol[T]):
    """Host capability holding one value with change notification."""

    def read(self) -> T: ...

    def replace(self, value: T) -> None: ...

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe: ...


class Signal(Generic[T]):
    """Minimal synchronous container.

    Listeners run in subscription order after the new value is stored, so a
    listener reading the signal always sees the committed value. A listener
    that raises is logged and does not prevent the remaining listeners from
    running.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._listeners: list[Callable[[T], None]] = []

    def read(self) -> T:
        return self._value

    def replace(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                _logger.exception("Signal listener %r failed", listener)

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def __repr__(self) -> str:
        return f"Signal({self._value!r})"


class ReadView(Generic[T]):
    """Read-only view over a reactive container.

    This is the only handle external code gets on a store's state.
    """

    __slots__ = ("_container",)

    def __init__(self, container: ReactiveContainer[T]) -> None:
        self._container = container

    def get(self) -> T:
        """Return the latest committed snapshot."""
        return self._container.read()

    def with_(self, fn: Callable[[T], U]) -> U:
        """Apply *fn* to the current snapshot and return its result."""
        return fn(self._container.read())

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        return self._container.subscribe(listener)

    def __repr__(self) -> str:
        return f"ReadView({self._container.read()!r})"
