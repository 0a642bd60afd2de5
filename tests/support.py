"""Stores and actions shared by the test modules."""

from __future__ import annotations

import asyncio

from pydantic import Field

from pystatestore.actions import AsyncAction, CancelSignal, raise_if_cancelled
from pystatestore.exceptions import ActionNetworkError, ActionValidationError
from pystatestore.hydration import HydratableStore
from pystatestore.store import StoreState, action, getter, mutator


class CounterState(StoreState):
    count: int = 0
    loading: bool = False
    error: str | None = None


class CounterStore(HydratableStore[CounterState]):
    state_type = CounterState
    store_key = "counter"

    @getter
    def doubled(self) -> int:
        return self.snapshot.count * 2

    @getter
    def is_positive(self) -> bool:
        return self.snapshot.count > 0

    @mutator
    def _set_count(state: CounterState, value: int) -> dict[str, int]:
        return {"count": value}

    @mutator
    def _add(state: CounterState, amount: int) -> CounterState:
        return state.model_copy(update={"count": state.count + amount})

    @mutator
    def _set_loading(state: CounterState, loading: bool) -> dict[str, bool]:
        return {"loading": loading}

    @mutator
    def _set_error(state: CounterState, error: str | None) -> dict[str, str | None]:
        return {"error": error}

    @action
    def increment(self) -> None:
        self._add(1)

    @action
    def decrement(self) -> None:
        self._add(-1)

    @action
    def reset(self) -> None:
        self._set_count(0)
        self._set_error(None)

    @action
    def set_count(self, value: int) -> None:
        if value < 0:
            raise ActionValidationError(f"count must be >= 0, got {value}")
        self._set_count(value)

    @action
    def load_from(self, value: object) -> None:
        # Invalid payloads are rejected by the snapshot schema.
        self._set_count(value)  # type: ignore[arg-type]


class Address(StoreState):
    city: str
    postcode: str | None = None


class ProfileState(StoreState):
    name: str = ""
    email: str | None = None
    tags: list[str] = Field(default_factory=list)
    address: Address | None = None
    scores: dict[str, float] = Field(default_factory=dict)


class ProfileStore(HydratableStore[ProfileState]):
    state_type = ProfileState
    store_key = "profile"

    @getter
    def display_name(self) -> str:
        return self.snapshot.name or "anonymous"

    @mutator
    def _rename(state: ProfileState, name: str) -> dict[str, str]:
        return {"name": name}

    @action
    def rename(self, name: str) -> None:
        self._rename(name)


class FakeCounterApi:
    """Stands in for a remote counter service."""

    def __init__(self, value: int = 0, *, fail_times: int = 0) -> None:
        self.value = value
        self.fail_times = fail_times
        self.calls = 0

    async def fetch(self) -> int:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ActionNetworkError("connection refused")
        return self.value


class FetchCounter(AsyncAction[CounterStore, int]):
    """Load the count from the API, recording loading and error state."""

    def __init__(self, api: FakeCounterApi) -> None:
        self.api = api

    async def execute(self, store: CounterStore, cancel: CancelSignal | None = None) -> int:
        store._set_loading(True)
        try:
            value = await self.api.fetch()
        except ActionNetworkError as exc:
            store._set_error(str(exc))
            raise
        finally:
            store._set_loading(False)
        raise_if_cancelled(cancel)
        store._set_count(value)
        store._set_error(None)
        return value


class IncrementAcrossAwait(AsyncAction[CounterStore, int]):
    """Increment, suspend until *gate* opens, increment again."""

    def __init__(self, gate: asyncio.Event) -> None:
        self.gate = gate

    async def execute(self, store: CounterStore, cancel: CancelSignal | None = None) -> int:
        store.increment()
        await self.gate.wait()
        store.increment()
        return store.snapshot.count


class IncrementOnce(AsyncAction[CounterStore, int]):
    async def execute(self, store: CounterStore, cancel: CancelSignal | None = None) -> int:
        store.increment()
        return store.snapshot.count


class SlowAction(AsyncAction[CounterStore, None]):
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def execute(self, store: CounterStore, cancel: CancelSignal | None = None) -> None:
        await asyncio.sleep(self.delay)


class CancellableCount(AsyncAction[CounterStore, int]):
    """Increment once per step until *cancel* is set."""

    def __init__(self, steps: int) -> None:
        self.steps = steps

    async def execute(self, store: CounterStore, cancel: CancelSignal | None = None) -> int:
        for _ in range(self.steps):
            raise_if_cancelled(cancel)
            store.increment()
            await asyncio.sleep(0)
        return store.snapshot.count
