from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from pystatestore.actions import CallableAsyncAction, run_async_action
from pystatestore.builder import define_state, define_store
from pystatestore.context import StoreContext
from pystatestore.exceptions import StoreDefinitionError
from pystatestore.hydration import HydratableStore, HydrationDocument, Hydrator, provide_hydrated_store
from pystatestore.store import Store, StoreState, store_role


def _counter_store(**kwargs):  # type: ignore[no-untyped-def]
    return define_store(
        "GeneratedCounterStore",
        key="generated-counter",
        fields={"count": (int, 0)},
        getters={"doubled": lambda s: s.count * 2},
        mutators={"set_count": lambda s, value: {"count": value}},
        actions={
            "increment": lambda self: self._set_count(self.snapshot.count + 1),
            "reset": lambda self: self._set_count(0),
        },
        **kwargs,
    )


def test_define_state() -> None:
    Point = define_state("Point", {"x": int, "y": (int, 0)})

    assert issubclass(Point, StoreState)
    point = Point(x=1)
    assert point.y == 0
    with pytest.raises(ValidationError):
        Point()
    with pytest.raises(ValidationError):
        point.x = 2  # type: ignore[misc]


def test_generated_store_behaves_like_hand_written() -> None:
    CounterStore = _counter_store()
    store = CounterStore()

    store.increment()
    store.increment()
    assert store.snapshot.count == 2
    assert store.doubled() == 4
    store.reset()
    assert store.snapshot.count == 0


def test_generated_class_metadata() -> None:
    CounterStore = _counter_store(module=__name__)

    assert CounterStore.__name__ == "GeneratedCounterStore"
    assert CounterStore.__module__ == __name__
    assert CounterStore.store_key == "generated-counter"
    assert CounterStore.state_type.__name__ == "GeneratedCounterState"
    assert issubclass(CounterStore, Store)
    assert not issubclass(CounterStore, HydratableStore)


def test_mutators_are_made_private() -> None:
    CounterStore = _counter_store()

    assert "_set_count" in CounterStore.__dict__
    assert "set_count" not in CounterStore.__dict__
    assert store_role(CounterStore.__dict__["_set_count"]) == "mutator"
    assert store_role(CounterStore.doubled) == "getter"
    assert store_role(CounterStore.increment) == "action"


def test_explicit_state_type() -> None:
    class TodoState(StoreState):
        items: tuple[str, ...] = ()

    TodoStore = define_store(
        "TodoStore",
        state_type=TodoState,
        mutators={"_append": lambda s, item: {"items": (*s.items, item)}},
        actions={"add": lambda self, item: self._append(item)},
    )
    store = TodoStore()
    store.add("milk")
    store.add("eggs")

    assert TodoStore.store_key == "TodoStore"
    assert store.snapshot == TodoState(items=("milk", "eggs"))


def test_needs_exactly_one_state_source() -> None:
    with pytest.raises(StoreDefinitionError):
        define_store("Empty")
    with pytest.raises(StoreDefinitionError):
        define_store("Both", state_type=StoreState, fields={"a": int})


def test_duplicate_member_rejected() -> None:
    with pytest.raises(StoreDefinitionError, match="'reset' twice"):
        define_store(
            "Clash",
            fields={"count": (int, 0)},
            getters={"reset": lambda s: s.count},
            actions={"reset": lambda self: None},
        )


@pytest.mark.asyncio
async def test_async_action_member() -> None:
    async def load(self, value: int) -> None:  # type: ignore[no-untyped-def]
        await asyncio.sleep(0)
        self._set_count(value)

    LoaderStore = define_store(
        "LoaderStore",
        fields={"count": (int, 0)},
        mutators={"set_count": lambda s, value: {"count": value}},
        actions={"load": load},
    )
    store = LoaderStore()

    assert store_role(LoaderStore.load) == "async_action"
    await store.load(11)
    assert store.snapshot.count == 11

    async def via_executor(target, cancel):  # type: ignore[no-untyped-def]
        await target.load(12)
        return target.snapshot.count

    assert await run_async_action(store, CallableAsyncAction(via_executor)) == 12


def test_hydratable_generated_store_round_trips() -> None:
    CounterStore = _counter_store(hydratable=True)
    server = CounterStore()
    server.increment()

    document = HydrationDocument()
    provide_hydrated_store(server, context=StoreContext(), document=document)
    page = document.inject("<html><head></head><body></body></html>")

    client = Hydrator.from_document(page, context=StoreContext()).hydrate(CounterStore).store
    assert client.snapshot.count == 1


def test_module_defaults_to_builder() -> None:
    assert _counter_store().__module__ == "pystatestore.builder"
