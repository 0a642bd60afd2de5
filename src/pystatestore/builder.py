"""Declarative shorthand for authoring stores.

:func:`define_store` generates a :class:`~pystatestore.store.Store` subclass
(and, optionally, its snapshot model) from plain functions, so a small store
can be written without a class body::

    CounterStore = define_store(
        "CounterStore",
        key="counter",
        fields={"count": (int, 0)},
        getters={"doubled": lambda s: s.count * 2},
        mutators={"set_count": lambda s, value: {"count": value}},
        actions={
            "increment": lambda self: self._set_count(self.snapshot.count + 1),
            "reset": lambda self: self._set_count(0),
        },
    )

Mutator names are made private (``set_count`` becomes ``_set_count``); the
generated class goes through the same definition checks as a hand-written one.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import create_model

from pystatestore.exceptions import StoreDefinitionError
from pystatestore.hydration import HydratableStore
from pystatestore.store import Store, StoreState, action, getter, mutator


def define_state(name: str, fields: Mapping[str, Any]) -> type[StoreState]:
    """Create a frozen snapshot model.

    *fields* maps a field name to ``(type, default)``, or to a bare type for a
    required field.
    """
    definitions: dict[str, Any] = {}
    for field_name, declaration in fields.items():
        if isinstance(declaration, tuple):
            definitions[field_name] = declaration
        else:
            definitions[field_name] = (declaration, ...)
    return create_model(name, __base__=StoreState, **definitions)


def _getter_method(name: str, fn: Callable[[Any], Any]) -> Callable[[Any], Any]:
    @functools.wraps(fn)
    def method(self: Store[Any]) -> Any:
        return fn(self.snapshot)

    method.__name__ = name
    return getter(method)


def define_store(
    name: str,
    *,
    state_type: Any = None,
    fields: Mapping[str, Any] | None = None,
    key: str | None = None,
    getters: Mapping[str, Callable[[Any], Any]] | None = None,
    mutators: Mapping[str, Callable[..., Any]] | None = None,
    actions: Mapping[str, Callable[..., Any]] | None = None,
    hydratable: bool = False,
    module: str | None = None,
) -> type[Store[Any]]:
    """Generate a store class.

    Parameters
    ----------
    name : str
        Class name of the generated store.
    state_type : type, optional
        Snapshot type. Mutually exclusive with *fields*.
    fields : mapping, optional
        Field declarations for a generated ``<name>State`` model, see
        :func:`define_state`.
    key : str, optional
        Store key; defaults to *name*.
    getters : mapping, optional
        ``name -> fn(snapshot)``.
    mutators : mapping, optional
        ``name -> fn(snapshot, *args)`` returning the next snapshot or a
        mapping of field updates.
    actions : mapping, optional
        ``name -> fn(store, *args)``; ``async def`` functions become async
        actions.
    hydratable : bool
        Derive from :class:`~pystatestore.hydration.HydratableStore`.
    module : str, optional
        ``__module__`` of the generated class; defaults to this module.
    """
    if (state_type is None) == (fields is None):
        raise StoreDefinitionError(f"define_store({name!r}) needs exactly one of state_type or fields", key=key or name)
    if fields is not None:
        state_type = define_state(f"{name.removesuffix('Store')}State", fields)

    namespace: dict[str, Any] = {
        "state_type": state_type,
        "store_key": key or name,
        "__module__": module or __name__,
    }

    layers: list[tuple[str, Any]] = []
    for getter_name, fn in (getters or {}).items():
        layers.append((getter_name, _getter_method(getter_name, fn)))
    for mutator_name, fn in (mutators or {}).items():
        private_name = mutator_name if mutator_name.startswith("_") else f"_{mutator_name}"
        layers.append((private_name, mutator(fn)))
    for action_name, fn in (actions or {}).items():
        layers.append((action_name, action(fn)))

    for attr, value in layers:
        if attr in namespace:
            raise StoreDefinitionError(f"define_store({name!r}) declares {attr!r} twice", key=key or name)
        namespace[attr] = value

    base: type[Store[Any]] = HydratableStore if hydratable else Store
    return type(name, (base,), namespace)
