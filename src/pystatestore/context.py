"""Registry and context binding for stores.

UI code declares "provide this store" once near the root of a component tree
and "use this store" anywhere below it. A :class:`StoreContext` is one scope
of that tree; nested scopes are created with :meth:`StoreContext.child` and
resolve stores through their parents.

The context is an explicit object: one per server request, one per client
process. :func:`bind_context` makes it available to module-level helpers
through a :class:`contextvars.ContextVar`, so concurrent server requests never
see each other's stores.

Example::

    ctx = StoreContext()
    with bind_context(ctx):
        provide_store(CounterStore())
        ...
        counter = use_store(CounterStore)
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from collections.abc import Callable, Hashable, Iterator
from typing import Any, TypeVar, overload

from pystatestore.exceptions import (
    ContextNotAvailableError,
    DuplicateStoreError,
    StoreConfigurationError,
    StoreNotFoundError,
)
from pystatestore.store import Store, StoreId

_logger = logging.getLogger(__name__)

StoreT = TypeVar("StoreT", bound=Store[Any])

StoreRef = type[Store[Any]] | str


def _key_of(ref: StoreRef) -> str:
    if isinstance(ref, str):
        return ref
    return ref.store_key


class StoreRegistry:
    """Mapping of :class:`StoreId` to store instances.

    Enforces at most one store per identity.
    """

    def __init__(self) -> None:
        self._stores: dict[StoreId, Store[Any]] = {}

    def register(self, store: Store[Any], *, identity: StoreId | None = None) -> StoreId:
        """Register *store* and return the identity it was stored under."""
        store_id = identity or store.id
        if store_id in self._stores:
            raise DuplicateStoreError(
                f"Store already exists: {store_id}",
                key=store_id.key,
                scope=store_id.scope,
            )
        self._stores[store_id] = store
        return store_id

    def get(self, identity: StoreId) -> Store[Any] | None:
        return self._stores.get(identity)

    def unregister(self, identity: StoreId) -> bool:
        return self._stores.pop(identity, None) is not None

    def contains(self, identity: StoreId) -> bool:
        return identity in self._stores

    def __contains__(self, identity: object) -> bool:
        return identity in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    def __iter__(self) -> Iterator[StoreId]:
        return iter(list(self._stores))

    def __repr__(self) -> str:
        return f"StoreRegistry(count={len(self._stores)})"


class StoreContext:
    """One scope of the provide/use tree.

    Parameters
    ----------
    parent : StoreContext or None
        Enclosing scope. Lookups fall back to it; duplicate checks do not.
    name : str
        Label used in logs.
    """

    def __init__(self, parent: StoreContext | None = None, *, name: str = "root") -> None:
        self._parent = parent
        self._name = name
        self._registry = StoreRegistry()
        self._mounted = False
        self._after_mount: list[Callable[[], None]] = []

    @property
    def parent(self) -> StoreContext | None:
        return self._parent

    @property
    def name(self) -> str:
        return self._name

    @property
    def registry(self) -> StoreRegistry:
        return self._registry

    @property
    def mounted(self) -> bool:
        """Whether the provide pass for this scope is over."""
        if self._mounted:
            return True
        return self._parent.mounted if self._parent is not None else False

    def child(self, name: str = "") -> StoreContext:
        """Create a nested scope below this one."""
        return StoreContext(self, name=name or f"{self._name}/child")

    # ------------------------------------------------------------------
    # provide / use
    # ------------------------------------------------------------------

    def provide(
        self,
        store: StoreT,
        *,
        key: str | None = None,
        scope: Hashable | None = None,
    ) -> StoreT:
        """Register *store* in this scope.

        *key* and *scope* override the store's own identity; by default the
        store is registered under ``(store.store_key, store.scope)``.

        Raises
        ------
        DuplicateStoreError
            If the identity is already registered in this scope.
        StoreConfigurationError
            If the scope has already been mounted.
        """
        identity = StoreId(key or store.store_key, store.scope if scope is None else scope)
        if self.mounted:
            raise StoreConfigurationError(
                f"Cannot provide {identity} in context {self._name!r} after mount",
                key=identity.key,
                scope=identity.scope,
            )
        self._registry.register(store, identity=identity)
        _logger.debug("Provided store %s in context %r", identity, self._name)
        return store

    @overload
    def use(self, ref: type[StoreT], *, scope: Hashable | None = None) -> StoreT: ...

    @overload
    def use(self, ref: str, *, scope: Hashable | None = None) -> Store[Any]: ...

    def use(self, ref: StoreRef, *, scope: Hashable | None = None) -> Store[Any]:
        """Resolve a store provided in this scope or an enclosing one.

        Raises
        ------
        StoreNotFoundError
            If no matching ``provide`` happened on the path to this scope.
        """
        store = self.try_use(ref, scope=scope)
        if store is None:
            identity = StoreId(_key_of(ref), scope)
            raise StoreNotFoundError(
                f"Store not found: {identity}. Did you forget to provide it?",
                key=identity.key,
                scope=scope,
            )
        return store

    def try_use(self, ref: StoreRef, *, scope: Hashable | None = None) -> Any:
        """Like :meth:`use` but returns ``None`` when the store is missing."""
        identity = StoreId(_key_of(ref), scope)
        ctx: StoreContext | None = self
        while ctx is not None:
            store = ctx._registry.get(identity)
            if store is not None:
                if not isinstance(ref, str) and not isinstance(store, ref):
                    raise StoreConfigurationError(
                        f"Store {identity} is a {type(store).__name__}, not a {ref.__name__}",
                        key=identity.key,
                        scope=scope,
                    )
                return store
            ctx = ctx._parent
        return None

    def contains(self, ref: StoreRef, *, scope: Hashable | None = None) -> bool:
        return self.try_use(ref, scope=scope) is not None

    # ------------------------------------------------------------------
    # Mount gate
    # ------------------------------------------------------------------

    def after_mount(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the initial mount completes.

        Runs immediately when the context is already mounted.
        """
        if self.mounted:
            callback()
            return
        self._after_mount.append(callback)

    def mark_mounted(self) -> None:
        """End the provide pass and flush :meth:`after_mount` callbacks."""
        if self._mounted:
            return
        self._mounted = True
        callbacks, self._after_mount = self._after_mount, []
        _logger.debug("Context %r mounted; running %d deferred callback(s)", self._name, len(callbacks))
        for callback in callbacks:
            callback()

    def __repr__(self) -> str:
        return f"StoreContext(name={self._name!r}, stores={len(self._registry)}, mounted={self.mounted})"


_current_context: contextvars.ContextVar[StoreContext | None] = contextvars.ContextVar(
    "pystatestore_context",
    default=None,
)


@contextlib.contextmanager
def bind_context(context: StoreContext) -> Iterator[StoreContext]:
    """Make *context* the current context for the enclosed block."""
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


def current_context() -> StoreContext:
    """Return the bound context.

    Raises
    ------
    ContextNotAvailableError
        If no context is bound.
    """
    context = _current_context.get()
    if context is None:
        raise ContextNotAvailableError("No StoreContext bound; wrap the render in bind_context()")
    return context


def try_current_context() -> StoreContext | None:
    return _current_context.get()


def provide_store(store: StoreT) -> StoreT:
    """Provide *store* in the current context."""
    return current_context().provide(store)


def use_store(ref: type[StoreT]) -> StoreT:
    """Resolve a store from the current context."""
    return current_context().use(ref)


def try_use_store(ref: type[StoreT]) -> StoreT | None:
    context = try_current_context()
    if context is None:
        return None
    return context.try_use(ref)  # type: ignore[no-any-return]


def provide_scoped_store(store: StoreT, scope: Hashable) -> StoreT:
    """Provide *store* under ``(store_key, scope)`` in the current context."""
    return current_context().provide(store, scope=scope)


def use_scoped_store(ref: type[StoreT], scope: Hashable) -> StoreT:
    """Resolve the store provided under ``(store_key, scope)``."""
    return current_context().use(ref, scope=scope)
