"""Core store contract.

A store wraps exactly one reactive container of immutable snapshots and
groups its methods into four layers:

| Layer         | Writes state | Async | Side effects |
|---------------|--------------|-------|--------------|
| Getters       | no           | no    | no           |
| Mutators      | yes          | no    | no           |
| Actions       | no           | no    | yes          |
| Async actions | no           | yes   | yes          |

Only mutators write, and mutators are private: a mutator with a public name
is rejected when the class is created. External code therefore reaches the
container only through :meth:`Store.state` (read) and actions (write).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from pystatestore.exceptions import MutationError, StoreConfigurationError, StoreDefinitionError
from pystatestore.reactive import ReactiveContainer, ReadView, Signal

_logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])
StoreT = TypeVar("StoreT", bound="Store[Any]")

_ROLE_ATTR = "__pystatestore_role__"

ContainerFactory = Callable[[Any], ReactiveContainer[Any]]


class StoreState(BaseModel):
    """Base for store snapshots.

    Snapshots are frozen so that a reader can never observe a value partway
    through a change; mutators build a new snapshot instead.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")


@dataclass(frozen=True, slots=True)
class StoreId:
    """Registry identity of a store instance: ``(key, scope)``."""

    key: str
    scope: Hashable | None = None

    def __str__(self) -> str:
        if self.scope is None:
            return self.key
        return f"{self.key}[{self.scope}]"


class Getter(Protocol[S, T]):
    """Derived, read-only computation over a snapshot."""

    def __call__(self, state: S, /) -> T: ...


class Mutator(Protocol[S]):
    """Pure transformation from one snapshot to the next."""

    def __call__(self, state: S, /) -> S: ...


def getter(fn: F) -> F:
    """Mark a store method as a getter (pure read)."""
    setattr(fn, _ROLE_ATTR, "getter")
    return fn


def action(fn: F) -> F:
    """Mark a store method as an action.

    Actions are the public write surface of a store. An ``async def``
    action is an async action and runs on the event loop.
    """
    setattr(fn, _ROLE_ATTR, "async_action" if inspect.iscoroutinefunction(fn) else "action")
    return fn


class _BoundMutator:
    __slots__ = ("_store", "_mutator")

    def __init__(self, store: Store[Any], mutator: MutatorMethod) -> None:
        self._store = store
        self._mutator = mutator

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._store._apply(self._mutator.fn, *args, _mutator_name=self._mutator.name, **kwargs)


class MutatorMethod:
    """Descriptor produced by :func:`mutator`.

    The wrapped function is called with the *current* snapshot (read at call
    time, never a captured value) followed by the call arguments, and must
    return either the next snapshot or, for model snapshots, a mapping of
    field updates.
    """

    def __init__(self, fn: Callable[..., Any]) -> None:
        self.fn = fn
        self.name = fn.__name__
        self.__doc__ = fn.__doc__
        setattr(self, _ROLE_ATTR, "mutator")

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Store[Any] | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return _BoundMutator(instance, self)


def mutator(fn: Callable[..., Any]) -> MutatorMethod:
    """Declare a mutator.

    The decorated function is not bound to the store instance::

        @mutator
        def _increment(state: CounterState, by: int = 1) -> CounterState:
            return state.model_copy(update={"count": state.count + by})

    Mutators must be synchronous and have an underscore-prefixed name.
    """
    if inspect.iscoroutinefunction(fn):
        raise StoreDefinitionError(f"Mutator {fn.__name__!r} must be synchronous", key=fn.__qualname__)
    return MutatorMethod(fn)


def store_role(obj: Any) -> str | None:
    """Return the declared layer of a store attribute, if any."""
    return getattr(obj, _ROLE_ATTR, None)


class Store(Generic[S]):
    """Base class for stores.

    Subclasses declare ``state_type`` and optionally ``store_key`` (defaults
    to the class name) and override :meth:`default_state` when the snapshot
    type cannot be built without arguments.

    Example::

        class CounterState(StoreState):
            count: int = 0


        class CounterStore(Store[CounterState]):
            state_type = CounterState
            store_key = "counter"

            @getter
            def doubled(self) -> int:
                return self.snapshot.count * 2

            @mutator
            def _set_count(state: CounterState, value: int) -> dict[str, int]:
                return {"count": value}

            @action
            def reset(self) -> None:
                self._set_count(0)
    """

    state_type: ClassVar[Any]
    store_key: ClassVar[str]
    _state_adapter: ClassVar[TypeAdapter[Any] | None] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "store_key" not in cls.__dict__:
            cls.store_key = cls.__name__
        elif not isinstance(cls.store_key, str) or not cls.store_key:
            raise StoreDefinitionError(f"{cls.__name__}.store_key must be a non-empty string", key=str(cls.store_key))

        for name, value in cls.__dict__.items():
            if isinstance(value, MutatorMethod) and not name.startswith("_"):
                raise StoreDefinitionError(
                    f"Mutator {cls.__name__}.{name} must be private (prefix it with '_'); "
                    "expose writes through an action instead",
                    key=cls.store_key,
                )

        if "state_type" in cls.__dict__:
            cls._state_adapter = TypeAdapter(cls.state_type)

    def __init__(
        self,
        initial: S | None = None,
        *,
        scope: Hashable | None = None,
        container_factory: ContainerFactory = Signal,
    ) -> None:
        if self._state_adapter is None:
            raise StoreDefinitionError(f"{type(self).__name__} does not declare state_type", key=self.store_key)
        snapshot = self.default_state() if initial is None else self._validate_initial(initial)
        self.__container: ReactiveContainer[S] = container_factory(snapshot)
        self._scope = scope
        self._mutating = False
        self._needs_refetch = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def default_state(cls) -> S:
        """Snapshot used by the default constructor."""
        return cls.state_type()  # type: ignore[no-any-return]

    @classmethod
    def from_state(
        cls: type[StoreT],
        snapshot: Any,
        *,
        scope: Hashable | None = None,
        container_factory: ContainerFactory = Signal,
    ) -> StoreT:
        """Construct a store from an existing snapshot, bypassing the default."""
        return cls(snapshot, scope=scope, container_factory=container_factory)

    @classmethod
    def _validate_initial(cls, initial: Any) -> S:
        assert cls._state_adapter is not None  # noqa: S101
        try:
            return cls._state_adapter.validate_python(initial)  # type: ignore[no-any-return]
        except ValidationError as exc:
            raise StoreConfigurationError(
                f"Initial state for {cls.__name__} is not a valid {cls.state_type!r}: {exc}",
                key=cls.store_key,
            ) from exc

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    def state(self) -> ReadView[S]:
        """Read-only view of the current snapshot."""
        return ReadView(self.__container)

    @property
    def snapshot(self) -> S:
        """The latest committed snapshot."""
        return self.__container.read()

    @property
    def scope(self) -> Hashable | None:
        return self._scope

    @property
    def id(self) -> StoreId:
        return StoreId(self.store_key, self._scope)

    @property
    def name(self) -> str:
        """Qualified class name, for logs."""
        cls = type(self)
        return f"{cls.__module__}.{cls.__qualname__}"

    @property
    def needs_refetch(self) -> bool:
        """Whether this store was built by a hydration fallback.

        A store with this flag set holds its default snapshot rather than
        server data and should fetch fresh data as soon as it is mounted.
        """
        return self._needs_refetch

    def acknowledge_refetch(self) -> None:
        """Clear :attr:`needs_refetch` once fresh data has been requested."""
        self._needs_refetch = False

    def _mark_for_refetch(self) -> None:
        self._needs_refetch = True

    # ------------------------------------------------------------------
    # Write capability (private)
    # ------------------------------------------------------------------

    def _apply(self, fn: Callable[..., Any], *args: Any, _mutator_name: str | None = None, **kwargs: Any) -> None:
        """Run *fn* against the current snapshot and commit its result.

        Nothing is replaced when *fn* raises or returns an invalid snapshot.
        """
        name = _mutator_name or getattr(fn, "__name__", repr(fn))
        if self._mutating:
            raise MutationError(
                f"Mutator {name!r} called while another mutator of {self.store_key!r} is running",
                key=self.store_key,
                mutator=name,
            )
        self._mutating = True
        try:
            current = self.__container.read()
            result = fn(current, *args, **kwargs)
            new_snapshot = self._coerce_result(current, result, name)
        finally:
            self._mutating = False

        self.__container.replace(new_snapshot)
        _logger.debug("Store %s committed mutation %s", self.id, name)

    def _coerce_result(self, current: S, result: Any, name: str) -> S:
        if isinstance(current, BaseModel) and isinstance(result, Mapping):
            unknown = set(result) - set(type(current).model_fields)
            if unknown:
                raise MutationError(
                    f"Mutator {name!r} set unknown field(s) {sorted(unknown)} on {self.store_key!r}",
                    key=self.store_key,
                    mutator=name,
                )
            candidate: Any = {**current.model_dump(), **result}
        elif isinstance(result, BaseModel):
            # Model instances are not revalidated by validate_python; rebuild from fields.
            candidate = {**vars(result), **(result.__pydantic_extra__ or {})}
        else:
            candidate = result

        assert self._state_adapter is not None  # noqa: S101
        try:
            return self._state_adapter.validate_python(candidate)  # type: ignore[no-any-return]
        except ValidationError as exc:
            raise MutationError(
                f"Mutator {name!r} produced an invalid snapshot for {self.store_key!r}: {exc}",
                key=self.store_key,
                mutator=name,
            ) from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, state={self.snapshot!r})"


def apply_getter(state: S, fn: Getter[S, T]) -> T:
    """Evaluate a standalone getter against a snapshot."""
    return fn(state)


def apply_mutator(state: S, fn: Mutator[S]) -> S:
    """Evaluate a standalone mutator against a snapshot.

    Useful for testing mutators in isolation; stores commit standalone
    mutators with ``self._apply(fn)``.
    """
    return fn(state)


class StoreBuilder(Generic[StoreT]):
    """Fluent construction of a store.

    ::

        store = StoreBuilder(CounterStore).with_state(CounterState(count=42)).build()
    """

    def __init__(self, store_type: type[StoreT]) -> None:
        self._store_type = store_type
        self._initial_state: Any | None = None
        self._scope: Hashable | None = None
        self._container_factory: ContainerFactory = Signal

    def with_state(self, state: Any) -> StoreBuilder[StoreT]:
        self._initial_state = state
        return self

    def with_scope(self, scope: Hashable) -> StoreBuilder[StoreT]:
        self._scope = scope
        return self

    def with_container(self, factory: ContainerFactory) -> StoreBuilder[StoreT]:
        self._container_factory = factory
        return self

    def build(self) -> StoreT:
        """Build the store, using the default snapshot when no state was given."""
        return self._store_type(
            self._initial_state,
            scope=self._scope,
            container_factory=self._container_factory,
        )

    def try_build(self) -> StoreT:
        """Build the store, requiring an explicit initial state.

        Raises
        ------
        StoreConfigurationError
            If :meth:`with_state` was not called.
        """
        if self._initial_state is None:
            raise StoreConfigurationError(
                f"Initial state not provided for {self._store_type.__name__}",
                key=self._store_type.store_key,
            )
        return self.build()
