"""pystatestore - Access-controlled reactive stores with SSR state hydration."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pystatestore")
except PackageNotFoundError:
    __version__ = "0+local"
from pystatestore.actions import (
    Action,
    ActionHandle,
    ActionState,
    AsyncAction,
    AsyncActionBuilder,
    AsyncActionOptions,
    CallableAsyncAction,
    ReactiveAction,
    dispatch,
    raise_if_cancelled,
    run_async_action,
    spawn_async_action,
)
from pystatestore.builder import define_state, define_store
from pystatestore.config import RenderMode, StoreConfig
from pystatestore.context import (
    StoreContext,
    StoreRegistry,
    bind_context,
    current_context,
    provide_scoped_store,
    provide_store,
    try_use_store,
    use_scoped_store,
    use_store,
)
from pystatestore.exceptions import (
    ActionCancelledError,
    ActionError,
    ActionNetworkError,
    ActionTimeoutError,
    ActionValidationError,
    ContextNotAvailableError,
    DuplicateStoreError,
    HydrationError,
    MutationError,
    PayloadMissingError,
    StoreConfigurationError,
    StoreDefinitionError,
    StoreDeserializationError,
    StoreError,
    StoreNotFoundError,
    StoreSerializationError,
)
from pystatestore.hydration import (
    HydratableStore,
    HydrationBuilder,
    HydrationDocument,
    HydrationOutcome,
    HydrationStatus,
    Hydrator,
    PayloadLocator,
    deserialize_snapshot,
    hydration_script_html,
    hydration_script_id,
    provide_hydrated_store,
    serialize_snapshot,
    use_hydrated_store,
)
from pystatestore.reactive import ReactiveContainer, ReadView, Signal
from pystatestore.refresh import LiveRefresh
from pystatestore.store import (
    Store,
    StoreBuilder,
    StoreId,
    StoreState,
    action,
    getter,
    mutator,
)

__all__ = [
    "__version__",
    "Action",
    "ActionCancelledError",
    "ActionError",
    "ActionHandle",
    "ActionNetworkError",
    "ActionState",
    "ActionTimeoutError",
    "ActionValidationError",
    "AsyncAction",
    "AsyncActionBuilder",
    "AsyncActionOptions",
    "CallableAsyncAction",
    "ContextNotAvailableError",
    "DuplicateStoreError",
    "HydratableStore",
    "HydrationBuilder",
    "HydrationDocument",
    "HydrationError",
    "HydrationOutcome",
    "HydrationStatus",
    "Hydrator",
    "LiveRefresh",
    "MutationError",
    "PayloadLocator",
    "PayloadMissingError",
    "ReactiveAction",
    "ReactiveContainer",
    "ReadView",
    "RenderMode",
    "Signal",
    "Store",
    "StoreBuilder",
    "StoreConfig",
    "StoreConfigurationError",
    "StoreContext",
    "StoreDefinitionError",
    "StoreDeserializationError",
    "StoreError",
    "StoreId",
    "StoreNotFoundError",
    "StoreRegistry",
    "StoreSerializationError",
    "StoreState",
    "action",
    "bind_context",
    "current_context",
    "define_state",
    "define_store",
    "deserialize_snapshot",
    "dispatch",
    "getter",
    "hydration_script_html",
    "hydration_script_id",
    "mutator",
    "provide_hydrated_store",
    "provide_scoped_store",
    "provide_store",
    "raise_if_cancelled",
    "run_async_action",
    "serialize_snapshot",
    "spawn_async_action",
    "try_use_store",
    "use_hydrated_store",
    "use_scoped_store",
    "use_store",
]
