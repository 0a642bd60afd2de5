"""State transfer between server render and client start ("hydration").

Server half
    A populated store is serialized to JSON and embedded in the outgoing
    document as ``<script id="<prefix><store_key>" type="application/json">``.
    :class:`HydrationDocument` collects the blocks (one per key) and
    :func:`provide_hydrated_store` provides the store and records its block.

Client half
    :class:`PayloadLocator` parses the delivered document once and finds the
    block for a key. :class:`Hydrator` rebuilds the store from it and
    registers it before any consumer mounts, so the first client render
    matches the last server render without a second fetch.

When the block is missing (:class:`PayloadMissingError`) or malformed
(:class:`StoreDeserializationError`) the hydrator falls back to the store's
default snapshot, flags it with ``needs_refetch`` and logs a warning. The
fallback is never silent.

Per store and document load the hydrator walks::

    NOT_HYDRATED -> PAYLOAD_LOCATED -> DESERIALIZED -> STORE_CONSTRUCTED
                 -> REGISTERED -> HYDRATED
    NOT_HYDRATED -> HYDRATION_FAILED

and caches the outcome per ``(store_key, scope)``, so a second lookup returns
the already-resolved store without re-reading the document.
"""

from __future__ import annotations

import html
import logging
import math
from collections.abc import Callable, Hashable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, Self, TypeVar

from bs4 import BeautifulSoup
from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from pystatestore._redact import redact_for_log
from pystatestore.config import DEFAULT_HYDRATION_PREFIX, StoreConfig
from pystatestore.context import StoreContext, current_context
from pystatestore.exceptions import (
    DuplicateStoreError,
    HydrationError,
    PayloadMissingError,
    StoreDeserializationError,
    StoreSerializationError,
)
from pystatestore.store import Store, StoreId

_logger = logging.getLogger(__name__)

S = TypeVar("S")
HS = TypeVar("HS", bound="HydratableStore[Any]")

# Characters that could end the <script> element or open a comment inside it.
# They can only occur inside JSON strings, where the \u escapes are equivalent.
_SCRIPT_ESCAPES = str.maketrans({"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"})

_HEAD_CLOSE = "</head>"
_BODY_CLOSE = "</body>"


# ---------------------------------------------------------------------------
# Serialization entry points
# ---------------------------------------------------------------------------


def _non_finite_path(value: Any, path: str = "$") -> str | None:
    if isinstance(value, float):
        return None if math.isfinite(value) else path
    if isinstance(value, Mapping):
        items: Iterable[tuple[Any, Any]] = value.items()
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = enumerate(value)
    else:
        return None
    for name, item in items:
        found = _non_finite_path(item, f"{path}.{name}")
        if found is not None:
            return found
    return None


def serialize_snapshot(value: Any, state_type: Any, *, key: str = "") -> str:
    """Serialize *value* (an instance of *state_type*) to JSON text.

    Raises
    ------
    StoreSerializationError
        If the value cannot be represented as JSON, including ``inf`` and
        ``nan`` floats, which JSON has no literal for.
    """
    adapter = TypeAdapter(state_type)
    try:
        data = adapter.dump_json(value).decode("utf-8")
        non_finite = _non_finite_path(adapter.dump_python(value))
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise StoreSerializationError(f"Failed to serialize state for {key or state_type!r}: {exc}", key=key) from exc
    if non_finite is not None:
        raise StoreSerializationError(
            f"Failed to serialize state for {key or state_type!r}: non-finite float at {non_finite}",
            key=key,
        )
    return data


def deserialize_snapshot(data: str | bytes, state_type: Any, *, key: str = "") -> Any:
    """Parse and validate JSON text as a *state_type* snapshot.

    Raises
    ------
    StoreDeserializationError
        If *data* is not valid JSON or does not match the snapshot schema.
    """
    try:
        return TypeAdapter(state_type).validate_json(data)
    except ValidationError as exc:
        raise StoreDeserializationError(
            f"Invalid hydration payload for {key or state_type!r}: {exc}",
            key=key,
        ) from exc


def hydration_script_id(store_key: str, prefix: str = DEFAULT_HYDRATION_PREFIX) -> str:
    """Deterministic id of the embedded block for *store_key*."""
    return f"{prefix}{store_key}"


def escape_script_payload(data: str) -> str:
    """Escape JSON text so it can sit inside a ``<script>`` element."""
    return data.translate(_SCRIPT_ESCAPES)


def hydration_script_html(store_key: str, data: str, prefix: str = DEFAULT_HYDRATION_PREFIX) -> str:
    """Render the embedded block for *store_key* carrying JSON *data*."""
    script_id = html.escape(hydration_script_id(store_key, prefix), quote=True)
    return f'<script id="{script_id}" type="application/json">{escape_script_payload(data)}</script>'


# ---------------------------------------------------------------------------
# Hydratable stores
# ---------------------------------------------------------------------------


class HydratableStore(Store[S]):
    """Store whose snapshot can be transferred through the document.

    Subclasses should set an explicit ``store_key``: it names the embedded
    block and must be identical in server and client builds. Override
    :meth:`serialize_state` / :meth:`deserialize_state` for a custom wire
    format.
    """

    def serialize_state(self) -> str:
        return serialize_snapshot(self.snapshot, self.state_type, key=self.store_key)

    @classmethod
    def deserialize_state(cls, data: str) -> S:
        return deserialize_snapshot(data, cls.state_type, key=cls.store_key)  # type: ignore[no-any-return]

    @classmethod
    def from_hydrated_state(cls, data: str, *, scope: Hashable | None = None) -> Self:
        """Construct a store directly from a serialized snapshot."""
        return cls.from_state(cls.deserialize_state(data), scope=scope)


def _snapshot_for_log(store: Store[Any]) -> Any:
    try:
        dumped = TypeAdapter(store.state_type).dump_python(store.snapshot, mode="json")
    except (PydanticSerializationError, TypeError, ValueError):
        return "<unserializable>"
    return redact_for_log(dumped)


# ---------------------------------------------------------------------------
# Server half
# ---------------------------------------------------------------------------


class HydrationDocument:
    """Hydration blocks collected during one server render.

    Holds at most one block per store key.
    """

    def __init__(self, *, prefix: str = DEFAULT_HYDRATION_PREFIX) -> None:
        self._prefix = prefix
        self._blocks: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: StoreConfig) -> HydrationDocument:
        return cls(prefix=config.hydration_prefix)

    @property
    def prefix(self) -> str:
        return self._prefix

    def _check_unique(self, store_key: str) -> None:
        if store_key in self._blocks:
            raise DuplicateStoreError(
                f"Hydration block for {store_key!r} already embedded in this document",
                key=store_key,
            )

    def add(self, store_key: str, data: str) -> str:
        """Record serialized *data* for *store_key*; return its block HTML."""
        self._check_unique(store_key)
        self._blocks[store_key] = data
        return hydration_script_html(store_key, data, self._prefix)

    def add_store(self, store: HydratableStore[Any]) -> str:
        """Serialize *store* and record its block; return the block HTML."""
        self._check_unique(store.store_key)
        return self.add(store.store_key, store.serialize_state())

    def payload(self, store_key: str) -> str | None:
        return self._blocks.get(store_key)

    def render(self) -> str:
        """All recorded blocks, in insertion order."""
        return "".join(hydration_script_html(key, data, self._prefix) for key, data in self._blocks.items())

    def inject(self, document: str) -> str:
        """Insert the rendered blocks into an HTML *document*.

        Blocks go right before ``</head>``, else before ``</body>``, else at
        the end of the document.
        """
        blocks = self.render()
        if not blocks:
            return document
        lowered = document.lower()
        for marker in (_HEAD_CLOSE, _BODY_CLOSE):
            index = lowered.rfind(marker)
            if index != -1:
                return document[:index] + blocks + document[index:]
        return document + blocks

    def __contains__(self, store_key: object) -> bool:
        return store_key in self._blocks

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._blocks))

    def __len__(self) -> int:
        return len(self._blocks)


def provide_hydrated_store(
    store: HS,
    *,
    context: StoreContext | None = None,
    document: HydrationDocument | None = None,
    config: StoreConfig | None = None,
) -> str:
    """Provide *store* and, in ``SSR_HYDRATE`` mode, embed its snapshot.

    Returns the block HTML (empty when the mode does not embed state). When
    *document* is given the block is also recorded there and a second store
    with the same key is rejected before anything is provided.

    Raises
    ------
    DuplicateStoreError
        If the key already has a block in *document* or the identity is
        already provided.
    StoreSerializationError
        If the snapshot cannot be serialized. Logged, then raised.
    """
    cfg = config or StoreConfig()
    ctx = context or current_context()

    data: str | None = None
    if cfg.embeds_state:
        if document is not None and store.store_key in document:
            raise DuplicateStoreError(
                f"Hydration block for {store.store_key!r} already embedded in this document",
                key=store.store_key,
            )
        try:
            data = store.serialize_state()
        except StoreSerializationError:
            _logger.error("Failed to serialize store %s for hydration", store.id)
            raise

    ctx.provide(store)

    if data is None:
        return ""
    if document is not None:
        return document.add(store.store_key, data)
    return hydration_script_html(store.store_key, data, cfg.hydration_prefix)


# ---------------------------------------------------------------------------
# Client half
# ---------------------------------------------------------------------------


class PayloadLocator:
    """Finds embedded hydration blocks in a delivered HTML document.

    The document is parsed once, on construction.
    """

    def __init__(self, document: str, *, prefix: str = DEFAULT_HYDRATION_PREFIX) -> None:
        self._prefix = prefix
        self._soup = BeautifulSoup(document, "html.parser")

    @classmethod
    def from_config(cls, document: str, config: StoreConfig) -> PayloadLocator:
        return cls(document, prefix=config.hydration_prefix)

    def has(self, store_key: str) -> bool:
        return self._soup.find(id=hydration_script_id(store_key, self._prefix)) is not None

    def locate(self, store_key: str) -> str:
        """Return the raw payload text for *store_key*.

        Raises
        ------
        PayloadMissingError
            If the document has no block for the key.
        StoreDeserializationError
            If the element carrying the id is not a ``<script>``.
        """
        element = self._soup.find(id=hydration_script_id(store_key, self._prefix))
        if element is None:
            raise PayloadMissingError(f"Hydration data not found for key: {store_key}", key=store_key)
        if element.name != "script":
            raise StoreDeserializationError(
                f"Hydration element for {store_key!r} is a <{element.name}>, not a <script>",
                key=store_key,
            )
        return element.get_text()


class HydrationStatus(StrEnum):
    NOT_HYDRATED = "not_hydrated"
    PAYLOAD_LOCATED = "payload_located"
    DESERIALIZED = "deserialized"
    STORE_CONSTRUCTED = "store_constructed"
    REGISTERED = "registered"
    HYDRATED = "hydrated"
    HYDRATION_FAILED = "hydration_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (HydrationStatus.HYDRATED, HydrationStatus.HYDRATION_FAILED)


@dataclass(frozen=True)
class HydrationOutcome(Generic[HS]):
    """Result of hydrating one store.

    ``error`` is set only for ``HYDRATION_FAILED``; the store is then the
    default-constructed fallback.
    """

    store: HS
    status: HydrationStatus
    error: HydrationError | None = None

    @property
    def ok(self) -> bool:
        return self.status is HydrationStatus.HYDRATED

    @property
    def needs_refetch(self) -> bool:
        return self.store.needs_refetch


FallbackHook = Callable[[str, HydrationError], None]


class Hydrator:
    """Client-side hydration for one document load.

    Parameters
    ----------
    locator : PayloadLocator or None
        The delivered document. ``None`` means no document was delivered;
        every store then takes the fallback path.
    context : StoreContext
        Where hydrated (or fallback) stores are registered.
    config : StoreConfig or None
        ``CSR`` mode skips the document and constructs default stores.
    on_fallback : callable or None
        Called with ``(store_key, error)`` whenever a fallback store is built.
    """

    def __init__(
        self,
        locator: PayloadLocator | None,
        *,
        context: StoreContext,
        config: StoreConfig | None = None,
        on_fallback: FallbackHook | None = None,
    ) -> None:
        self._locator = locator
        self._context = context
        self._config = config or StoreConfig()
        self._on_fallback = on_fallback
        self._status: dict[StoreId, HydrationStatus] = {}
        self._outcomes: dict[StoreId, HydrationOutcome[Any]] = {}

    @classmethod
    def from_document(
        cls,
        document: str | None,
        *,
        context: StoreContext,
        config: StoreConfig | None = None,
        on_fallback: FallbackHook | None = None,
    ) -> Hydrator:
        cfg = config or StoreConfig()
        locator = PayloadLocator.from_config(document, cfg) if document is not None and cfg.reads_state else None
        return cls(locator, context=context, config=cfg, on_fallback=on_fallback)

    @property
    def context(self) -> StoreContext:
        return self._context

    def status(self, store_key: str, *, scope: Hashable | None = None) -> HydrationStatus:
        return self._status.get(StoreId(store_key, scope), HydrationStatus.NOT_HYDRATED)

    def hydrate(self, store_type: type[HS], *, scope: Hashable | None = None) -> HydrationOutcome[HS]:
        """Hydrate and register *store_type*; cached per ``(store_key, scope)``.

        Every scope is built from the same embedded block but gets its own
        store instance.

        Raises
        ------
        StoreConfigurationError
            If registering the store fails (for example the identity was
            already provided by other code). This is a usage error, not a
            hydration fallback.
        """
        key = store_type.store_key
        identity = StoreId(key, scope)
        cached = self._outcomes.get(identity)
        if cached is not None:
            return cached  # type: ignore[return-value]

        if not self._config.reads_state:
            store = store_type(scope=scope)
            self._context.provide(store)
            outcome: HydrationOutcome[HS] = HydrationOutcome(store, HydrationStatus.NOT_HYDRATED)
            self._outcomes[identity] = outcome
            return outcome

        self._status[identity] = HydrationStatus.NOT_HYDRATED
        try:
            if self._locator is None:
                raise PayloadMissingError(f"No document delivered; hydration data not found for key: {key}", key=key)
            data = self._locator.locate(key)
            self._status[identity] = HydrationStatus.PAYLOAD_LOCATED
            snapshot = store_type.deserialize_state(data)
            self._status[identity] = HydrationStatus.DESERIALIZED
        except HydrationError as exc:
            return self._fallback(store_type, identity, exc)

        store = store_type.from_state(snapshot, scope=scope)
        self._status[identity] = HydrationStatus.STORE_CONSTRUCTED
        self._context.provide(store)
        self._status[identity] = HydrationStatus.REGISTERED

        self._status[identity] = HydrationStatus.HYDRATED
        outcome = HydrationOutcome(store, HydrationStatus.HYDRATED)
        self._outcomes[identity] = outcome
        _logger.debug("Hydrated store %s with %s", store.id, _snapshot_for_log(store))
        return outcome

    def _fallback(
        self,
        store_type: type[HS],
        identity: StoreId,
        error: HydrationError,
    ) -> HydrationOutcome[HS]:
        self._status[identity] = HydrationStatus.HYDRATION_FAILED
        store = store_type(scope=identity.scope)
        if self._config.refetch_on_fallback:
            store._mark_for_refetch()  # noqa: SLF001
        _logger.warning(
            "Hydration of store %r failed (%s: %s); using default state%s",
            str(identity),
            type(error).__name__,
            error,
            " and scheduling refetch" if store.needs_refetch else "",
        )
        self._context.provide(store)
        outcome = HydrationOutcome(store, HydrationStatus.HYDRATION_FAILED, error)
        self._outcomes[identity] = outcome
        if self._on_fallback is not None:
            self._on_fallback(identity.key, error)
        return outcome


def use_hydrated_store(store_type: type[HS], hydrator: Hydrator, *, scope: Hashable | None = None) -> HS:
    """Client entry point: the hydrated (or fallback) store for *store_type*."""
    return hydrator.hydrate(store_type, scope=scope).store


def has_hydration_data(locator: PayloadLocator | None, store_key: str) -> bool:
    return locator is not None and locator.has(store_key)


class HydrationBuilder(Generic[HS]):
    """Builds a store from a payload without registering it.

    ::

        store = HydrationBuilder(CounterStore, locator).with_fallback(CounterStore()).build()
    """

    def __init__(self, store_type: type[HS], locator: PayloadLocator | None) -> None:
        self._store_type = store_type
        self._locator = locator
        self._fallback: HS | None = None
        self._scope: Hashable | None = None

    def with_fallback(self, store: HS) -> HydrationBuilder[HS]:
        self._fallback = store
        return self

    def with_scope(self, scope: Hashable) -> HydrationBuilder[HS]:
        self._scope = scope
        return self

    def _hydrate(self) -> HS:
        key = self._store_type.store_key
        if self._locator is None:
            raise PayloadMissingError(f"No document delivered; hydration data not found for key: {key}", key=key)
        return self._store_type.from_hydrated_state(self._locator.locate(key), scope=self._scope)

    def build(self) -> HS:
        """Hydrate, else return the fallback, else a default store flagged for refetch."""
        try:
            return self._hydrate()
        except HydrationError as exc:
            _logger.warning("Hydration of store %r failed: %s", self._store_type.store_key, exc)
            if self._fallback is not None:
                return self._fallback
            store = self._store_type(scope=self._scope)
            store._mark_for_refetch()  # noqa: SLF001
            return store

    def try_build(self) -> HS:
        """Hydrate, else return the fallback, else raise the hydration error."""
        try:
            return self._hydrate()
        except HydrationError:
            if self._fallback is not None:
                return self._fallback
            raise
