"""Custom exception hierarchy for pystatestore."""

from __future__ import annotations

from collections.abc import Hashable


class StoreError(Exception):
    """Base exception for all pystatestore errors."""


class StoreConfigurationError(StoreError):
    """Registry or store definition misuse."""

    def __init__(
        self,
        message: str,
        *,
        key: str = "",
        scope: Hashable | None = None,
    ) -> None:
        self.key = key
        self.scope = scope
        super().__init__(message)


class DuplicateStoreError(StoreConfigurationError):
    """A store identity was provided twice in the same scope.

    Also raised when a second hydration block is added to a document
    for a key that already has one.
    """


class StoreNotFoundError(StoreConfigurationError):
    """``use`` was called before the matching ``provide``."""


class ContextNotAvailableError(StoreConfigurationError):
    """No :class:`~pystatestore.context.StoreContext` is bound to the caller."""


class StoreDefinitionError(StoreConfigurationError):
    """A store class violates the store contract.

    Raised while the class body is being created (for example a mutator
    with a public name), so the mistake surfaces on import.
    """


class MutationError(StoreError):
    """A mutator produced a value that is not a valid snapshot.

    The container keeps its previous snapshot.
    """

    def __init__(self, message: str, *, key: str = "", mutator: str = "") -> None:
        self.key = key
        self.mutator = mutator
        super().__init__(message)


class HydrationError(StoreError):
    """Base for state transfer failures between server and client."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class StoreSerializationError(HydrationError):
    """A snapshot could not be converted to the transfer format."""


class StoreDeserializationError(HydrationError):
    """Malformed hydration payload."""


class PayloadMissingError(HydrationError):
    """No embedded hydration block exists for the requested key.

    This is an expected cold-start condition; the hydrator falls back to a
    default store flagged for refetch instead of failing hard.
    """


class ActionError(StoreError):
    """Failure returned by an action or async action."""


class ActionCancelledError(ActionError):
    """The caller's cancellation signal was set while the action ran."""


class ActionTimeoutError(ActionError):
    """An async action exceeded the timeout it was configured with."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Action timed out after {timeout:g}s")


class ActionNetworkError(ActionError):
    """A remote call made by an action failed."""


class ActionValidationError(ActionError):
    """An action rejected its input."""
