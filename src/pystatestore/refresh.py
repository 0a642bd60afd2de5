"""Periodic re-fetch of a store's data after the initial mount."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Generic, TypeVar

from pystatestore.actions import AsyncAction, AsyncActionOptions, run_async_action
from pystatestore.config import StoreConfig
from pystatestore.context import StoreContext
from pystatestore.exceptions import ActionCancelledError, StoreConfigurationError
from pystatestore.store import Store

_logger = logging.getLogger(__name__)

StoreT = TypeVar("StoreT", bound=Store[Any])


class LiveRefresh(Generic[StoreT]):
    """Re-run an async action against a store every *interval* seconds.

    Refresh must not race the hydration read, so :meth:`attach` defers
    :meth:`start` until the context is mounted. A store built by a hydration
    fallback (``needs_refetch``) is refreshed right after mount instead of
    after the first interval.

    A failing run is logged and the loop keeps going; the action records the
    failure in state itself if getters should see it.
    """

    def __init__(
        self,
        store: StoreT,
        action: AsyncAction[StoreT, Any],
        *,
        interval: float | None = None,
        config: StoreConfig | None = None,
        options: AsyncActionOptions | None = None,
    ) -> None:
        resolved = interval if interval is not None else (config or StoreConfig()).refresh_interval
        if resolved is None or resolved <= 0:
            raise ValueError("LiveRefresh needs a positive interval")
        self._store = store
        self._action = action
        self._interval = resolved
        self._options = options
        self._cancel = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._runs = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        """Number of completed refresh runs, successful or not."""
        return self._runs

    def attach(self, context: StoreContext) -> None:
        """Start refreshing once *context* has mounted."""
        context.after_mount(self.start)

    def start(self) -> None:
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise StoreConfigurationError(
                "LiveRefresh.start() needs a running event loop",
                key=self._store.store_key,
            ) from exc
        self._cancel.clear()
        self._task = loop.create_task(self._run(), name=f"{self._store.store_key}:live-refresh")
        _logger.debug("Live refresh of %s started (every %gs)", self._store.id, self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._cancel.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Live refresh of %s stopped after %d run(s)", self._store.id, self._runs)

    async def _run(self) -> None:
        if not self._store.needs_refetch:
            await asyncio.sleep(self._interval)
        while not self._cancel.is_set():
            try:
                await run_async_action(self._store, self._action, cancel=self._cancel, options=self._options)
            except ActionCancelledError:
                return
            except Exception:
                _logger.warning("Live refresh of %s failed", self._store.id, exc_info=True)
            else:
                self._store.acknowledge_refetch()
            finally:
                self._runs += 1
            await asyncio.sleep(self._interval)
