"""Request-scoped stores for aiohttp servers.

Usage::

    app = web.Application()
    setup_stores(app, StoreConfig(render_mode=RenderMode.SSR_HYDRATE))

    async def page(request: web.Request) -> web.Response:
        counter = CounterStore.from_state(await load_counter())
        provide_hydrated_store(counter, document=get_request_document(request))
        return hydrated_html_response(request, render_page(counter))

Each request gets its own :class:`StoreContext` and
:class:`HydrationDocument`; the context is bound for the duration of the
handler so ``use_store`` works anywhere in the render.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from pystatestore.config import StoreConfig
from pystatestore.context import StoreContext, bind_context
from pystatestore.exceptions import ContextNotAvailableError
from pystatestore.hydration import HydrationDocument

_logger = logging.getLogger(__name__)

CONFIG_KEY: web.AppKey[StoreConfig] = web.AppKey("pystatestore_config", StoreConfig)
CONTEXT_KEY = "pystatestore.context"
DOCUMENT_KEY = "pystatestore.document"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def store_context_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Create and bind a fresh store context for every request."""
    config = request.app.get(CONFIG_KEY) or StoreConfig()
    context = StoreContext(name=f"request:{request.method} {request.path}")
    request[CONTEXT_KEY] = context
    request[DOCUMENT_KEY] = HydrationDocument.from_config(config)
    with bind_context(context):
        return await handler(request)


def setup_stores(app: web.Application, config: StoreConfig | None = None) -> None:
    """Install the store context middleware on *app*."""
    app[CONFIG_KEY] = config or StoreConfig()
    app.middlewares.append(store_context_middleware)


def get_request_config(request: web.Request) -> StoreConfig:
    return request.app.get(CONFIG_KEY) or StoreConfig()


def get_request_context(request: web.Request) -> StoreContext:
    try:
        context: StoreContext = request[CONTEXT_KEY]
    except KeyError as exc:
        raise ContextNotAvailableError("Request has no store context; call setup_stores(app)") from exc
    return context


def get_request_document(request: web.Request) -> HydrationDocument:
    try:
        document: HydrationDocument = request[DOCUMENT_KEY]
    except KeyError as exc:
        raise ContextNotAvailableError("Request has no hydration document; call setup_stores(app)") from exc
    return document


def hydrated_html_response(request: web.Request, body: str, *, status: int = 200) -> web.Response:
    """Return *body* as HTML with the request's hydration blocks injected."""
    document = get_request_document(request)
    text = document.inject(body) if get_request_config(request).embeds_state else body
    _logger.debug("Rendered %s with %d hydration block(s)", request.path, len(document))
    return web.Response(text=text, status=status, content_type="text/html")
