from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from starlette.requests import Request
from starlette.types import Receive, Scope, Send

from .config import Settings, parse_proxy_rules
from .echo import EchoHandler
from .middleware import CorsContentTypeMiddleware
from .mock import MockHandler, discover_endpoints
from .proxy import ProxyHandler
from .responses import not_found
from .routing import RouteTable, strip_prefix
from .static import build_content_handler

logger = structlog.get_logger()

ECHO_PATH = "/echo"


def build_routes(settings: Settings) -> RouteTable:
    """
    Build the route table: mock endpoints, the content route, ``/echo``, then
    proxy rules. Matching is longest-prefix-first whatever the order here.
    """
    routes = RouteTable()

    def wrap(handler):
        return CorsContentTypeMiddleware(handler, settings)

    if settings.mock:
        for endpoint in discover_endpoints(settings.mock):
            routes.register(endpoint.url_path, wrap(MockHandler(endpoint)))

    content_handler, strip = build_content_handler(settings)
    routes.register(settings.path, wrap(content_handler), strip_prefix=strip)

    routes.register(ECHO_PATH, wrap(EchoHandler()))

    for rule in parse_proxy_rules(settings.proxy):
        logger.info("proxy_route_registered", prefix=rule.prefix, upstream=rule.upstream)
        routes.register(rule.prefix, wrap(ProxyHandler(rule, settings)))

    return routes


class Dispatcher:
    """
    ASGI endpoint behind the catch-all route.

    Mounted without a method list so every verb, including WebDAV and custom
    ones, reaches the route table.
    """
    def __init__(self, routes: RouteTable):
        self.routes = routes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        route = self.routes.match(scope["path"])
        if route is None:
            response = not_found()
        else:
            if route.strip_prefix:
                request = strip_prefix(request, route.prefix)
            response = await route.handler(request)
        await response(scope, receive, send)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    routes = build_routes(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown logic."""
        #---- Startup ----
        client = None
        if not hasattr(app.state, 'http_client'):
            client = httpx.AsyncClient(timeout=settings.proxy_timeout)
            app.state.http_client = client

        try:
            yield
        finally:
            #---- Shutdown ----
            if client is not None:
                await client.aclose()

    application = FastAPI(
        title="spark",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    application.state.settings = settings
    application.state.routes = routes
    application.add_route("/{path:path}", Dispatcher(routes), include_in_schema=False)

    return application
