from dataclasses import dataclass
from typing import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import Response

Handler = Callable[[Request], Awaitable[Response]]


@dataclass(frozen=True)
class Route:
    prefix: str
    handler: Handler
    strip_prefix: bool = False


class RouteTable:
    """
    Prefix route table with longest-prefix-wins matching.

    Routes are kept sorted by descending prefix length; the sort is stable so
    prefixes of equal length keep their registration order.
    """
    def __init__(self):
        self._routes: list[Route] = []

    def register(self, prefix: str, handler: Handler, strip_prefix: bool = False) -> Route:
        if not prefix.startswith("/"):
            raise ValueError(f"route prefix must start with '/': {prefix!r}")
        route = Route(prefix=prefix, handler=handler, strip_prefix=strip_prefix)
        self._routes.append(route)
        self._routes.sort(key=lambda r: len(r.prefix), reverse=True)
        return route

    def match(self, path: str) -> Route | None:
        for route in self._routes:
            if path.startswith(route.prefix):
                return route
        return None

    @property
    def prefixes(self) -> list[str]:
        return [route.prefix for route in self._routes]

    def __len__(self) -> int:
        return len(self._routes)


def strip_prefix(request: Request, prefix: str) -> Request:
    """Return a copy of ``request`` whose path has ``prefix`` removed."""
    path = request.scope["path"][len(prefix):]
    scope = dict(request.scope, path=path)
    raw_path = request.scope.get("raw_path")
    if raw_path is not None and raw_path.startswith(prefix.encode()):
        scope["raw_path"] = raw_path[len(prefix.encode()):]
    return Request(scope, receive=request.receive)
