from typing import AsyncIterator

import anyio
import httpx
import structlog
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse

from .config import ProxyRule, Settings
from .middleware import cors_headers
from .responses import http_error

logger = structlog.get_logger()

# Framing headers the local server sets itself for the relayed body.
HOP_BY_HOP_RESPONSE_HEADERS = frozenset({b"connection", b"keep-alive", b"transfer-encoding"})


def build_target_url(upstream: str, prefix: str, path: str, query: str = "", fragment: str = "") -> str:
    suffix = path[len(prefix):] if path.startswith(prefix) else path
    url = upstream + suffix
    if query:
        url += "?" + query
    if fragment:
        url += "#" + fragment
    return url


def split_fragment(path: str, query: str) -> tuple[str, str, str]:
    """Separate a ``#fragment`` left in the request target by the server."""
    if query:
        query, _, fragment = query.partition("#")
        return path, query, fragment
    path, _, fragment = path.partition("#")
    return path, query, fragment


class ProxyHandler:
    """
    Forwards requests under ``rule.prefix`` to ``rule.upstream``.

    One attempt per request with the shared client on ``app.state.http_client``.
    The request body is streamed upstream and the upstream body is streamed
    back undecoded. The whole exchange, body relay included, is bounded by
    ``settings.proxy_timeout``.
    """
    def __init__(self, rule: ProxyRule, settings: Settings):
        self.rule = rule
        self.settings = settings

    async def __call__(self, request: Request) -> Response:
        client: httpx.AsyncClient = request.app.state.http_client
        deadline = anyio.current_time() + self.settings.proxy_timeout

        path, query, fragment = split_fragment(
            request.scope["path"],
            request.scope.get("query_string", b"").decode("latin-1"),
        )
        url = build_target_url(self.rule.upstream, self.rule.prefix, path, query, fragment)

        headers = [(k, v) for k, v in request.headers.raw if k.lower() != b"host"]
        # Bodies are relayed undecoded: httpx's default Accept-Encoding must not apply.
        if "accept-encoding" not in request.headers:
            headers.append((b"accept-encoding", b"identity"))
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers

        try:
            outbound = client.build_request(
                request.method,
                url,
                headers=headers,
                content=request.stream() if has_body else None,
            )
            with anyio.fail_after(self.settings.proxy_timeout):
                upstream = await client.send(outbound, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as exc:
            logger.error("proxy_upstream_error", method=request.method, url=url, error=repr(exc))
            return http_error("Bad Gateway", 502)

        response = StreamingResponse(self._relay(upstream, url, deadline), status_code=upstream.status_code)
        response.raw_headers = [
            (k.lower(), v) for k, v in upstream.headers.raw
            if k.lower() not in HOP_BY_HOP_RESPONSE_HEADERS
        ]
        for name, value in cors_headers(self.settings).items():
            response.headers[name] = value
        return response

    async def _relay(self, upstream: httpx.Response, url: str, deadline: float) -> AsyncIterator[bytes]:
        chunks = upstream.aiter_raw()
        try:
            while True:
                with anyio.fail_after(max(deadline - anyio.current_time(), 0)):
                    try:
                        chunk = await chunks.__anext__()
                    except StopAsyncIteration:
                        break
                yield chunk
        except (httpx.HTTPError, TimeoutError) as exc:
            logger.error("proxy_copy_failed", url=url, error=repr(exc))
        finally:
            await upstream.aclose()
