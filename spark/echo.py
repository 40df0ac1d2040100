import structlog
from starlette.requests import Request
from starlette.responses import Response

from .responses import preset_content_type

logger = structlog.get_logger()


def render_request(request: Request, body: bytes) -> bytes:
    """Plain-text dump of a request: REQUEST, HEADERS and BODY sections."""
    lines = [
        "=== REQUEST ===",
        f"Method: {request.method}",
        f"Path: {request.scope['path']}",
    ]
    query = request.scope.get("query_string", b"").decode("latin-1")
    if query:
        lines.append(f"Query: {query}")
    lines.append(f"Host: {request.headers.get('host', '')}")
    lines.append(f"Protocol: HTTP/{request.scope.get('http_version', '1.1')}")
    lines.append("")

    lines.append("=== HEADERS ===")
    for name, value in request.headers.raw:
        if name.lower() == b"host":
            continue
        lines.append(f"{name.decode('latin-1')}: {value.decode('latin-1')}")
    lines.append("")

    lines.append("=== BODY ===")
    text = ("\n".join(lines) + "\n").encode("utf-8")
    if body:
        return text + body + b"\n"
    return text + b"(empty)\n"


class EchoHandler:
    async def __call__(self, request: Request) -> Response:
        body = await request.body()
        dump = render_request(request, body)
        logger.info("echo_request", dump=dump.decode("utf-8", errors="replace"))
        media_type = preset_content_type(request) or "text/plain; charset=utf-8"
        return Response(content=dump, status_code=200, media_type=media_type)
