from starlette.requests import Request
from starlette.responses import PlainTextResponse


def http_error(message: str, status_code: int, headers: dict[str, str] | None = None) -> PlainTextResponse:
    response = PlainTextResponse(message + "\n", status_code=status_code, headers=headers)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def not_found() -> PlainTextResponse:
    return http_error("404 page not found", 404)


def preset_content_type(request: Request) -> str | None:
    """Content type preset on the request by the middleware, if any."""
    return getattr(request.state, "content_type", None)
