from starlette.requests import Request
from starlette.responses import Response

from .config import Settings
from .routing import Handler


def cors_headers(settings: Settings) -> dict[str, str]:
    """CORS headers configured for every response; empty when CORS is off."""
    if not settings.cors_enabled:
        return {}
    return {
        "Access-Control-Allow-Origin": settings.cors_origin,
        "Access-Control-Allow-Methods": settings.cors_methods,
        "Access-Control-Allow-Headers": settings.cors_headers,
    }


class CorsContentTypeMiddleware:
    """
    Wraps a route handler with the content-type override and CORS policy.

    Preset headers only fill in what the handler left unset, so a handler that
    sets its own Content-Type (mock fixtures, proxied responses) keeps it.
    Preflight OPTIONS requests are answered here when CORS is on.
    """
    def __init__(self, handler: Handler, settings: Settings):
        self.handler = handler
        self.settings = settings

    async def __call__(self, request: Request) -> Response:
        preset: dict[str, str] = {}
        if self.settings.content_type:
            request.state.content_type = self.settings.content_type
            preset["Content-Type"] = self.settings.content_type
        preset.update(cors_headers(self.settings))

        if self.settings.cors_enabled and request.method == "OPTIONS":
            return Response(status_code=200, headers=preset)

        response = await self.handler(request)
        for name, value in preset.items():
            if name not in response.headers:
                response.headers[name] = value
        return response
