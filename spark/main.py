import argparse
import asyncio
import sys
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path

import structlog
import uvicorn
from pydantic import ValidationError

from .app import create_app
from .config import Settings, StartupError
from .logging_config import setup_logging

logger = structlog.get_logger()

DIST_NAME = "spark-server"

STARTUP_POLL_INTERVAL = 0.1

# argparse dests that map onto Settings fields
SETTINGS_FLAGS = (
    "address",
    "port",
    "ssl_port",
    "path",
    "deny",
    "status",
    "cert",
    "key",
    "proxy",
    "cors_origin",
    "cors_methods",
    "cors_headers",
    "content_type",
    "mock",
    "log_level",
    "log_json",
    "body",
)


def get_version() -> str:
    try:
        return package_version(DIST_NAME)
    except PackageNotFoundError:
        return "dev"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spark",
        description="Serve a file, a directory or a literal body, with reverse proxy, "
                    "mock endpoints and a request echo at /echo.",
    )
    parser.add_argument("body", nargs="?", default=None,
                        help="File, directory or literal string to serve (default: .)")
    parser.add_argument("--address", help="Listening address")
    parser.add_argument("--port", type=int, help="Listening port")
    parser.add_argument("--ssl-port", dest="ssl_port", type=int, help="SSL listening port")
    parser.add_argument("--path", help="URL path")
    parser.add_argument("--deny",
                        help="Sensitive directory or file patterns to be denied when serving "
                             "a directory (comma separated)")
    parser.add_argument("--status", type=int, help="Returned HTTP status code")
    parser.add_argument("--cert", help="SSL certificate path")
    parser.add_argument("--key", help="SSL private key path")
    parser.add_argument("--proxy",
                        help="URL prefixes to be proxied to another server, e.g. "
                             "/api=>http://localhost:3000 (comma separated)")
    parser.add_argument("--cors-origin", dest="cors_origin",
                        help="Allow CORS requests from this origin (can be '*')")
    parser.add_argument("--cors-methods", dest="cors_methods", help="Allowed CORS methods")
    parser.add_argument("--cors-headers", dest="cors_headers", help="Allowed CORS headers")
    parser.add_argument("--content-type", dest="content_type", help="Set response Content-Type")
    parser.add_argument("--mock", help="Directory containing mock responses")
    parser.add_argument("--log-level", dest="log_level", help="Log level (debug, info, warning, error)")
    parser.add_argument("--log-json", dest="log_json", action="store_true", default=None,
                        help="Emit JSON log lines")
    parser.add_argument("--version", action="store_true", help="Print the version and exit")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from env vars, overridden by the flags given on the command line."""
    overrides = {
        name: getattr(args, name)
        for name in SETTINGS_FLAGS
        if getattr(args, name) is not None
    }
    return Settings(**overrides)


def tls_available(settings: Settings) -> bool:
    return Path(settings.cert).is_file() and Path(settings.key).is_file()


def build_servers(app, settings: Settings) -> tuple[uvicorn.Server, uvicorn.Server | None]:
    """Plain server plus a TLS server when both cert and key files exist."""
    plain = uvicorn.Server(uvicorn.Config(
        app,
        host=settings.address,
        port=settings.port,
        log_config=None,
    ))
    if not tls_available(settings):
        logger.debug("tls_listener_skipped", cert=settings.cert, key=settings.key)
        return plain, None

    # The plain server runs the lifespan; both share its app state.
    tls = uvicorn.Server(uvicorn.Config(
        app,
        host=settings.address,
        port=settings.ssl_port,
        ssl_certfile=settings.cert,
        ssl_keyfile=settings.key,
        lifespan="off",
        log_config=None,
    ))
    return plain, tls


async def _supervise_tls(plain: uvicorn.Server, server: uvicorn.Server) -> None:
    # The TLS listener relies on app state set up by the plain server's lifespan.
    while not plain.started:
        if plain.should_exit:
            return
        await asyncio.sleep(STARTUP_POLL_INTERVAL)
    try:
        await server.serve()
    except (OSError, SystemExit) as exc:
        logger.error("tls_listener_failed", port=server.config.port, error=repr(exc))


async def serve(app, settings: Settings) -> None:
    plain, tls = build_servers(app, settings)
    if tls is None:
        await plain.serve()
        return
    logger.info("tls_listener_starting", address=settings.address, port=settings.ssl_port)
    await asyncio.gather(plain.serve(), _supervise_tls(plain, tls))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"spark version {get_version()}")
        return 0

    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        parser.error(str(exc))
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)

    try:
        app = create_app(settings)
    except StartupError as exc:
        logger.error("startup_failed", error=str(exc))
        return 1

    logger.info(
        "serving",
        body=settings.body,
        listen=f"{settings.address}:{settings.port}",
        path=settings.path,
    )
    asyncio.run(serve(app, settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
