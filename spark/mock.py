"""
Mock endpoints served from a fixture directory tree.

Each directory under the mock root that holds files named after HTTP verbs is
an endpoint. A fixture file is named ``METHOD[_STATUS][.ext]``: the method is
matched case-insensitively against the request, the optional status defaults
to 200 and the extension picks the content type.
"""
import os
import re
from dataclasses import dataclass
from pathlib import Path

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from .responses import http_error, not_found
from .sniff import detect_content_type

logger = structlog.get_logger()

HTTP_VERBS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

EXTENSION_CONTENT_TYPES = {
    ".json": "application/json",
    ".xml": "application/xml",
    ".html": "text/html",
    ".txt": "text/plain",
}

DEFAULT_STATUS = 200

_LEADING_DIGITS = re.compile(r"\d+")


@dataclass(frozen=True)
class MockEndpoint:
    root: Path
    relative_path: str

    @property
    def directory(self) -> Path:
        return self.root / self.relative_path

    @property
    def url_path(self) -> str:
        return "/" + self.relative_path


@dataclass(frozen=True)
class Fixture:
    filename: str
    status_code: int


def fixture_method(filename: str) -> str:
    """Upper-cased method token of a fixture name: the text before the first ``_`` or ``.``."""
    token = filename.split("_", 1)[0]
    return token.split(".", 1)[0].upper()


def fixture_status(filename: str) -> int:
    parts = filename.split("_")
    if len(parts) < 2:
        return DEFAULT_STATUS
    segment = parts[1]
    match = _LEADING_DIGITS.match(segment)
    if match is None:
        if segment and not segment.startswith("."):
            logger.warning("mock_status_ignored", filename=filename, segment=segment)
        return DEFAULT_STATUS
    status_code = int(match.group())
    if status_code == 0:
        return DEFAULT_STATUS
    if not 100 <= status_code <= 599:
        logger.warning("mock_status_ignored", filename=filename, segment=segment)
        return DEFAULT_STATUS
    return status_code


def resolve_fixture(filenames: list[str], method: str) -> tuple[Fixture | None, list[str]]:
    """
    Pick the fixture serving ``method`` from a directory listing.

    Returns the first matching fixture (or None) and every method token seen
    up to that point, in listing order, for the ``Allow`` header.
    """
    wanted = method.upper()
    allowed: list[str] = []
    for filename in filenames:
        token = fixture_method(filename)
        allowed.append(token)
        if token == wanted:
            return Fixture(filename, fixture_status(filename)), allowed
    return None, allowed


def fixture_content_type(filename: str, content: bytes) -> str:
    ext = os.path.splitext(filename)[1]
    return EXTENSION_CONTENT_TYPES.get(ext) or detect_content_type(content)


def _list_files(directory: Path) -> list[str]:
    with os.scandir(directory) as it:
        return sorted(entry.name for entry in it if not entry.is_dir())


def _has_verb_file(directory: Path) -> bool:
    with os.scandir(directory) as it:
        for entry in it:
            if entry.is_dir():
                continue
            if entry.name.upper().startswith(HTTP_VERBS):
                return True
    return False


def discover_endpoints(mock_root: str | Path) -> list[MockEndpoint]:
    """
    Walk ``mock_root`` and return one endpoint per directory holding verb files.

    Unreadable directories are skipped; a missing root yields no endpoints.
    """
    root = Path(mock_root)
    if not root.is_dir():
        logger.warning("mock_dir_missing", mock_dir=str(root))
        return []

    def _on_error(exc: OSError) -> None:
        logger.warning("mock_dir_unreadable", path=exc.filename, error=str(exc))

    endpoints: list[MockEndpoint] = []
    for dirpath, dirnames, _ in os.walk(root, onerror=_on_error):
        dirnames.sort()
        directory = Path(dirpath)
        if directory == root:
            continue
        try:
            if not _has_verb_file(directory):
                continue
        except OSError as exc:
            _on_error(exc)
            continue
        relative_path = directory.relative_to(root).as_posix()
        endpoint = MockEndpoint(root=root, relative_path=relative_path)
        endpoints.append(endpoint)
        logger.info("mock_endpoint_registered", path=endpoint.url_path)
    return endpoints


class MockHandler:
    def __init__(self, endpoint: MockEndpoint):
        self.endpoint = endpoint

    async def __call__(self, request: Request) -> Response:
        directory = self.endpoint.directory
        if not directory.exists():
            return not_found()

        try:
            filenames = await run_in_threadpool(_list_files, directory)
        except OSError as exc:
            logger.error("mock_dir_read_failed", path=str(directory), error=str(exc))
            return http_error("Internal Server Error", 500)

        fixture, allowed = resolve_fixture(filenames, request.method)
        if fixture is None:
            return http_error("Method Not Allowed", 405, headers={"Allow": ", ".join(allowed)})

        file_path = directory / fixture.filename
        try:
            content = await run_in_threadpool(file_path.read_bytes)
        except OSError as exc:
            logger.error("mock_file_read_failed", path=str(file_path), error=str(exc))
            return http_error("Internal Server Error", 500)

        # Set verbatim; media_type would append a charset to text types.
        return Response(
            content=content,
            status_code=fixture.status_code,
            headers={"Content-Type": fixture_content_type(fixture.filename, content)},
        )
