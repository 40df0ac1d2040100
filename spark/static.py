import html
import os
import posixpath
import stat
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import FileResponse, HTMLResponse, RedirectResponse, Response

from .access import is_denied
from .config import Settings, StartupError
from .responses import http_error, not_found, preset_content_type
from .sniff import detect_content_type

logger = structlog.get_logger()


class BytesHandler:
    """Serves the same payload with a fixed status code for every request."""

    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code

    async def __call__(self, request: Request) -> Response:
        media_type = preset_content_type(request) or detect_content_type(self.content)
        return Response(content=self.content, status_code=self.status_code, media_type=media_type)


@dataclass(frozen=True)
class Entry:
    name: str
    is_dir: bool


class ProtectedDirectory:
    """
    Filesystem view rooted at ``root`` that refuses denied paths.

    Paths are slash-separated and relative to the root. Every lookup runs the
    deny check before touching the filesystem and raises ``PermissionError``
    for a denied path.
    """
    def __init__(self, root: Path, deny_patterns: tuple[str, ...]):
        self.root = root
        self.deny_patterns = deny_patterns

    def _resolve(self, path: str) -> Path:
        if is_denied(path, self.deny_patterns):
            raise PermissionError(f"access denied: {path}")
        return self.root.joinpath(*[p for p in path.split("/") if p])

    def lookup(self, path: str) -> tuple[Path, os.stat_result]:
        full_path = self._resolve(path)
        return full_path, full_path.stat()

    def listdir(self, path: str) -> list[Entry]:
        full_path = self._resolve(path)
        entries = []
        with os.scandir(full_path) as it:
            for entry in it:
                if is_denied(posixpath.join(path, entry.name), self.deny_patterns):
                    continue
                entries.append(Entry(entry.name, entry.is_dir()))
        return sorted(entries, key=lambda e: e.name)


def clean_path(path: str) -> str:
    """Normalize a URL path to an absolute path that cannot climb above ``/``."""
    if not path.startswith("/"):
        path = "/" + path
    cleaned = posixpath.normpath(path)
    # normpath keeps a leading "//"
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def render_listing(entries: list[Entry]) -> str:
    lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', "<pre>"]
    for entry in entries:
        name = entry.name + "/" if entry.is_dir else entry.name
        lines.append(f'<a href="{quote(name)}">{html.escape(name)}</a>')
    lines.append("</pre>")
    return "\n".join(lines) + "\n"


class DirectoryHandler:
    """
    File server over a ``ProtectedDirectory``; expects the route prefix already stripped.

    Every method reads; nothing under the root is ever written.
    """

    def __init__(self, directory: ProtectedDirectory):
        self.directory = directory

    async def __call__(self, request: Request) -> Response:
        url_path = request.scope["path"] or "/"
        path = clean_path(url_path)

        try:
            full_path, stat_result = await run_in_threadpool(self.directory.lookup, path)
        except PermissionError:
            logger.info("static_access_denied", path=path)
            return http_error("403 Forbidden", 403)
        except (FileNotFoundError, NotADirectoryError):
            return not_found()

        if stat.S_ISDIR(stat_result.st_mode):
            if not url_path.endswith("/"):
                return _local_redirect(request, posixpath.basename(path) + "/")
            return await self._serve_directory(request, path)

        return FileResponse(full_path, stat_result=stat_result, media_type=preset_content_type(request))

    async def _serve_directory(self, request: Request, path: str) -> Response:
        index = posixpath.join(path, "index.html")
        try:
            full_path, stat_result = await run_in_threadpool(self.directory.lookup, index)
            if stat.S_ISREG(stat_result.st_mode):
                return FileResponse(full_path, stat_result=stat_result, media_type=preset_content_type(request))
        except (PermissionError, FileNotFoundError, NotADirectoryError):
            pass

        try:
            entries = await run_in_threadpool(self.directory.listdir, path)
        except PermissionError:
            return http_error("403 Forbidden", 403)
        except OSError as exc:
            logger.error("static_listing_failed", path=path, error=str(exc))
            return http_error("Error reading directory", 500)

        listing = render_listing(entries)
        media_type = preset_content_type(request) or "text/html; charset=utf-8"
        return HTMLResponse(listing, media_type=media_type)


def _local_redirect(request: Request, target: str) -> Response:
    query = request.scope.get("query_string", b"").decode("latin-1")
    if query:
        target += "?" + query
    return RedirectResponse(target, status_code=301)


def build_content_handler(settings: Settings) -> tuple[DirectoryHandler | BytesHandler, bool]:
    """
    Select the content mode from the body argument.

    Returns the handler and whether the dispatcher must strip the route prefix
    before delegating to it.
    """
    body = settings.body or "."
    try:
        st = os.stat(body)
    except OSError:
        logger.debug("serving_literal_body", length=len(body))
        return BytesHandler(body.encode("utf-8"), settings.status), False

    if stat.S_ISDIR(st.st_mode):
        deny_patterns = settings.deny_patterns
        if not deny_patterns:
            logger.warning("serving_without_filter", root=body)
        directory = ProtectedDirectory(Path(body), deny_patterns)
        return DirectoryHandler(directory), True

    if stat.S_ISREG(st.st_mode):
        try:
            content = Path(body).read_bytes()
        except OSError as exc:
            raise StartupError(f"error reading file {body}: {exc}") from exc
        return BytesHandler(content, settings.status), False

    raise StartupError(f"cannot serve {body}: not a regular file or directory")
