"""Map untrusted request paths onto validated files under the project root."""

from __future__ import annotations

import os
import posixpath
import re
from pathlib import Path
from urllib.parse import unquote

from config import FALLBACK_CONTENT_TYPE, ServerConfig

ROOT_PATH = "/"

_LEADING_PARENT_SEGMENTS = re.compile(r"^(\.\.[/\\])+")


class ResolutionError(Exception):
    """A request path that cannot be served, carrying its HTTP status and body."""

    status_code: int = 403
    body: str = "<h1>403 - Forbidden</h1>"

    def __init__(self, request_path: str, message: str | None = None) -> None:
        super().__init__(message or f"{self.__class__.__name__}: {request_path!r}")
        self.request_path = request_path


class ForbiddenPathError(ResolutionError):
    """The candidate path escapes the project root."""


class ForbiddenFileTypeError(ResolutionError):
    """The candidate extension is not on the allow-list."""

    body = "<h1>403 - Forbidden File Type</h1>"


class FileMissingError(ResolutionError):
    """The candidate does not exist, is not a regular file, or is unreadable."""

    status_code = 404
    body = "<h1>404 - File Not Found</h1>"


def effective_path(request_path: str, config: ServerConfig) -> str:
    if request_path == ROOT_PATH:
        return ROOT_PATH + config.default_document
    return request_path


def sanitize_path(path: str) -> tuple[str, bool]:
    """Normalize ``path`` relative to the root.

    Returns the sanitized relative path and whether normalization climbed
    above the root before the leading parent segments were stripped.
    """
    decoded = unquote(path).replace("\\", "/")
    normalized = posixpath.normpath(decoded.lstrip("/"))
    sanitized = _LEADING_PARENT_SEGMENTS.sub("", normalized)
    escaped = sanitized != normalized or sanitized == ".."
    return sanitized, escaped


def resolve_request_path(request_path: str, config: ServerConfig) -> Path:
    """Resolve ``request_path`` to a servable file or raise a ResolutionError.

    Checks run in a fixed order: containment, then extension, then existence.
    """
    relative_path, escaped = sanitize_path(effective_path(request_path, config))
    if escaped or "\x00" in relative_path:
        raise ForbiddenPathError(request_path)

    root = config.project_root
    try:
        candidate = (root / relative_path).resolve()
    except (OSError, RuntimeError) as exc:
        raise ForbiddenPathError(request_path, f"cannot canonicalize {request_path!r}") from exc

    try:
        candidate.relative_to(root)
    except ValueError:
        raise ForbiddenPathError(request_path) from None

    if request_path != ROOT_PATH and candidate.suffix.lower() not in config.allowed_extensions:
        raise ForbiddenFileTypeError(request_path)

    try:
        readable = candidate.is_file() and os.access(candidate, os.R_OK)
    except OSError:
        readable = False
    if not readable:
        raise FileMissingError(request_path)

    return candidate


def content_type_for(file_path: Path, config: ServerConfig) -> str:
    return config.content_types.get(file_path.suffix.lower(), FALLBACK_CONTENT_TYPE)
