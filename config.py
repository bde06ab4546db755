"""Configuration constants and the immutable server configuration value."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

HOST: str = "127.0.0.1"
PORT: int = 3001
PROJECT_ROOT: str = "."
DEFAULT_DOCUMENT: str = "index.html"
SERVER_NAME: str = "static-asset-server/1.0"

BUFFER_SIZE: int = 4096
SOCKET_TIMEOUT_SECS: int = 5
KEEPALIVE_TIMEOUT_SECS: int = 5
MAX_KEEPALIVE_REQUESTS: int = 100
MAX_REQUEST_BYTES: int = 1_048_576
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 65_536
MAX_TARGET_LENGTH: int = 2048

WORKER_COUNT: int = 8
REQUEST_QUEUE_SIZE: int = 64
LOG_FORMAT: str = "plain"

CACHE_MAX_AGE_SECS: int = 3600
FALLBACK_CONTENT_TYPE: str = "text/plain; charset=utf-8"

CONTENT_TYPES: Mapping[str, str] = MappingProxyType(
    {
        ".html": "text/html; charset=utf-8",
        ".css": "text/css; charset=utf-8",
        ".js": "text/javascript; charset=utf-8",
        ".json": "application/json; charset=utf-8",
        ".png": "image/png",
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".gif": "image/gif",
        ".svg": "image/svg+xml",
        ".ico": "image/x-icon",
        ".webp": "image/webp",
    }
)

SECURITY_HEADERS: Mapping[str, str] = MappingProxyType(
    {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }
)


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Settings fixed at process start and shared read-only by every request.

    ``project_root`` is always stored canonicalized (absolute, symlinks
    resolved); build instances through :meth:`from_root` to get that.
    """

    project_root: Path
    host: str = HOST
    port: int = PORT
    default_document: str = DEFAULT_DOCUMENT
    content_types: Mapping[str, str] = field(default_factory=lambda: CONTENT_TYPES)
    cache_max_age_secs: int = CACHE_MAX_AGE_SECS
    worker_count: int = WORKER_COUNT
    request_queue_size: int = REQUEST_QUEUE_SIZE
    socket_timeout_secs: int = SOCKET_TIMEOUT_SECS
    keepalive_timeout_secs: int = KEEPALIVE_TIMEOUT_SECS
    max_keepalive_requests: int = MAX_KEEPALIVE_REQUESTS
    log_format: str = LOG_FORMAT

    @classmethod
    def from_root(
        cls,
        project_root: str | Path = PROJECT_ROOT,
        **overrides: object,
    ) -> "ServerConfig":
        root = Path(project_root).resolve()
        if not root.is_dir():
            raise ValueError(f"project root is not a directory: {root}")
        if "content_types" in overrides:
            table = dict(overrides["content_types"])
            overrides["content_types"] = MappingProxyType(
                {str(ext).lower(): str(ctype) for ext, ctype in table.items()}
            )
        return cls(project_root=root, **overrides)

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return frozenset(self.content_types)

    @property
    def cache_control(self) -> str:
        return f"public, max-age={self.cache_max_age_secs}"
