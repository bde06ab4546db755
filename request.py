"""HTTP request-head model and parser."""

from dataclasses import dataclass, field
from urllib.parse import urlsplit

from config import MAX_TARGET_LENGTH

ALLOWED_HTTP_VERSIONS = {"HTTP/1.1", "HTTP/1.0"}
KNOWN_METHODS = {"GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "TRACE", "CONNECT"}


class HTTPRequestParseError(ValueError):
    """Request parse error carrying an HTTP status code."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class HTTPRequest:
    method: str
    path: str
    http_version: str = "HTTP/1.1"
    raw_target: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    keep_alive: bool = False

    @classmethod
    def from_bytes(cls, raw: bytes) -> "HTTPRequest":
        """Parse the head of a request already framed by the socket reader.

        Body framing and size limits are enforced while reading; any body
        bytes are ignored here since no handler consumes them.
        """
        head, separator, _body = raw.partition(b"\r\n\r\n")
        if not separator:
            raise HTTPRequestParseError("Missing CRLF CRLF request separator")

        request_line, *header_lines = head.decode("iso-8859-1").split("\r\n")
        method, target, http_version = _parse_request_line(request_line)
        headers = _parse_headers(header_lines)

        if http_version == "HTTP/1.1" and "host" not in headers:
            raise HTTPRequestParseError("Host header required for HTTP/1.1")
        if "transfer-encoding" in headers:
            raise HTTPRequestParseError("Transfer-Encoding is not supported", status_code=501)

        return cls(
            method=method,
            path=target_path(target),
            raw_target=target,
            http_version=http_version,
            headers=headers,
            keep_alive=_is_keep_alive(http_version, headers.get("connection", "")),
        )


def _parse_request_line(line: str) -> tuple[str, str, str]:
    if not line:
        raise HTTPRequestParseError("Missing request line")

    parts = line.split(" ")
    if len(parts) != 3:
        raise HTTPRequestParseError("Invalid request line")
    method, target, http_version = parts
    if not method or not target or not http_version:
        raise HTTPRequestParseError("Request line contains empty tokens")

    method = method.upper()
    if method not in KNOWN_METHODS:
        raise HTTPRequestParseError("Method not implemented", status_code=501)
    if http_version not in ALLOWED_HTTP_VERSIONS:
        raise HTTPRequestParseError("Unsupported HTTP version", status_code=505)
    if len(target) > MAX_TARGET_LENGTH:
        raise HTTPRequestParseError("Request target too long", status_code=414)
    return method, target, http_version


def _parse_headers(lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        name, colon, value = line.partition(":")
        if not colon:
            raise HTTPRequestParseError("Malformed header line")
        header_name = name.strip().lower()
        if not header_name:
            raise HTTPRequestParseError("Header name cannot be empty")
        headers[header_name] = value.strip()
    return headers


def target_path(target: str) -> str:
    """Path component of a request target, without query or fragment.

    Origin-form targets (``/a/b?x``) are split by hand: ``urlsplit`` would
    read a leading ``//`` as a network location and drop the first segment.
    """
    if target.startswith("/"):
        return target.split("?", 1)[0].split("#", 1)[0]
    return urlsplit(target).path or "/"


def _is_keep_alive(http_version: str, connection_header: str) -> bool:
    token = connection_header.lower()
    if http_version == "HTTP/1.1":
        return "close" not in token
    if http_version == "HTTP/1.0":
        return "keep-alive" in token
    return False
