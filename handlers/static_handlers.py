"""Static file handlers: resolve, read and answer one request."""

import logging
from pathlib import Path

from config import SECURITY_HEADERS, ServerConfig
from request import HTTPRequest
from resolver import ResolutionError, content_type_for, resolve_request_path
from response import HTTPResponse

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
ALLOWED_METHODS = ("GET", "HEAD")


def apply_security_headers(response: HTTPResponse) -> HTTPResponse:
    response.headers.update(SECURITY_HEADERS)
    return response


def html_error(status_code: int, body: str) -> HTTPResponse:
    return HTTPResponse(
        status_code=status_code,
        headers={"Content-Type": HTML_CONTENT_TYPE},
        body=body,
    )


def serve_file(file_path: Path, config: ServerConfig) -> HTTPResponse:
    """Read a validated file fully into memory and wrap it in a 200 response."""
    try:
        body = file_path.read_bytes()
    except OSError:
        logger.error("Failed to read validated file %s", file_path, exc_info=True)
        return html_error(500, "<h1>500 - Internal Server Error</h1>")

    return HTTPResponse(
        status_code=200,
        headers={
            "Content-Type": content_type_for(file_path, config),
            "Cache-Control": config.cache_control,
        },
        body=body,
    )


def handle_static_request(request: HTTPRequest, config: ServerConfig) -> HTTPResponse:
    if request.method not in ALLOWED_METHODS:
        response = HTTPResponse(
            status_code=405,
            headers={"Allow": ", ".join(ALLOWED_METHODS)},
            body="Method Not Allowed",
        )
        return apply_security_headers(response)

    try:
        file_path = resolve_request_path(request.path, config)
    except ResolutionError as exc:
        response = html_error(exc.status_code, exc.body)
    else:
        response = serve_file(file_path, config)

    if request.method == "HEAD":
        response = as_head_response(response)
    return apply_security_headers(response)


def as_head_response(get_response: HTTPResponse) -> HTTPResponse:
    body_bytes = get_response.body
    if isinstance(body_bytes, str):
        body_bytes = body_bytes.encode("utf-8")
    return HTTPResponse(
        status_code=get_response.status_code,
        reason_phrase=get_response.reason_phrase,
        headers=dict(get_response.headers),
        body=b"",
        content_length_override=len(body_bytes),
    )
