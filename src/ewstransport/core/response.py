"""
ewstransport Response Normalizer and Error Mapper

Converts raw engine outcomes, successful or not, into CanonicalResponse.
Neither function decides success: each transport applies the 200-only
rule itself before choosing to return or raise.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Union

import httpx
import structlog

from ewstransport.core.types import CanonicalResponse

logger = structlog.get_logger()


# Some engines only report the HTTP status inside a generic error message.
STATUS_CODE_PATTERN = re.compile(r"statusCode=(\d+)$")


def _decode_body(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8", errors="replace")
    return str(body)


def _header_dict(headers: Optional[Mapping[str, str]]) -> dict:
    if headers is None:
        return {}
    # httpx.Headers yields lower-cased names, repeated headers joined by ", "
    return {str(k).lower(): str(v) for k, v in headers.items()}


# =============================================================================
# NORMALIZER
# =============================================================================


def normalize_response(
    body: Union[bytes, str, None],
    status: Optional[int],
    headers: Optional[Mapping[str, str]],
    final_url: Optional[str],
    status_text: Optional[str] = None,
    redirect_count: int = 0,
) -> CanonicalResponse:
    """
    Build the canonical record from the parts of a completed exchange.

    Args:
        body: Response body; bytes are decoded as UTF-8
        status: HTTP status code, if any
        headers: Response headers
        final_url: URL after any redirects
        status_text: Reason phrase or error message
        redirect_count: Number of redirects followed

    Returns:
        CanonicalResponse with an empty response_type
    """
    return CanonicalResponse(
        response=_decode_body(body),
        status=status,
        headers=_header_dict(headers),
        final_url=final_url,
        response_type="",
        status_text=status_text,
        redirect_count=redirect_count,
    )


def response_from_httpx(
    response: httpx.Response,
    redirect_count: Optional[int] = None,
    with_reason: bool = True,
) -> CanonicalResponse:
    """
    Normalize an httpx response whose body has been read.

    The redirect count defaults to the length of the response history.
    """
    if redirect_count is None:
        redirect_count = len(response.history)
    return normalize_response(
        body=response.content,
        status=response.status_code,
        headers=response.headers,
        final_url=str(response.url),
        status_text=response.reason_phrase if with_reason else None,
        redirect_count=redirect_count,
    )


# =============================================================================
# ERROR MAPPER
# =============================================================================


def _attr(obj: Any, name: str) -> Any:
    """getattr that also tolerates httpx's unset request/response properties."""
    try:
        return getattr(obj, name, None)
    except (RuntimeError, httpx.ResponseNotRead):
        return None


def _error_url(error: Any, embedded: Optional[Any]) -> Optional[str]:
    url = _attr(error, "url")
    if url is None and embedded is not None:
        url = _attr(embedded, "url")
    if url is None:
        request = _attr(error, "request")
        if request is not None:
            url = request.url
    return str(url) if url is not None else None


def status_from_message(message: str) -> Optional[int]:
    """Recover a status encoded as a trailing 'statusCode=<digits>'."""
    match = STATUS_CODE_PATTERN.search(message or "")
    if match:
        return int(match.group(1))
    return None


def map_error(error: Any) -> CanonicalResponse:
    """
    Map any transport-level failure to the canonical record.

    Body, status, headers and URL come from an embedded response when the
    error carries one. Without a structured status, a trailing
    'statusCode=<digits>' in the message is used; otherwise status stays
    None.
    """
    embedded = _attr(error, "response")
    message = str(error) if error is not None else ""

    status = _attr(error, "status_code")
    body: Union[bytes, str, None] = None
    headers: Optional[Mapping[str, str]] = None

    if embedded is not None:
        if status is None:
            status = _attr(embedded, "status_code")
        headers = _attr(embedded, "headers")
        body = _attr(embedded, "content")
        if body is None:
            body = _attr(embedded, "body")

    if status is None and message:
        status = status_from_message(message)

    mapped = CanonicalResponse(
        response=_decode_body(body),
        status=status,
        headers=_header_dict(headers),
        final_url=_error_url(error, embedded),
        response_type="",
        status_text=message or None,
        message=message or None,
    )

    logger.debug(
        "error_mapped",
        error_type=type(error).__name__,
        status=mapped.status,
    )

    return mapped
