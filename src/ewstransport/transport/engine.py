"""
ewstransport HTTP Engine

Thin helpers over httpx shared by both transport variants:
- client construction (keep-alive pool, TLS verification, proxy)
- one buffered request
- pumping a streaming response into a ProgressChannel

No retry is attempted anywhere in this layer; a failure is surfaced once.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from ewstransport.core.types import (
    DataChunk,
    HeaderReceived,
    RequestOptions,
    StreamEnded,
    StreamErrored,
)
from ewstransport.transport.channel import ProgressChannel

logger = structlog.get_logger()


DEFAULT_TIMEOUT = httpx.Timeout(None)
DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=10, keepalive_expiry=30.0)


def build_client(
    allow_untrusted_certificate: bool = False,
    follow_redirects: bool = True,
    proxy: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the keep-alive connection pool owned by one transport instance.

    The pool serves both http and https URLs. No timeout is configured:
    only disconnect() cancels a call.

    Args:
        allow_untrusted_certificate: Disable TLS certificate validation
        follow_redirects: Default redirect policy
        proxy: Proxy URL, credentials embedded
        transport: Replacement transport (tests use httpx.MockTransport)
    """
    kwargs: Dict[str, Any] = {
        "verify": not allow_untrusted_certificate,
        "follow_redirects": follow_redirects,
        "timeout": DEFAULT_TIMEOUT,
        "limits": DEFAULT_LIMITS,
    }
    if transport is not None:
        kwargs["transport"] = transport
    elif proxy:
        kwargs["proxy"] = proxy
    return httpx.AsyncClient(**kwargs)


def request_arguments(options: RequestOptions) -> Dict[str, Any]:
    """httpx request arguments for the given options."""
    return {
        "method": options.method.value,
        "url": options.url,
        "headers": dict(options.headers),
        "content": options.data,
        "follow_redirects": options.follow_redirect,
    }


async def fetch(client: httpx.AsyncClient, options: RequestOptions) -> httpx.Response:
    """
    Execute one request and read the whole body.

    Reading the body returns the connection to the pool, so a following
    request can reuse it.

    Raises:
        httpx.HTTPError: Transport-level failure
    """
    logger.debug(
        "http_request",
        method=options.method.value,
        url=options.url,
    )
    response = await client.request(**request_arguments(options))
    logger.debug(
        "http_response",
        url=options.url,
        status=response.status_code,
        redirects=len(response.history),
    )
    return response


async def pump_stream(
    client: httpx.AsyncClient,
    options: RequestOptions,
    channel: ProgressChannel,
) -> None:
    """
    Stream a response into the channel.

    Publishes one HeaderReceived, one DataChunk per received chunk, then
    StreamEnded; or StreamErrored on any failure. Cancellation (from
    channel.close()) closes the response and publishes nothing further.
    """
    try:
        async with client.stream(**request_arguments(options)) as response:
            channel.publish(HeaderReceived(headers=response.headers, status=response.status_code))
            async for text in response.aiter_text():
                channel.publish(DataChunk(data=text))
        channel.publish(StreamEnded())
    except asyncio.CancelledError:
        logger.debug("stream_cancelled", url=options.url)
        raise
    except Exception as e:
        # Delivered to the consumer; it disconnects and raises StreamError.
        logger.warning("stream_failed", url=options.url, error=str(e))
        channel.publish(StreamErrored(error=e))


def open_stream(
    client: httpx.AsyncClient,
    options: RequestOptions,
) -> ProgressChannel:
    """Start pumping a stream and return the channel the consumer reads."""
    channel = ProgressChannel()
    channel.attach(asyncio.create_task(pump_stream(client, options, channel)))
    return channel


def mask_proxy_url(proxy: Optional[str]) -> Optional[str]:
    """Proxy URL with any password replaced, for logging."""
    if not proxy:
        return proxy
    parts = urlsplit(proxy)
    if parts.password is None:
        return proxy
    netloc = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit(parts._replace(netloc=f"{parts.username}:***@{netloc}"))
