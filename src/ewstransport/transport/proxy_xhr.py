"""
ewstransport Proxy XHR API

Transport variant that routes requests through an optional forward proxy
and lets an optional pre-call hook rewrite each request before it is sent.

Redirects are never followed here; they are returned to the caller.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, AsyncIterator, Optional, Protocol, Tuple, runtime_checkable

import attrs
import httpx
import structlog

from ewstransport.core.config import ProxyConfig
from ewstransport.core.exceptions import NetworkError, PreCallError, StatusError, StreamError
from ewstransport.core.response import map_error, response_from_httpx
from ewstransport.core.types import (
    CanonicalResponse,
    ProgressEvent,
    RequestOptions,
    StreamErrored,
)
from ewstransport.transport.base import ProgressDelegate
from ewstransport.transport.channel import ProgressChannel
from ewstransport.transport.engine import build_client, fetch, mask_proxy_url, open_stream

logger = structlog.get_logger()


PROXY_API_NAME = "proxy"

# Pools kept per instance; the least recently used one is closed beyond this.
MAX_CLIENTS = 8

ClientKey = Tuple[Optional[str], bool]


# =============================================================================
# PROXY COMPOSER
# =============================================================================


def compose_proxy_url(config: ProxyConfig) -> Optional[str]:
    """
    Build the proxy connection string.

    Returns None without a proxy URL, the URL unchanged unless both user
    and password are set, and otherwise the URL with "user:password@"
    inserted after the scheme separator. Credentials are not URL-encoded.
    """
    if not config.proxy_url:
        return None
    if not config.has_credentials:
        return config.proxy_url

    scheme, separator, rest = config.proxy_url.partition("://")
    if not separator:
        # No scheme: credentials go in front of the host.
        return f"{config.user}:{config.password}@{config.proxy_url}"
    return f"{scheme}://{config.user}:{config.password}@{rest}"


# =============================================================================
# PRE-CALL HOOK
# =============================================================================


@runtime_checkable
class PreCallProvider(Protocol):
    """Interceptor allowed to rewrite outgoing options."""

    async def pre_call(self, options: RequestOptions) -> Optional[RequestOptions]:
        ...


# =============================================================================
# PROXY XHR API
# =============================================================================


@attrs.define
class ProxySupportedXhrApi:
    """
    Proxy-capable XHR API.

    Example:
        api = ProxySupportedXhrApi(ProxyConfig(
            proxy_url="http://proxy.corp:8080",
            user="svc",
            password="secret",
        ))
        api.set_provider(token_provider)
        response = await api.xhr(RequestOptions(url=ews_url, method="POST", data=body))
    """

    config: ProxyConfig = attrs.field(factory=ProxyConfig)
    transport: Optional[httpx.AsyncBaseTransport] = attrs.field(default=None, repr=False)

    _provider: Optional[PreCallProvider] = attrs.field(default=None)
    _clients: "OrderedDict[ClientKey, httpx.AsyncClient]" = attrs.field(
        init=False, factory=OrderedDict, repr=False
    )
    _stream: Optional[ProgressChannel] = attrs.field(init=False, default=None, repr=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def api_name(self) -> str:
        return PROXY_API_NAME

    @property
    def provider(self) -> Optional[PreCallProvider]:
        return self._provider

    def set_provider(self, provider: Optional[PreCallProvider]) -> None:
        """Register (or clear) the pre-call hook."""
        self._provider = provider

    def proxy_string(self) -> Optional[str]:
        """Connection string for the configured proxy."""
        return compose_proxy_url(self.config)

    async def _client_for(self, options: RequestOptions) -> httpx.AsyncClient:
        """Keep-alive pool for the proxy and TLS setting of these options."""
        key = (options.proxy, options.allow_untrusted_certificate)
        client = self._clients.get(key)
        if client is not None:
            self._clients.move_to_end(key)
        else:
            client = build_client(
                allow_untrusted_certificate=options.allow_untrusted_certificate,
                follow_redirects=False,
                proxy=options.proxy,
                transport=self.transport,
            )
            self._clients[key] = client
            self._logger.debug(
                "proxy_client_created",
                proxy=mask_proxy_url(options.proxy),
                verify=not options.allow_untrusted_certificate,
            )
            await self._evict()
        return client

    async def _evict(self) -> None:
        while len(self._clients) > MAX_CLIENTS:
            (proxy, _), client = self._clients.popitem(last=False)
            self._logger.debug("proxy_client_evicted", proxy=mask_proxy_url(proxy))
            # An injected transport is shared by every pool and stays open.
            if self.transport is None:
                await client.aclose()

    def _prepare(self, options: RequestOptions) -> RequestOptions:
        proxy = self.proxy_string()
        return attrs.evolve(
            options,
            follow_redirect=False,
            proxy=proxy if proxy else options.proxy,
            allow_untrusted_certificate=self.config.allow_untrusted_certificate,
        )

    async def _pre_call(self, options: RequestOptions) -> RequestOptions:
        """Let the hook rewrite the options. A None result keeps them."""
        prepared = self._prepare(options)
        if self._provider is None:
            return prepared

        try:
            rewritten = await self._provider.pre_call(prepared)
        except Exception as e:
            self._logger.warning("pre_call_rejected", url=options.url, error=str(e))
            raise PreCallError(map_error(e)) from e

        return rewritten if rewritten is not None else prepared

    async def xhr(
        self,
        options: RequestOptions,
        progress_delegate: Optional[ProgressDelegate] = None,
    ) -> CanonicalResponse:
        """
        Send one request through the proxy.

        Returns:
            Normalized response for status 200

        Raises:
            StatusError: Any other status, response attached
            NetworkError: Transport failure, mapped response attached
            PreCallError: The hook rejected the options
        """
        final_options = await self._pre_call(options)

        try:
            raw = await fetch(await self._client_for(final_options), final_options)
        except httpx.HTTPError as e:
            self._logger.warning(
                "xhr_request_failed",
                url=final_options.url,
                proxy=mask_proxy_url(final_options.proxy),
                error=str(e),
            )
            raise NetworkError(map_error(e)) from e

        response = response_from_httpx(raw)
        if not response.ok:
            self._logger.info("xhr_rejected", url=final_options.url, status=response.status)
            raise StatusError(response)
        return response

    async def stream(self, options: RequestOptions) -> AsyncIterator[ProgressEvent]:
        """
        Open a stream through the proxy and yield its progress events.

        Event semantics match NtlmAuthXhrApi.stream.
        """
        final_options = await self._pre_call(options)

        channel = open_stream(await self._client_for(final_options), final_options)
        self._stream = channel
        self._logger.info(
            "stream_opened",
            url=final_options.url,
            proxy=mask_proxy_url(final_options.proxy),
        )

        finished = False
        try:
            async for event in channel:
                yield event
                if isinstance(event, StreamErrored):
                    finished = True
                    self.disconnect()
                    raise StreamError(map_error(event.error)) from event.error
            finished = True
        finally:
            if not finished:
                channel.close()

    async def xhr_stream(
        self,
        options: RequestOptions,
        progress_delegate: ProgressDelegate,
    ) -> None:
        """Stream a response, passing each progress event to the delegate."""
        async for event in self.stream(options):
            progress_delegate(event)

    def disconnect(self) -> None:
        """Tear down the active stream. Never raises."""
        if self._stream is None:
            return
        try:
            self._stream.close()
        except Exception as e:
            self._logger.debug("disconnect_error_ignored", error=str(e))

    async def aclose(self) -> None:
        """Disconnect and release every connection pool."""
        self.disconnect()
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> "ProxySupportedXhrApi":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def create_proxy_xhr_api(
    proxy_url: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    allow_untrusted_certificate: bool = False,
    provider: Optional[PreCallProvider] = None,
) -> ProxySupportedXhrApi:
    """
    Create a proxy XHR API.

    Args:
        proxy_url: Forward proxy URL (None for direct connections)
        user: Proxy user
        password: Proxy password
        allow_untrusted_certificate: Skip TLS certificate validation
        provider: Optional pre-call hook
    """
    return ProxySupportedXhrApi(
        config=ProxyConfig(
            proxy_url=proxy_url,
            user=user,
            password=password,
            allow_untrusted_certificate=allow_untrusted_certificate,
        ),
        provider=provider,
    )
