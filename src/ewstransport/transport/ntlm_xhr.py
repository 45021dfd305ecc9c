"""
ewstransport NTLM XHR API

Transport variant that authenticates every request with NTLM.

Each call runs the handshake on the instance's keep-alive pool, then sends
the caller's request (method and payload restored) with the final token.
The handshake leg always uses GET without a body.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import attrs
import httpx
import structlog

from ewstransport.core.config import NtlmConfig
from ewstransport.core.exceptions import NetworkError, StatusError, StreamError
from ewstransport.core.response import map_error, response_from_httpx
from ewstransport.core.types import (
    CanonicalResponse,
    Credentials,
    HttpMethod,
    ProgressEvent,
    RequestOptions,
    StreamErrored,
)
from ewstransport.ntlm.codec import MessageCodec, NTLMCodec
from ewstransport.ntlm.handshake import NTLMHandshake
from ewstransport.transport.base import ProgressDelegate
from ewstransport.transport.channel import ProgressChannel
from ewstransport.transport.engine import build_client, fetch, open_stream

logger = structlog.get_logger()


NTLM_API_NAME = "ntlm"


@attrs.define
class NtlmAuthXhrApi:
    """
    NTLM-authenticating XHR API.

    Credentials are parsed once at construction (DOMAIN\\user split) and
    never change afterwards.

    Example:
        api = NtlmAuthXhrApi(NtlmConfig(username="CORP\\jdoe", password="secret"))
        async with api:
            response = await api.xhr(
                RequestOptions(url=ews_url, method="POST", data=soap_envelope)
            )
    """

    config: NtlmConfig = attrs.field(factory=NtlmConfig)
    codec: NTLMCodec = attrs.field(factory=MessageCodec)
    transport: Optional[httpx.AsyncBaseTransport] = attrs.field(default=None, repr=False)

    _credentials: Credentials = attrs.field(init=False)
    _client: httpx.AsyncClient = attrs.field(init=False, repr=False)
    _handshake: NTLMHandshake = attrs.field(init=False, repr=False)
    _stream: Optional[ProgressChannel] = attrs.field(init=False, default=None, repr=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        self._credentials = self.config.credentials
        self._client = build_client(
            allow_untrusted_certificate=self.config.allow_untrusted_certificate,
            follow_redirects=True,
            transport=self.transport,
        )
        self._handshake = NTLMHandshake(
            fetch=self._fetch,
            codec=self.codec,
            default_workstation=self.config.workstation,
        )

    @property
    def api_name(self) -> str:
        return NTLM_API_NAME

    @property
    def credentials(self) -> Credentials:
        """Parsed credentials (read-only)."""
        return self._credentials

    async def _fetch(self, options: RequestOptions) -> httpx.Response:
        return await fetch(self._client, options)

    async def _authenticate(self, options: RequestOptions) -> RequestOptions:
        """Run the handshake and restore the caller's method and payload."""
        # The challenge leg is a bodyless GET whatever the caller sends.
        challenge_options = attrs.evolve(
            options,
            method=HttpMethod.GET,
            data=None,
            allow_untrusted_certificate=self.config.allow_untrusted_certificate,
        )
        authenticated = await self._handshake.negotiate(challenge_options, self._credentials)
        return attrs.evolve(authenticated, method=options.method, data=options.data)

    async def xhr(
        self,
        options: RequestOptions,
        progress_delegate: Optional[ProgressDelegate] = None,
    ) -> CanonicalResponse:
        """
        Send one authenticated request.

        Returns:
            Normalized response for status 200

        Raises:
            StatusError: Any other status, response attached
            NetworkError: Transport failure, mapped response attached
            HandshakeError: The NTLM exchange failed
        """
        final_options = await self._authenticate(options)

        try:
            raw = await self._fetch(final_options)
        except httpx.HTTPError as e:
            self._logger.warning("xhr_request_failed", url=options.url, error=str(e))
            raise NetworkError(map_error(e)) from e

        response = response_from_httpx(raw, with_reason=False)
        if not response.ok:
            self._logger.info("xhr_rejected", url=options.url, status=response.status)
            raise StatusError(response)
        return response

    async def stream(self, options: RequestOptions) -> AsyncIterator[ProgressEvent]:
        """
        Open an authenticated stream and yield its progress events.

        The sequence is HeaderReceived, DataChunk*, then StreamEnded; or it
        ends with StreamErrored, after which the stream is disconnected and
        StreamError is raised.
        """
        final_options = await self._authenticate(options)

        channel = open_stream(self._client, final_options)
        self._stream = channel
        self._logger.info("stream_opened", url=options.url)

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
                # Consumer abandoned the iteration.
                channel.close()

    async def xhr_stream(
        self,
        options: RequestOptions,
        progress_delegate: ProgressDelegate,
    ) -> None:
        """
        Stream a response, passing each progress event to the delegate.

        Returns when the stream ends; raises StreamError when it fails.
        """
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
        """Disconnect and release the connection pool."""
        self.disconnect()
        await self._client.aclose()

    async def __aenter__(self) -> "NtlmAuthXhrApi":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def create_ntlm_xhr_api(
    username: str,
    password: str,
    allow_untrusted_certificate: bool = False,
    workstation: str = "",
    codec: Optional[NTLMCodec] = None,
) -> NtlmAuthXhrApi:
    """
    Create an NTLM XHR API.

    Args:
        username: Login, optionally DOMAIN\\user
        password: Password
        allow_untrusted_certificate: Skip TLS certificate validation
        workstation: Default workstation name
        codec: Token codec (MessageCodec when omitted)
    """
    return NtlmAuthXhrApi(
        config=NtlmConfig(
            username=username,
            password=password,
            allow_untrusted_certificate=allow_untrusted_certificate,
            workstation=workstation,
        ),
        codec=codec if codec is not None else MessageCodec(),
    )
