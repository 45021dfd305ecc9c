"""
ewstransport NTLM Handshake

Runs the HTTP NTLM challenge/response exchange ahead of the real request.

Flow:
1. NEGOTIATE token sent with Connection: keep-alive
2. Server answers with a challenge (usually 401) in www-authenticate
3. AUTHENTICATE token computed from the challenge and the credentials
4. Options returned with Authorization set and Connection: Close, ready
   for the payload-bearing request on the same keep-alive connection

Each step returns new RequestOptions; the caller's value is never changed.
The stage reached lives in the negotiate() call, so one orchestrator can
serve concurrent requests.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import attrs
import httpx
import structlog
from returns.result import Failure, Result, Success

from ewstransport.core.exceptions import (
    ChallengeMissingError,
    CodecError,
    HandshakeError,
    NetworkError,
)
from ewstransport.core.response import map_error, response_from_httpx
from ewstransport.core.types import CanonicalResponse, Credentials, RequestOptions
from ewstransport.ntlm.codec import MessageCodec, NTLMCodec
from ewstransport.ntlm.types import HandshakeState

logger = structlog.get_logger()


# Executes one request and returns the fully read response
FetchFn = Callable[[RequestOptions], Awaitable[httpx.Response]]

CHALLENGE_HEADER = "www-authenticate"
CHALLENGE_MISSING_MESSAGE = "www-authenticate not found on response of second request"

# Header variants some engines add in lower case. The server-side NTLM
# check is case-sensitive and rejects the duplicate.
LOWERCASE_DUPLICATES = ("authorization", "connection")


@attrs.define(frozen=True, slots=True)
class HandshakeContext:
    """Inputs of one handshake. Not kept beyond the call."""

    url: str
    username: str = ""
    password: str = attrs.field(default="", repr=False)
    domain: str = ""
    workstation: str = ""

    @classmethod
    def create(
        cls,
        options: RequestOptions,
        credentials: Credentials,
        default_workstation: str = "",
    ) -> "HandshakeContext":
        return cls(
            url=options.url,
            username=credentials.username,
            password=credentials.password,
            domain=credentials.domain,
            workstation=options.workstation or default_workstation or "",
        )


def read_challenge(response: httpx.Response) -> Result[str, str]:
    """Return the challenge header value, or Failure when absent or empty."""
    header = response.headers.get(CHALLENGE_HEADER)
    if not header:
        return Failure(CHALLENGE_MISSING_MESSAGE)
    return Success(header)


@attrs.define
class NTLMHandshake:
    """
    NTLM handshake orchestrator.

    Example:
        handshake = NTLMHandshake(fetch=engine.fetch)
        final_options = await handshake.negotiate(options, credentials)
        response = await engine.fetch(final_options)
    """

    fetch: FetchFn
    codec: NTLMCodec = attrs.Factory(MessageCodec)
    default_workstation: str = ""

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    async def negotiate(
        self,
        options: RequestOptions,
        credentials: Credentials,
    ) -> RequestOptions:
        """
        Perform the two-message exchange.

        Args:
            options: Options for the challenge leg
            credentials: Parsed credentials

        Returns:
            New options carrying the final Authorization header

        Raises:
            NetworkError: The challenge round trip failed
            ChallengeMissingError: No www-authenticate header in the answer
            HandshakeError: The challenge could not be decoded or answered
        """
        ctx = HandshakeContext.create(options, credentials, self.default_workstation)
        state = HandshakeState.INITIAL

        self._logger.info(
            "ntlm_handshake_start",
            url=ctx.url,
            username=ctx.username,
            domain=ctx.domain,
            workstation=ctx.workstation,
        )

        try:
            type1 = self.codec.create_type1_message(ctx.workstation, ctx.domain)
        except CodecError as e:
            self._logger.warning("ntlm_negotiate_unbuilt", url=ctx.url, reached=state.name, error=e.message)
            raise HandshakeError(CanonicalResponse(message=e.message), e.message) from e

        negotiate_options = options.with_header("Authorization", type1).with_header(
            "Connection", "keep-alive"
        )

        try:
            challenge_response = await self.fetch(negotiate_options)
        except httpx.HTTPError as e:
            self._logger.warning("ntlm_negotiate_failed", url=ctx.url, reached=state.name, error=str(e))
            raise NetworkError(map_error(e)) from e

        state = HandshakeState.NEGOTIATE_SENT
        leg_response = response_from_httpx(challenge_response)

        challenge_header = read_challenge(challenge_response)
        if isinstance(challenge_header, Failure):
            self._logger.warning(
                "ntlm_challenge_missing",
                url=ctx.url,
                reached=state.name,
                status=challenge_response.status_code,
            )
            raise ChallengeMissingError(
                attrs.evolve(leg_response, message=challenge_header.failure()),
                challenge_header.failure(),
            )

        try:
            challenge = self.codec.decode_type2_message(challenge_header.unwrap())
            state = HandshakeState.CHALLENGE_RECEIVED
            type3 = self.codec.create_type3_message(
                challenge,
                ctx.username,
                ctx.password,
                ctx.workstation,
                ctx.domain,
            )
        except CodecError as e:
            self._logger.warning("ntlm_challenge_rejected", url=ctx.url, reached=state.name, error=e.message)
            raise HandshakeError(attrs.evolve(leg_response, message=e.message), e.message) from e

        final_options = (
            negotiate_options.without_headers(*LOWERCASE_DUPLICATES)
            .with_header("Authorization", type3)
            .with_header("Connection", "Close")
        )
        state = HandshakeState.AUTHENTICATE_READY

        self._logger.info(
            "ntlm_handshake_complete",
            url=ctx.url,
            challenge_status=challenge_response.status_code,
            state=state.name,
        )

        return final_options


def create_handshake(
    fetch: FetchFn,
    codec: Optional[NTLMCodec] = None,
    workstation: str = "",
) -> NTLMHandshake:
    """Create a handshake orchestrator with the default codec unless one is given."""
    return NTLMHandshake(
        fetch=fetch,
        codec=codec if codec is not None else MessageCodec(),
        default_workstation=workstation,
    )
