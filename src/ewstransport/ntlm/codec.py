"""
ewstransport NTLM Codec

Builds and decodes the NTLM tokens exchanged in HTTP headers.

The handshake only depends on the NTLMCodec protocol: three pure
functions. MessageCodec is the default implementation, backed by
pyspnego's built-in NTLM provider (which ships its own MD4, so it works
on OpenSSL 3 builds without the legacy provider). Any object with the
same three methods can be passed instead.

Token format: "NTLM " + base64(message bytes)
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Protocol, runtime_checkable

import attrs
import spnego
import structlog
from spnego.exceptions import SpnegoError

from ewstransport.core.exceptions import CodecError
from ewstransport.ntlm.types import AVPairType, ChallengeMessage, find_av_pair

logger = structlog.get_logger()


NTLM_SCHEME = "NTLM"

# A WWW-Authenticate value may list several schemes: "Negotiate, NTLM TlRM..."
_CHALLENGE_PATTERN = re.compile(r"(?:^|,)\s*NTLM\s+([A-Za-z0-9+/=]+)", re.IGNORECASE)

NTLM_SERVICE = "http"

# NEGOTIATE carries no credentials; the provider only needs some to start.
_NEGOTIATE_CREDENTIALS = ("negotiate", "negotiate")


@runtime_checkable
class NTLMCodec(Protocol):
    """The three codec functions the handshake uses."""

    def create_type1_message(self, workstation: str, domain: str) -> str:
        ...

    def decode_type2_message(self, header: str) -> Any:
        ...

    def create_type3_message(
        self,
        challenge: Any,
        username: str,
        password: str,
        workstation: str,
        domain: str,
    ) -> str:
        ...


def encode_token(message: bytes) -> str:
    """Wrap message bytes as an Authorization header value."""
    return f"{NTLM_SCHEME} {base64.b64encode(message).decode('ascii')}"


def extract_token(header: str) -> bytes:
    """
    Extract the NTLM message from a WWW-Authenticate value.

    Raises:
        CodecError: No NTLM token, or the token is not valid base64
    """
    match = _CHALLENGE_PATTERN.search(header or "")
    if not match:
        raise CodecError(f"No NTLM challenge in header: {header!r}")
    try:
        return base64.b64decode(match.group(1), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"Invalid NTLM challenge encoding: {e}") from e


@attrs.define(frozen=True, slots=True)
class DecodedChallenge:
    """A server challenge: the exact bytes received and their parsed form."""

    token: bytes = attrs.field(repr=False)
    message: ChallengeMessage


def _qualified_user(username: str, domain: str) -> str:
    return f"{domain}\\{username}" if domain else username


def _client_context(username: str, password: str) -> Any:
    return spnego.client(
        username=username,
        password=password,
        service=NTLM_SERVICE,
        protocol="ntlm",
        context_req=spnego.ContextReq.default,
        options=spnego.NegotiateOptions.use_ntlm,
    )


class MessageCodec:
    """
    Default NTLMv2 codec.

    The NEGOTIATE message pyspnego emits depends only on the requested
    context flags, so create_type3_message replays it on a fresh context
    before answering the challenge; the MIC then covers the same NEGOTIATE
    bytes the server received. Workstation and domain are not advertised
    in NEGOTIATE; the domain is sent in AUTHENTICATE.

    Example:
        codec = MessageCodec()
        type1 = codec.create_type1_message("WS01", "CORP")
        challenge = codec.decode_type2_message(response.headers["www-authenticate"])
        type3 = codec.create_type3_message(challenge, "jdoe", "secret", "WS01", "CORP")
    """

    def create_type1_message(self, workstation: str, domain: str) -> str:
        try:
            token = _client_context(*_NEGOTIATE_CREDENTIALS).step()
        except SpnegoError as e:
            raise CodecError(f"Failed to build negotiate message: {e}") from e
        return encode_token(token or b"")

    def decode_type2_message(self, header: str) -> DecodedChallenge:
        raw = extract_token(header)
        try:
            message = ChallengeMessage.from_bytes(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise CodecError(f"Failed to parse challenge: {e}") from e

        logger.debug(
            "ntlm_challenge_decoded",
            target_name=message.target_name,
            flags=hex(message.negotiate_flags),
            has_timestamp=find_av_pair(message.target_info, AVPairType.MsvAvTimestamp) is not None,
        )
        return DecodedChallenge(token=raw, message=message)

    def create_type3_message(
        self,
        challenge: DecodedChallenge,
        username: str,
        password: str,
        workstation: str,
        domain: str,
    ) -> str:
        domain = domain or challenge.message.target_name
        context = _client_context(_qualified_user(username or "", domain), password or "")

        try:
            context.step()
            token = context.step(challenge.token)
        except (SpnegoError, ValueError) as e:
            raise CodecError(f"Failed to answer challenge: {e}") from e
        if not token:
            raise CodecError("NTLM provider produced no authenticate message")

        logger.debug(
            "ntlm_authenticate_built",
            username=username,
            domain=domain,
            workstation=workstation,
        )

        return encode_token(token)
