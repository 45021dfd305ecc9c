"""
Pytest configuration and shared fixtures for ewstransport tests.
"""

import struct
from typing import Any, Callable, List, Optional

import httpx
import pytest

from ewstransport.core.config import NtlmConfig, ProxyConfig
from ewstransport.core.types import Credentials, RequestOptions
from ewstransport.ntlm.codec import encode_token
from ewstransport.ntlm.types import AVPairType, ChallengeMessage, NegotiateFlags
from ewstransport.transport.ntlm_xhr import NtlmAuthXhrApi
from ewstransport.transport.proxy_xhr import ProxySupportedXhrApi


EWS_URL = "https://mail.example.com/EWS/Exchange.asmx"

TYPE1_TOKEN = "NTLM TYPE1"
TYPE3_TOKEN = "NTLM TYPE3"
CHALLENGE_HEADER = "NTLM CHALLENGE"


# =============================================================================
# ASYNC BACKEND
# =============================================================================


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio only."""
    return "asyncio"


# =============================================================================
# CODEC STUB
# =============================================================================


class RecordingCodec:
    """NTLM codec stub returning fixed tokens and recording every call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def create_type1_message(self, workstation: str, domain: str) -> str:
        self.calls.append(("type1", workstation, domain))
        return TYPE1_TOKEN

    def decode_type2_message(self, header: str) -> Any:
        self.calls.append(("type2", header))
        return {"challenge": header}

    def create_type3_message(
        self,
        challenge: Any,
        username: str,
        password: str,
        workstation: str,
        domain: str,
    ) -> str:
        self.calls.append(("type3", challenge, username, password, workstation, domain))
        return TYPE3_TOKEN

    def called(self, name: str) -> bool:
        return any(call[0] == name for call in self.calls)


@pytest.fixture
def codec() -> RecordingCodec:
    return RecordingCodec()


# =============================================================================
# CHALLENGE FIXTURES
# =============================================================================

# 2023-11-14T22:13:20Z as a FILETIME
CHALLENGE_TIMESTAMP = 133444736000000000

SERVER_CHALLENGE = b"\x01\x23\x45\x67\x89\xab\xcd\xef"


def av_pair(av_type: AVPairType, value: bytes) -> bytes:
    return struct.pack("<HH", av_type.value, len(value)) + value


def build_target_info(domain: str = "CORP", with_timestamp: bool = True) -> bytes:
    """Target info as a domain controller sends it."""
    info = av_pair(AVPairType.MsvAvNbDomainName, domain.encode("utf-16-le"))
    info += av_pair(AVPairType.MsvAvNbComputerName, b"M\x00X\x000\x001\x00")
    if with_timestamp:
        info += av_pair(AVPairType.MsvAvTimestamp, struct.pack("<Q", CHALLENGE_TIMESTAMP))
    return info + av_pair(AVPairType.MsvAvEOL, b"")


def build_challenge(domain: str = "CORP", with_timestamp: bool = True) -> ChallengeMessage:
    return ChallengeMessage(
        negotiate_flags=NegotiateFlags.default_challenge_flags(),
        server_challenge=SERVER_CHALLENGE,
        target_name=domain,
        target_info=build_target_info(domain, with_timestamp),
    )


def challenge_header(challenge: ChallengeMessage) -> str:
    return encode_token(challenge.to_bytes())


# =============================================================================
# SERVER STUBS
# =============================================================================


class NtlmServer:
    """
    MockTransport handler playing an NTLM-protected endpoint.

    Answers the NEGOTIATE token with a 401 challenge and any other request
    with the configured final response.
    """

    def __init__(
        self,
        final_status: int = 200,
        final_body: str = "<ok/>",
        challenge: Optional[str] = CHALLENGE_HEADER,
        final: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        self.final_status = final_status
        self.final_body = final_body
        self.challenge = challenge
        self.final = final
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") == TYPE1_TOKEN:
            headers = {"WWW-Authenticate": self.challenge} if self.challenge else {}
            return httpx.Response(401, headers=headers, text="challenge")
        if self.final is not None:
            return self.final(request)
        return httpx.Response(
            self.final_status,
            headers={"Content-Type": "text/xml"},
            text=self.final_body,
        )


def chunked(*chunks: bytes, error: Optional[Exception] = None):
    """Async body yielding chunks, optionally failing afterwards."""

    async def body():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    return body()


# =============================================================================
# TRANSPORT FIXTURES
# =============================================================================


@pytest.fixture
def ntlm_config() -> NtlmConfig:
    return NtlmConfig(username="corp\\jdoe", password="secret", workstation="WS01")


@pytest.fixture
def ntlm_server() -> NtlmServer:
    return NtlmServer()


@pytest.fixture
def ntlm_api(ntlm_config: NtlmConfig, codec: RecordingCodec, ntlm_server: NtlmServer) -> NtlmAuthXhrApi:
    """NTLM XHR API talking to the stub server."""
    return NtlmAuthXhrApi(
        config=ntlm_config,
        codec=codec,
        transport=httpx.MockTransport(ntlm_server),
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials.parse("corp\\jdoe", "secret")


@pytest.fixture
def post_options() -> RequestOptions:
    return RequestOptions(
        url=EWS_URL,
        method="POST",
        headers={"Content-Type": "text/xml; charset=utf-8"},
        data="<soap:Envelope/>",
    )


def make_proxy_api(
    handler: Callable[[httpx.Request], Any],
    config: Optional[ProxyConfig] = None,
) -> ProxySupportedXhrApi:
    """Proxy XHR API whose engine is a MockTransport around handler."""
    return ProxySupportedXhrApi(
        config=config or ProxyConfig(),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def proxy_api_factory() -> Callable[..., ProxySupportedXhrApi]:
    return make_proxy_api


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real NTLM-protected server"
    )
