"""
ewstransport - Interchangeable HTTP transports for an EWS client

Two variants share one capability contract (XhrApi):
- NtlmAuthXhrApi: transparent NTLM challenge/response authentication
- ProxySupportedXhrApi: forward proxy with optional credentials and an
  optional pre-call hook

Both offer a buffered call (xhr) and a streaming call (xhr_stream), and
report every failure as an XhrError carrying a CanonicalResponse.

Example Usage:
    from ewstransport import NtlmAuthXhrApi, NtlmConfig, RequestOptions

    api = NtlmAuthXhrApi(NtlmConfig(username="CORP\\jdoe", password="secret"))
    async with api:
        response = await api.xhr(RequestOptions(
            url="https://mail.example.com/EWS/Exchange.asmx",
            method="POST",
            headers={"Content-Type": "text/xml; charset=utf-8"},
            data=soap_envelope,
        ))
        print(response.status, response.response)
"""

from ewstransport.core.types import (
    HttpMethod,
    RequestOptions,
    Credentials,
    CanonicalResponse,
    ProgressKind,
    HeaderReceived,
    DataChunk,
    StreamEnded,
    StreamErrored,
)
from ewstransport.core.config import NtlmConfig, ProxyConfig
from ewstransport.core.exceptions import (
    EwsTransportError,
    XhrError,
    NetworkError,
    StatusError,
    StreamError,
    PreCallError,
    HandshakeError,
    ChallengeMissingError,
)
from ewstransport.transport import (
    XhrApi,
    NtlmAuthXhrApi,
    ProxySupportedXhrApi,
    PreCallProvider,
    compose_proxy_url,
    create_ntlm_xhr_api,
    create_proxy_xhr_api,
)

__version__ = "0.1.0"

__all__ = [
    # Main API
    "XhrApi",
    "NtlmAuthXhrApi",
    "ProxySupportedXhrApi",
    "PreCallProvider",
    "create_ntlm_xhr_api",
    "create_proxy_xhr_api",
    "compose_proxy_url",
    # Configuration
    "NtlmConfig",
    "ProxyConfig",
    # Types
    "HttpMethod",
    "RequestOptions",
    "Credentials",
    "CanonicalResponse",
    "ProgressKind",
    "HeaderReceived",
    "DataChunk",
    "StreamEnded",
    "StreamErrored",
    # Exceptions
    "EwsTransportError",
    "XhrError",
    "NetworkError",
    "StatusError",
    "StreamError",
    "PreCallError",
    "HandshakeError",
    "ChallengeMissingError",
    # Metadata
    "__version__",
]
