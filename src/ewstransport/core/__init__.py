"""
ewstransport Core Module

Foundational types shared by both transport variants.

Components:
- types: Request options, credentials, canonical response, progress events
- response: Response normalizer and error mapper
- config: Variant configuration
- exceptions: Custom exception types
"""

from ewstransport.core.types import (
    HttpMethod,
    RequestOptions,
    Credentials,
    CanonicalResponse,
    ProgressKind,
    ProgressEvent,
    HeaderReceived,
    DataChunk,
    StreamEnded,
    StreamErrored,
)
from ewstransport.core.response import normalize_response, response_from_httpx, map_error
from ewstransport.core.config import NtlmConfig, ProxyConfig
from ewstransport.core.exceptions import (
    EwsTransportError,
    CodecError,
    XhrError,
    NetworkError,
    StatusError,
    StreamError,
    PreCallError,
    HandshakeError,
    ChallengeMissingError,
)

__all__ = [
    # Types
    "HttpMethod",
    "RequestOptions",
    "Credentials",
    "CanonicalResponse",
    "ProgressKind",
    "ProgressEvent",
    "HeaderReceived",
    "DataChunk",
    "StreamEnded",
    "StreamErrored",
    # Normalization
    "normalize_response",
    "response_from_httpx",
    "map_error",
    # Configuration
    "NtlmConfig",
    "ProxyConfig",
    # Exceptions
    "EwsTransportError",
    "CodecError",
    "XhrError",
    "NetworkError",
    "StatusError",
    "StreamError",
    "PreCallError",
    "HandshakeError",
    "ChallengeMissingError",
]
