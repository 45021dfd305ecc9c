"""
ewstransport Exception Types

Every failure surfaced by an XHR API is an XhrError carrying a
CanonicalResponse, so callers see one error shape regardless of which
transport variant produced it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ewstransport.core.types import CanonicalResponse


class EwsTransportError(Exception):
    """Base exception for all ewstransport errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class CodecError(EwsTransportError):
    """
    NTLM token could not be built or decoded.

    Raised by the message codec for malformed challenge headers or when a
    required hash primitive is unavailable on this interpreter.
    """

    pass


class XhrError(EwsTransportError):
    """
    A transport call was rejected.

    The canonical response is always attached, with whatever status,
    headers and body could be salvaged from the failure.
    """

    def __init__(self, response: "CanonicalResponse", message: Optional[str] = None) -> None:
        if message is None:
            message = response.message or response.status_text or f"HTTP status {response.status}"
        super().__init__(message, code=response.status)
        self.response = response


class NetworkError(XhrError):
    """
    The engine could not complete the exchange.

    DNS failure, refused connection, TLS failure and the like.
    """

    pass


class StatusError(XhrError):
    """The request completed with a status other than 200."""

    pass


class StreamError(XhrError):
    """A stream failed after it was opened. The stream is already disconnected."""

    pass


class PreCallError(XhrError):
    """The pre-call hook rejected the request options."""

    pass


class HandshakeError(XhrError):
    """The NTLM handshake could not produce a final authentication token."""

    pass


class ChallengeMissingError(HandshakeError):
    """
    The challenge leg returned no www-authenticate header.

    Fatal for the call; no retry is attempted.
    """

    pass
