"""
ewstransport Core Types

Value types shared by both transport variants: request options, parsed
credentials, the canonical response record and stream progress events.

Design Principles:
- Immutable: request options are frozen, every pipeline stage returns a
  new value through attrs.evolve
- Copied headers: a header mapping is never shared between two options
- One result shape: success and failure both produce a CanonicalResponse
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, ClassVar, Dict, Optional, Union

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class HttpMethod(str, Enum):
    """HTTP verbs accepted by the XHR APIs."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"

    @classmethod
    def parse(cls, value: Union[str, "HttpMethod"]) -> "HttpMethod":
        """Accept a member or a verb name in any case."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unsupported HTTP method: {value!r}") from None


class ProgressKind(Enum):
    """Progress event tags."""

    HEADER = auto()
    DATA = auto()
    END = auto()
    ERROR = auto()


# =============================================================================
# REQUEST OPTIONS
# =============================================================================


Payload = Union[bytes, str]


@attrs.define(frozen=True, slots=True)
class RequestOptions:
    """
    One outgoing request.

    Header names keep the case they were supplied with; the NTLM server
    side compares header names case-sensitively.
    """

    url: str = field(validator=validators.instance_of(str))
    method: HttpMethod = field(default=HttpMethod.GET, converter=HttpMethod.parse)
    headers: Dict[str, str] = field(factory=dict, converter=dict)
    data: Optional[Payload] = None
    workstation: Optional[str] = None
    proxy: Optional[str] = None
    allow_untrusted_certificate: bool = False
    follow_redirect: bool = True

    def with_header(self, name: str, value: str) -> "RequestOptions":
        """Return a copy with one header set."""
        headers = dict(self.headers)
        headers[name] = value
        return attrs.evolve(self, headers=headers)

    def without_headers(self, *names: str) -> "RequestOptions":
        """Return a copy with the exact-case header names removed."""
        headers = {k: v for k, v in self.headers.items() if k not in names}
        return attrs.evolve(self, headers=headers)


# =============================================================================
# CREDENTIALS
# =============================================================================


DOMAIN_SEPARATOR = "\\"


@attrs.define(frozen=True, slots=True)
class Credentials:
    """
    NTLM credentials.

    INVARIANT: username and password are never None
    INVARIANT: domain is upper-case, empty when the username carries none
    """

    username: str = field(default="", converter=lambda v: v or "")
    password: str = field(default="", converter=lambda v: v or "", repr=False)
    domain: str = field(default="", converter=lambda v: (v or "").upper())

    @classmethod
    def parse(cls, username: Optional[str], password: Optional[str]) -> "Credentials":
        """
        Split a DOMAIN\\user login into its parts.

        Examples:
            "corp\\jdoe" -> Credentials(username="jdoe", domain="CORP")
            "jdoe"       -> Credentials(username="jdoe", domain="")
        """
        username = username or ""
        if username.find(DOMAIN_SEPARATOR) > 0:
            domain, _, user = username.partition(DOMAIN_SEPARATOR)
            return cls(username=user, password=password, domain=domain)
        return cls(username=username, password=password)


# =============================================================================
# CANONICAL RESPONSE
# =============================================================================


@attrs.define(frozen=True, slots=True)
class CanonicalResponse:
    """
    Normalized result of a transport call.

    Used for both outcomes. Success is exactly status == 200; any other
    status, or no status at all, is a rejection with this same shape.
    """

    response: str = ""
    status: Optional[int] = None
    headers: Dict[str, str] = field(factory=dict, converter=dict)
    final_url: Optional[str] = None
    response_type: str = ""
    status_text: Optional[str] = None
    redirect_count: int = 0
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True only for status 200."""
        return self.status == 200

    def get_response_header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


# =============================================================================
# PROGRESS EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class HeaderReceived:
    """Response metadata arrived."""

    kind: ClassVar[ProgressKind] = ProgressKind.HEADER

    headers: Dict[str, str] = field(factory=dict, converter=dict)
    status: Optional[int] = None


@attrs.define(frozen=True, slots=True)
class DataChunk:
    """One chunk of the response body, decoded to text."""

    kind: ClassVar[ProgressKind] = ProgressKind.DATA

    data: str


@attrs.define(frozen=True, slots=True)
class StreamEnded:
    """The stream closed gracefully."""

    kind: ClassVar[ProgressKind] = ProgressKind.END


@attrs.define(frozen=True, slots=True)
class StreamErrored:
    """The stream failed."""

    kind: ClassVar[ProgressKind] = ProgressKind.ERROR

    error: Any


ProgressEvent = Union[HeaderReceived, DataChunk, StreamEnded, StreamErrored]

TERMINAL_KINDS = frozenset({ProgressKind.END, ProgressKind.ERROR})


def is_terminal(event: ProgressEvent) -> bool:
    """True for the events that end a stream."""
    return event.kind in TERMINAL_KINDS
