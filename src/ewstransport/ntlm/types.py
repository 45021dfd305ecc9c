"""
ewstransport NTLM Types

NTLM structures per MS-NLMP, as carried in HTTP Authorization /
WWW-Authenticate headers.

NEGOTIATE and AUTHENTICATE messages are produced by pyspnego. Only the
server's CHALLENGE (type 2) is modeled here, to validate it before it is
answered and to build challenges in tests.
"""

from __future__ import annotations

import struct
from enum import Enum, Flag, auto
from typing import List, Optional

import attrs
from attrs import field


# =============================================================================
# HANDSHAKE STATE
# =============================================================================


class HandshakeState(Enum):
    """Stages of one HTTP NTLM handshake, as reported in its log events."""

    INITIAL = auto()
    NEGOTIATE_SENT = auto()
    CHALLENGE_RECEIVED = auto()
    AUTHENTICATE_READY = auto()


# =============================================================================
# NTLM FLAGS
# =============================================================================


class NegotiateFlags(Flag):
    """NTLM negotiate flags per MS-NLMP 2.2.2.5."""

    NEGOTIATE_UNICODE = 0x00000001
    NEGOTIATE_OEM = 0x00000002
    REQUEST_TARGET = 0x00000004
    NEGOTIATE_SIGN = 0x00000010
    NEGOTIATE_SEAL = 0x00000020
    NEGOTIATE_LM_KEY = 0x00000080
    NEGOTIATE_NTLM = 0x00000200
    NEGOTIATE_OEM_DOMAIN_SUPPLIED = 0x00001000
    NEGOTIATE_OEM_WORKSTATION_SUPPLIED = 0x00002000
    NEGOTIATE_ALWAYS_SIGN = 0x00008000
    TARGET_TYPE_DOMAIN = 0x00010000
    TARGET_TYPE_SERVER = 0x00020000
    NEGOTIATE_EXTENDED_SESSIONSECURITY = 0x00080000
    NEGOTIATE_TARGET_INFO = 0x00800000
    NEGOTIATE_VERSION = 0x02000000
    NEGOTIATE_128 = 0x20000000
    NEGOTIATE_KEY_EXCH = 0x40000000
    NEGOTIATE_56 = 0x80000000

    @classmethod
    def default_challenge_flags(cls) -> int:
        """Flags a Windows server typically answers an NTLMv2 NEGOTIATE with."""
        return (
            cls.NEGOTIATE_UNICODE.value
            | cls.REQUEST_TARGET.value
            | cls.NEGOTIATE_SIGN.value
            | cls.NEGOTIATE_SEAL.value
            | cls.NEGOTIATE_NTLM.value
            | cls.NEGOTIATE_ALWAYS_SIGN.value
            | cls.TARGET_TYPE_DOMAIN.value
            | cls.NEGOTIATE_EXTENDED_SESSIONSECURITY.value
            | cls.NEGOTIATE_TARGET_INFO.value
            | cls.NEGOTIATE_VERSION.value
            | cls.NEGOTIATE_128.value
            | cls.NEGOTIATE_KEY_EXCH.value
            | cls.NEGOTIATE_56.value
        )


# =============================================================================
# AV PAIR STRUCTURES
# =============================================================================


class AVPairType(Enum):
    """AV_PAIR identifiers per MS-NLMP 2.2.2.1."""

    MsvAvEOL = 0x0000
    MsvAvNbComputerName = 0x0001
    MsvAvNbDomainName = 0x0002
    MsvAvDnsComputerName = 0x0003
    MsvAvDnsDomainName = 0x0004
    MsvAvDnsTreeName = 0x0005
    MsvAvFlags = 0x0006
    MsvAvTimestamp = 0x0007
    MsvAvSingleHost = 0x0008
    MsvAvTargetName = 0x0009
    MsvAvChannelBindings = 0x000A


@attrs.define(frozen=True, slots=True)
class AVPair:
    """One AV_PAIR entry of the challenge target info."""

    av_id: int
    av_value: bytes

    @property
    def known_type(self) -> Optional[AVPairType]:
        try:
            return AVPairType(self.av_id)
        except ValueError:
            return None


def parse_av_pairs(data: bytes) -> List[AVPair]:
    """Parse target info into AV_PAIRs, stopping at MsvAvEOL."""
    pairs: List[AVPair] = []
    offset = 0

    while offset + 4 <= len(data):
        av_id, av_len = struct.unpack_from("<HH", data, offset)
        offset += 4
        if offset + av_len > len(data):
            raise ValueError(f"AV_PAIR value truncated: need {av_len}, have {len(data) - offset}")
        if av_id == AVPairType.MsvAvEOL.value:
            break
        pairs.append(AVPair(av_id=av_id, av_value=data[offset : offset + av_len]))
        offset += av_len

    return pairs


def find_av_pair(data: bytes, av_type: AVPairType) -> Optional[bytes]:
    """Return the value of the first AV_PAIR of the given type."""
    for pair in parse_av_pairs(data):
        if pair.av_id == av_type.value:
            return pair.av_value
    return None


# =============================================================================
# NTLM MESSAGES
# =============================================================================


NTLM_SIGNATURE = b"NTLMSSP\x00"


def _security_buffer(length: int, offset: int) -> bytes:
    """Len, MaxLen, BufferOffset."""
    return struct.pack("<HHI", length, length, offset)


def _read_buffer(data: bytes, at: int) -> bytes:
    length, _, offset = struct.unpack_from("<HHI", data, at)
    if offset + length > len(data):
        raise ValueError("Security buffer points past end of message")
    return data[offset : offset + length]


def _check_header(data: bytes, expected_type: int, min_length: int) -> None:
    if len(data) < min_length:
        raise ValueError(f"NTLM type {expected_type} message too short")
    if data[:8] != NTLM_SIGNATURE:
        raise ValueError("Invalid NTLM signature")
    msg_type = struct.unpack_from("<I", data, 8)[0]
    if msg_type != expected_type:
        raise ValueError(f"Expected type {expected_type}, got {msg_type}")


# Windows 10 / Server 2019, NTLM revision 15
SERVER_VERSION = struct.pack("<BBH3xB", 10, 0, 17763, 15)


@attrs.define(frozen=True, slots=True)
class ChallengeMessage:
    """
    NTLM CHALLENGE_MESSAGE (Type 2).

    Server -> Client. Carries the 8-byte server challenge and the target
    info AV_PAIRs the NTLMv2 response is computed over.
    """

    negotiate_flags: int = 0
    server_challenge: bytes = field(factory=lambda: b"\x00" * 8)
    target_name: str = ""
    target_info: bytes = b""
    version: Optional[bytes] = None

    @property
    def unicode(self) -> bool:
        return bool(self.negotiate_flags & NegotiateFlags.NEGOTIATE_UNICODE.value)

    @property
    def av_pairs(self) -> List[AVPair]:
        return parse_av_pairs(self.target_info)

    def to_bytes(self) -> bytes:
        """Serialize to wire format (used to build test fixtures)."""
        encoding = "utf-16-le" if self.unicode else "ascii"
        target_name = self.target_name.encode(encoding)

        version = b""
        if self.negotiate_flags & NegotiateFlags.NEGOTIATE_VERSION.value:
            version = (self.version or SERVER_VERSION)[:8].ljust(8, b"\x00")

        header_size = 48 + len(version)
        return (
            NTLM_SIGNATURE
            + struct.pack("<I", 2)
            + _security_buffer(len(target_name), header_size)
            + struct.pack("<I", self.negotiate_flags)
            + self.server_challenge[:8].ljust(8, b"\x00")
            + b"\x00" * 8
            + _security_buffer(len(self.target_info), header_size + len(target_name))
            + version
            + target_name
            + self.target_info
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "ChallengeMessage":
        """
        Parse from wire format.

        Raises:
            ValueError: Bad signature, wrong type, truncated buffers or
                malformed target info
        """
        _check_header(data, 2, 32)
        flags = struct.unpack_from("<I", data, 20)[0]
        encoding = "utf-16-le" if flags & NegotiateFlags.NEGOTIATE_UNICODE.value else "ascii"
        target_name = _read_buffer(data, 12).decode(encoding, errors="replace")
        target_info = _read_buffer(data, 40) if len(data) >= 48 else b""
        version = None
        if flags & NegotiateFlags.NEGOTIATE_VERSION.value and len(data) >= 56:
            version = data[48:56]

        # Validated here so a malformed challenge fails before it is answered
        parse_av_pairs(target_info)

        return cls(
            negotiate_flags=flags,
            server_challenge=data[24:32],
            target_name=target_name,
            target_info=target_info,
            version=version,
        )
