"""
ewstransport NTLM Module

NTLM over HTTP (MS-NLMP with the NTLM WWW-Authenticate scheme).

Components:
- types: CHALLENGE structure, flags, AV pairs and handshake states
- codec: Token codec protocol and the pyspnego-backed default
- handshake: Challenge/response orchestration ahead of a request

WARNING: NTLM is weak by design (pass-the-hash, relay, no mutual
authentication). It is supported here because Exchange deployments still
require it.
"""

from ewstransport.ntlm.types import (
    HandshakeState,
    NegotiateFlags,
    ChallengeMessage,
    AVPair,
    AVPairType,
)
from ewstransport.ntlm.codec import NTLMCodec, MessageCodec, DecodedChallenge
from ewstransport.ntlm.handshake import (
    NTLMHandshake,
    HandshakeContext,
    create_handshake,
)

__all__ = [
    # Messages
    "HandshakeState",
    "NegotiateFlags",
    "ChallengeMessage",
    "AVPair",
    "AVPairType",
    # Codec
    "NTLMCodec",
    "MessageCodec",
    "DecodedChallenge",
    # Handshake
    "NTLMHandshake",
    "HandshakeContext",
    "create_handshake",
]
