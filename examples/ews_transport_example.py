#!/usr/bin/env python3
"""
EWS Transport Example

Demonstrates the two interchangeable XHR APIs against an in-process stub
server, so it runs without an Exchange deployment.

Features:
1. NTLM-authenticated buffered request
2. Status rejection with the canonical response attached
3. Proxy variant with a pre-call hook
4. Streaming with progress events
"""

import asyncio
import struct
import time

import attrs
import httpx

from ewstransport import (
    NtlmAuthXhrApi,
    NtlmConfig,
    ProxyConfig,
    ProxySupportedXhrApi,
    RequestOptions,
    StatusError,
    XhrError,
)
from ewstransport.ntlm import AVPairType, ChallengeMessage, NegotiateFlags
from ewstransport.ntlm.codec import encode_token


EWS_URL = "https://mail.example.com/EWS/Exchange.asmx"

SOAP_ENVELOPE = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
    "<soap:Body/></soap:Envelope>"
)


def target_info(domain: str) -> bytes:
    """AV pairs naming the domain, stamped with the current time."""
    filetime = int((time.time() + 11644473600) * 10_000_000)
    pairs = [
        (AVPairType.MsvAvNbDomainName, domain.encode("utf-16-le")),
        (AVPairType.MsvAvTimestamp, struct.pack("<Q", filetime)),
        (AVPairType.MsvAvEOL, b""),
    ]
    return b"".join(struct.pack("<HH", t.value, len(v)) + v for t, v in pairs)


def stub_exchange(request: httpx.Request) -> httpx.Response:
    """Answer NEGOTIATE with a challenge and anything else with a SOAP body."""
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("NTLM ") and request.headers.get("Connection") == "keep-alive":
        challenge = ChallengeMessage(
            negotiate_flags=NegotiateFlags.default_challenge_flags(),
            server_challenge=b"\x01\x23\x45\x67\x89\xab\xcd\xef",
            target_name="CORP",
            target_info=target_info("CORP"),
        )
        return httpx.Response(401, headers={"WWW-Authenticate": encode_token(challenge.to_bytes())})
    if request.url.path.endswith("/missing"):
        return httpx.Response(404, text="not here")
    return httpx.Response(200, headers={"Content-Type": "text/xml"}, text="<soap:Envelope/>")


class TokenProvider:
    """Pre-call hook adding a bearer token."""

    async def pre_call(self, options: RequestOptions) -> RequestOptions:
        return options.with_header("Authorization", "Bearer example-token")


async def main():
    """Demonstrate both transport variants."""

    print("=" * 70)
    print("ewstransport - NTLM and proxy XHR APIs")
    print("=" * 70)
    print()

    request = RequestOptions(
        url=EWS_URL,
        method="POST",
        headers={"Content-Type": "text/xml; charset=utf-8"},
        data=SOAP_ENVELOPE,
    )

    # ==========================================================================
    # EXAMPLE 1: NTLM buffered request
    # ==========================================================================
    print("1. NTLM buffered request")
    print("-" * 40)

    ntlm = NtlmAuthXhrApi(
        config=NtlmConfig(username="CORP\\jdoe", password="secret", workstation="WS01"),
        transport=httpx.MockTransport(stub_exchange),
    )
    async with ntlm:
        print(f"   API: {ntlm.api_name}")
        print(f"   Domain: {ntlm.credentials.domain}")
        try:
            response = await ntlm.xhr(request)
            print(f"   Status: {response.status}")
            print(f"   Body: {response.response}")
        except XhrError as e:
            print(f"   Rejected ({type(e).__name__}): {e.message}")
        print()

        # ======================================================================
        # EXAMPLE 2: Rejection
        # ======================================================================
        print("2. Non-200 status")
        print("-" * 40)

        try:
            await ntlm.xhr(attrs.evolve(request, url=EWS_URL + "/missing"))
        except StatusError as e:
            print(f"   Rejected with {e.response.status}: {e.response.response}")
        except XhrError as e:
            print(f"   Failed before the request ({type(e).__name__}): {e.message}")
        print()

    # ==========================================================================
    # EXAMPLE 3: Proxy variant with a pre-call hook
    # ==========================================================================
    print("3. Proxy variant")
    print("-" * 40)

    proxy = ProxySupportedXhrApi(
        config=ProxyConfig(proxy_url="http://proxy.corp:8080", user="svc", password="pw"),
        transport=httpx.MockTransport(stub_exchange),
    )
    proxy.set_provider(TokenProvider())
    async with proxy:
        response = await proxy.xhr(request)
        print(f"   Status: {response.status} {response.status_text}")

        # ======================================================================
        # EXAMPLE 4: Streaming
        # ======================================================================
        print()
        print("4. Streaming")
        print("-" * 40)

        await proxy.xhr_stream(request, lambda event: print(f"   {event.kind.name}: {event}"))

    print()
    print("=" * 70)
    print("Done")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())
