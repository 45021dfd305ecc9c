"""
ewstransport Transport Layer

Interchangeable XHR APIs for the EWS client.

Components:
- base: XhrApi capability protocol
- channel: Single-consumer progress event channel
- engine: httpx client construction, buffered fetch, stream pumping
- ntlm_xhr: NTLM-authenticating variant
- proxy_xhr: Proxy-capable variant with pre-call hook
"""

from ewstransport.transport.base import XhrApi, ProgressDelegate
from ewstransport.transport.channel import ProgressChannel
from ewstransport.transport.ntlm_xhr import NtlmAuthXhrApi, create_ntlm_xhr_api
from ewstransport.transport.proxy_xhr import (
    ProxySupportedXhrApi,
    PreCallProvider,
    compose_proxy_url,
    create_proxy_xhr_api,
)

__all__ = [
    # Protocol
    "XhrApi",
    "ProgressDelegate",
    "ProgressChannel",
    # NTLM variant
    "NtlmAuthXhrApi",
    "create_ntlm_xhr_api",
    # Proxy variant
    "ProxySupportedXhrApi",
    "PreCallProvider",
    "compose_proxy_url",
    "create_proxy_xhr_api",
]
