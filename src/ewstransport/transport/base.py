"""
ewstransport XHR API Protocol

The capability contract both transport variants implement. A caller picks
a variant at construction time and uses it only through this protocol.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from ewstransport.core.types import CanonicalResponse, ProgressEvent, RequestOptions


ProgressDelegate = Callable[[ProgressEvent], None]


@runtime_checkable
class XhrApi(Protocol):
    """
    Transport capability contract.

    - api_name: constant naming the variant ("ntlm" or "proxy")
    - xhr: one buffered request; returns on status 200, raises XhrError otherwise
    - xhr_stream: streaming request; returns when the stream ends, raises on error
    - disconnect: tear down the active stream; never raises
    """

    @property
    def api_name(self) -> str:
        ...

    async def xhr(
        self,
        options: RequestOptions,
        progress_delegate: Optional[ProgressDelegate] = None,
    ) -> CanonicalResponse:
        ...

    async def xhr_stream(
        self,
        options: RequestOptions,
        progress_delegate: ProgressDelegate,
    ) -> None:
        ...

    def disconnect(self) -> None:
        ...
