"""
Unit tests for ewstransport.transport.ntlm_xhr module.

Tests the NTLM-authenticating transport against a MockTransport server.
"""

import base64
import struct

import anyio
import httpx
import pytest

from ewstransport.core.config import NtlmConfig
from ewstransport.core.exceptions import (
    ChallengeMissingError,
    NetworkError,
    StatusError,
    StreamError,
)
from ewstransport.core.types import (
    DataChunk,
    HeaderReceived,
    HttpMethod,
    RequestOptions,
    StreamEnded,
    StreamErrored,
)
from ewstransport.ntlm.codec import MessageCodec
from ewstransport.transport.base import XhrApi
from ewstransport.transport.ntlm_xhr import (
    NTLM_API_NAME,
    NtlmAuthXhrApi,
    create_ntlm_xhr_api,
)
from tests.conftest import (
    CHALLENGE_HEADER,
    EWS_URL,
    TYPE1_TOKEN,
    TYPE3_TOKEN,
    NtlmServer,
    chunked,
    build_challenge,
    challenge_header,
)

pytestmark = pytest.mark.anyio


def _api(server: NtlmServer, ntlm_config, codec) -> NtlmAuthXhrApi:
    return NtlmAuthXhrApi(
        config=ntlm_config,
        codec=codec,
        transport=httpx.MockTransport(server),
    )


class TestConstruction:
    """Tests for NtlmAuthXhrApi construction."""

    def test_api_name(self, ntlm_api):
        assert ntlm_api.api_name == NTLM_API_NAME == "ntlm"

    def test_implements_protocol(self, ntlm_api):
        assert isinstance(ntlm_api, XhrApi)

    def test_credentials_parsed(self, ntlm_api):
        assert ntlm_api.credentials.domain == "CORP"
        assert ntlm_api.credentials.username == "jdoe"
        assert ntlm_api.credentials.password == "secret"

    def test_password_not_in_repr(self, ntlm_api):
        assert "secret" not in repr(ntlm_api)

    def test_factory(self):
        api = create_ntlm_xhr_api("jdoe", "secret", workstation="WS09")
        assert api.credentials.domain == ""
        assert api.config.workstation == "WS09"
        assert isinstance(api.codec, MessageCodec)


class TestXhr:
    """Tests for NtlmAuthXhrApi.xhr."""

    async def test_success(self, ntlm_api, ntlm_server, post_options):
        response = await ntlm_api.xhr(post_options)

        assert response.status == 200
        assert response.response == "<ok/>"
        assert response.get_response_header("Content-Type") == "text/xml"
        assert response.final_url == EWS_URL
        assert response.response_type == ""
        assert len(ntlm_server.requests) == 2

    async def test_challenge_leg_is_bodyless_get(self, ntlm_api, ntlm_server, post_options):
        await ntlm_api.xhr(post_options)

        first = ntlm_server.requests[0]
        assert first.method == "GET"
        assert first.content == b""
        assert first.headers["Authorization"] == TYPE1_TOKEN
        assert first.headers["Connection"] == "keep-alive"

    async def test_final_request_restores_method_and_payload(
        self, ntlm_api, ntlm_server, post_options
    ):
        await ntlm_api.xhr(post_options)

        final = ntlm_server.requests[1]
        assert final.method == "POST"
        assert final.content == b"<soap:Envelope/>"
        assert final.headers["Authorization"] == TYPE3_TOKEN
        assert final.headers["Connection"] == "Close"
        assert final.headers["Content-Type"] == "text/xml; charset=utf-8"

    async def test_redirect_followed_and_counted(self, ntlm_config, codec, post_options):
        moved = "https://mail.example.com/EWS/moved"

        def final(request):
            if str(request.url) == moved:
                return httpx.Response(200, text="<moved/>")
            return httpx.Response(302, headers={"Location": moved})

        api = _api(NtlmServer(final=final), ntlm_config, codec)
        response = await api.xhr(post_options)

        assert response.redirect_count == 1
        assert response.final_url == moved
        assert response.response == "<moved/>"

    async def test_get_request(self, ntlm_api, ntlm_server):
        await ntlm_api.xhr(RequestOptions(url=EWS_URL, method=HttpMethod.GET))
        assert [r.method for r in ntlm_server.requests] == ["GET", "GET"]

    async def test_options_workstation_used(self, ntlm_api, codec):
        await ntlm_api.xhr(RequestOptions(url=EWS_URL, workstation="KIOSK"))
        assert codec.calls[0] == ("type1", "KIOSK", "CORP")

    async def test_config_workstation_default(self, ntlm_api, codec):
        await ntlm_api.xhr(RequestOptions(url=EWS_URL))
        assert codec.calls[0] == ("type1", "WS01", "CORP")

    @pytest.mark.parametrize("status", [201, 204, 403, 500])
    async def test_non_200_rejected(self, ntlm_config, codec, post_options, status):
        server = NtlmServer(final_status=status, final_body="denied")
        api = _api(server, ntlm_config, codec)

        with pytest.raises(StatusError) as exc_info:
            await api.xhr(post_options)

        assert exc_info.value.response.status == status
        assert exc_info.value.code == status

    async def test_rejection_carries_body(self, ntlm_config, codec, post_options):
        server = NtlmServer(final_status=500, final_body="<fault/>")
        api = _api(server, ntlm_config, codec)

        with pytest.raises(StatusError) as exc_info:
            await api.xhr(post_options)

        assert exc_info.value.response.response == "<fault/>"

    async def test_challenge_missing(self, ntlm_config, codec, post_options):
        server = NtlmServer(challenge=None)
        api = _api(server, ntlm_config, codec)

        with pytest.raises(ChallengeMissingError) as exc_info:
            await api.xhr(post_options)

        assert exc_info.value.response.status == 401
        assert len(server.requests) == 1
        assert not codec.called("type3")

    async def test_network_error(self, ntlm_config, codec, post_options):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = NtlmAuthXhrApi(
            config=ntlm_config,
            codec=codec,
            transport=httpx.MockTransport(refuse),
        )

        with pytest.raises(NetworkError) as exc_info:
            await api.xhr(post_options)

        assert exc_info.value.response.status is None
        assert exc_info.value.response.final_url == EWS_URL

    async def test_network_error_on_final_request(self, ntlm_config, codec, post_options):
        def drop(request):
            raise httpx.ReadError("connection reset", request=request)

        api = _api(NtlmServer(final=drop), ntlm_config, codec)

        with pytest.raises(NetworkError):
            await api.xhr(post_options)

        assert codec.called("type3")


class TestConcurrentXhr:
    """Two requests in flight on one NTLM API."""

    async def test_both_calls_authenticate(self, ntlm_config, codec):
        requests = []

        async def handler(request):
            requests.append(request)
            if request.headers.get("Authorization") == TYPE1_TOKEN:
                await anyio.sleep(0)
                return httpx.Response(401, headers={"WWW-Authenticate": CHALLENGE_HEADER})
            await anyio.sleep(0.01)
            return httpx.Response(200, text=request.content.decode())

        api = NtlmAuthXhrApi(
            config=ntlm_config,
            codec=codec,
            transport=httpx.MockTransport(handler),
        )
        results = {}

        async def send(body):
            options = RequestOptions(url=EWS_URL, method="POST", data=body)
            results[body] = await api.xhr(options)

        async with api:
            async with anyio.create_task_group() as tg:
                tg.start_soon(send, "<first/>")
                tg.start_soon(send, "<second/>")

        assert results["<first/>"].response == "<first/>"
        assert results["<second/>"].response == "<second/>"
        assert len(requests) == 4
        finals = [r for r in requests if r.method == "POST"]
        assert [r.headers["Authorization"] for r in finals] == [TYPE3_TOKEN, TYPE3_TOKEN]


class TestDefaultCodec:
    """End-to-end exchange with the built-in codec."""

    async def test_answers_server_challenge(self, post_options):
        requests = []

        def handler(request):
            requests.append(request)
            if request.headers.get("Connection") == "keep-alive":
                return httpx.Response(
                    401, headers={"WWW-Authenticate": challenge_header(build_challenge())}
                )
            return httpx.Response(200, text="<ok/>")

        api = NtlmAuthXhrApi(
            config=NtlmConfig("corp\\jdoe", "pw"),
            transport=httpx.MockTransport(handler),
        )
        async with api:
            response = await api.xhr(post_options)

        assert response.status == 200
        assert len(requests) == 2

        negotiate = base64.b64decode(requests[0].headers["Authorization"][5:])
        authenticate = base64.b64decode(requests[1].headers["Authorization"][5:])
        assert struct.unpack_from("<I", negotiate, 8)[0] == 1
        assert struct.unpack_from("<I", authenticate, 8)[0] == 3
        assert requests[1].headers["Connection"] == "Close"


class TestStream:
    """Tests for NtlmAuthXhrApi streaming."""

    async def test_event_sequence(self, ntlm_config, codec, post_options):
        server = NtlmServer(
            final=lambda request: httpx.Response(
                200,
                headers={"Content-Type": "text/xml"},
                content=chunked(b"chunk1", b"chunk2"),
            )
        )
        api = _api(server, ntlm_config, codec)
        events = []

        await api.xhr_stream(post_options, events.append)

        assert [type(e) for e in events] == [HeaderReceived, DataChunk, DataChunk, StreamEnded]
        assert events[0].status == 200
        assert events[0].headers["content-type"] == "text/xml"
        assert [e.data for e in events[1:3]] == ["chunk1", "chunk2"]

    async def test_stream_authenticated(self, ntlm_config, codec, post_options):
        server = NtlmServer(
            final=lambda request: httpx.Response(200, content=chunked(b"x"))
        )
        api = _api(server, ntlm_config, codec)

        await api.xhr_stream(post_options, lambda event: None)

        assert server.requests[0].method == "GET"
        assert server.requests[1].method == "POST"
        assert server.requests[1].headers["Authorization"] == TYPE3_TOKEN

    async def test_stream_error(self, ntlm_config, codec, post_options, monkeypatch):
        disconnects = []
        original = NtlmAuthXhrApi.disconnect

        def counting_disconnect(self):
            disconnects.append(self)
            original(self)

        monkeypatch.setattr(NtlmAuthXhrApi, "disconnect", counting_disconnect)

        server = NtlmServer(
            final=lambda request: httpx.Response(
                200,
                content=chunked(b"chunk1", error=httpx.ReadError("connection reset")),
            )
        )
        api = _api(server, ntlm_config, codec)
        events = []

        with pytest.raises(StreamError) as exc_info:
            await api.xhr_stream(post_options, events.append)

        assert [type(e) for e in events] == [HeaderReceived, DataChunk, StreamErrored]
        assert isinstance(events[-1].error, httpx.ReadError)
        assert len(disconnects) == 1
        assert exc_info.value.response.message == "connection reset"
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)

    async def test_abandoned_iteration(self, ntlm_config, codec, post_options):
        server = NtlmServer(
            final=lambda request: httpx.Response(200, content=chunked(b"a", b"b", b"c"))
        )
        api = _api(server, ntlm_config, codec)

        stream = api.stream(post_options)
        first = await stream.__anext__()
        await stream.aclose()

        assert isinstance(first, HeaderReceived)
        assert api._stream.closed


class TestDisconnect:
    """Tests for disconnect and resource release."""

    def test_disconnect_without_stream(self, ntlm_api):
        ntlm_api.disconnect()

    async def test_disconnect_twice(self, ntlm_config, codec, post_options):
        server = NtlmServer(final=lambda request: httpx.Response(200, content=chunked(b"x")))
        api = _api(server, ntlm_config, codec)
        await api.xhr_stream(post_options, lambda event: None)

        api.disconnect()
        api.disconnect()

    async def test_aclose(self, ntlm_api):
        await ntlm_api.aclose()
        assert ntlm_api._client.is_closed

    async def test_context_manager(self, ntlm_config, codec, ntlm_server, post_options):
        async with _api(ntlm_server, ntlm_config, codec) as api:
            response = await api.xhr(post_options)
        assert response.ok
        assert api._client.is_closed
