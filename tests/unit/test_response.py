"""
Unit tests for ewstransport.core.response module.

Tests the response normalizer and the error mapper.
"""

import httpx

from ewstransport.core.response import (
    map_error,
    normalize_response,
    response_from_httpx,
    status_from_message,
)


class TestNormalizeResponse:
    """Tests for normalize_response."""

    def test_fields_carried(self):
        response = normalize_response(
            body="<ok/>",
            status=200,
            headers={"Content-Type": "text/xml"},
            final_url="https://example.com/final",
            status_text="OK",
            redirect_count=2,
        )
        assert response.response == "<ok/>"
        assert response.status == 200
        assert response.headers == {"content-type": "text/xml"}
        assert response.final_url == "https://example.com/final"
        assert response.status_text == "OK"
        assert response.redirect_count == 2
        assert response.response_type == ""

    def test_bytes_body_decoded(self):
        response = normalize_response(b"caf\xc3\xa9", 200, {}, None)
        assert response.response == "café"

    def test_none_body_is_empty(self):
        response = normalize_response(None, 204, None, None)
        assert response.response == ""
        assert response.headers == {}

    def test_does_not_decide_success(self):
        """Normalizing a 500 still produces a plain record."""
        response = normalize_response("boom", 500, {}, None)
        assert response.status == 500
        assert not response.ok


class TestResponseFromHttpx:
    """Tests for response_from_httpx."""

    def test_normalizes_httpx_response(self):
        request = httpx.Request("GET", "https://example.com/EWS")
        raw = httpx.Response(
            403,
            headers={"X-Trace": "abc"},
            text="denied",
            request=request,
        )
        response = response_from_httpx(raw)
        assert response.status == 403
        assert response.response == "denied"
        assert response.headers["x-trace"] == "abc"
        assert response.final_url == "https://example.com/EWS"
        assert response.status_text == "Forbidden"
        assert response.redirect_count == 0

    def test_reason_phrase_can_be_omitted(self):
        request = httpx.Request("GET", "https://example.com/EWS")
        raw = httpx.Response(200, text="ok", request=request)
        assert response_from_httpx(raw, with_reason=False).status_text is None


class TestStatusFromMessage:
    """Tests for trailing statusCode recovery."""

    def test_trailing_status(self):
        assert status_from_message("Request failed statusCode=404") == 404

    def test_status_not_trailing(self):
        assert status_from_message("statusCode=404 while connecting") is None

    def test_no_status(self):
        assert status_from_message("connection refused") is None
        assert status_from_message("") is None


class FailureWithResponse(Exception):
    """Error object carrying an embedded response, as proxy engines report."""

    def __init__(self, message, response=None, status_code=None, url=None):
        super().__init__(message)
        self.response = response
        self.status_code = status_code
        self.url = url


class EmbeddedResponse:
    def __init__(self, body, headers, status_code=None):
        self.body = body
        self.headers = headers
        self.status_code = status_code


class TestMapError:
    """Tests for the error mapper."""

    def test_status_recovered_from_message(self):
        mapped = map_error(Exception("tunneling socket could not be established, statusCode=404"))
        assert mapped.status == 404

    def test_plain_network_error_has_no_status(self):
        request = httpx.Request("GET", "https://example.com/EWS")
        error = httpx.ConnectError("connection refused", request=request)
        mapped = map_error(error)
        assert mapped.status is None
        assert mapped.response == ""
        assert mapped.headers == {}
        assert mapped.final_url == "https://example.com/EWS"
        assert mapped.message == "connection refused"
        assert mapped.status_text == "connection refused"

    def test_error_without_request(self):
        mapped = map_error(httpx.ReadError("reset"))
        assert mapped.status is None
        assert mapped.final_url is None

    def test_embedded_response_used(self):
        error = FailureWithResponse(
            "bad gateway",
            response=EmbeddedResponse("upstream down", {"Via": "proxy"}),
            status_code=502,
            url="https://example.com/EWS",
        )
        mapped = map_error(error)
        assert mapped.status == 502
        assert mapped.response == "upstream down"
        assert mapped.headers == {"via": "proxy"}
        assert mapped.final_url == "https://example.com/EWS"

    def test_structured_status_wins_over_message(self):
        error = FailureWithResponse("failed statusCode=404", status_code=500)
        assert map_error(error).status == 500

    def test_http_status_error(self):
        request = httpx.Request("GET", "https://example.com/EWS")
        response = httpx.Response(503, text="unavailable", request=request)
        error = httpx.HTTPStatusError("unavailable", request=request, response=response)
        mapped = map_error(error)
        assert mapped.status == 503
        assert mapped.response == "unavailable"
        assert mapped.final_url == "https://example.com/EWS"
