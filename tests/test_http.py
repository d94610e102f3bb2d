"""
Tests for the HTTP client behind the request helpers.
"""

import pytest
import requests

from kerdar.node_sdk.errors import NodeApiError, NodeTimeoutError
from kerdar.node_sdk.http import HttpClient


def make_response(status=200, body=b"{}", content_type="application/json", reason="OK"):
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.headers["content-type"] = content_type
    response._content = body
    response.url = "https://api.example.com/items"
    return response


@pytest.fixture
def sent(monkeypatch):
    """Captures requests.request calls; queue responses on sent.responses."""

    class Recorder(list):
        def __init__(self):
            super().__init__()
            self.responses = []

    recorder = Recorder()

    def fake_request(**kwargs):
        recorder.append(kwargs)
        result = recorder.responses.pop(0) if recorder.responses else make_response()
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr("kerdar.node_sdk.http.requests.request", fake_request)
    return recorder


class TestSend:
    """HttpClient.send with request options."""

    def test_json_request(self, sent):
        sent.responses.append(make_response(body=b'{"id": 1}'))

        result = HttpClient(timeout=12).send({
            "method": "post",
            "url": "/items",
            "baseURL": "https://api.example.com/",
            "qs": {"a": 1, "skip": None},
            "body": {"name": "x"},
        })

        call = sent[0]
        assert result == {"id": 1}
        assert call["method"] == "POST"
        assert call["url"] == "https://api.example.com/items"
        assert call["params"] == {"a": 1}
        assert call["json"] == {"name": "x"}
        assert call["timeout"] == 12

    def test_raw_body_and_options(self, sent):
        HttpClient().send({
            "url": "https://x.test",
            "body": "plain",
            "json": False,
            "timeout": 3,
            "skipSslCertificateValidation": True,
            "followRedirect": False,
        })

        call = sent[0]
        assert call["data"] == "plain"
        assert call["json"] is None
        assert call["timeout"] == 3
        assert call["verify"] is False
        assert call["allow_redirects"] is False

    def test_text_body(self, sent):
        sent.responses.append(make_response(body=b"hello", content_type="text/plain"))
        assert HttpClient().send({"url": "https://x.test"}) == "hello"

    def test_full_response(self, sent):
        sent.responses.append(make_response(status=201, body=b'{"ok": true}'))
        result = HttpClient().send({"url": "https://x.test", "returnFullResponse": True})

        assert result["statusCode"] == 201
        assert result["body"] == {"ok": True}
        assert result["headers"]["content-type"] == "application/json"

    def test_error_status(self, sent):
        sent.responses.append(make_response(status=404, body=b"missing", content_type="text/plain", reason="Not Found"))

        with pytest.raises(NodeApiError) as exc_info:
            HttpClient().send({"url": "https://x.test"})

        assert exc_info.value.status_code == 404
        assert exc_info.value.to_dict()["httpCode"] == 404
        assert "HTTP 404: Not Found" in str(exc_info.value)

    def test_timeout(self, sent):
        sent.responses.append(requests.exceptions.ReadTimeout("slow"))
        with pytest.raises(NodeTimeoutError):
            HttpClient(timeout=1).send({"url": "https://x.test"})

    def test_connection_error(self, sent):
        sent.responses.append(requests.exceptions.ConnectionError("refused"))
        with pytest.raises(NodeApiError, match="Request failed"):
            HttpClient().send({"url": "https://x.test"})

    def test_url_required(self, sent):
        with pytest.raises(NodeApiError, match="URL is required"):
            HttpClient().send({})
        assert sent == []
