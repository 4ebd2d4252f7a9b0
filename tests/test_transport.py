"""Tests for the HTTP and LiteLLM transports."""

import json
import urllib.error
from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest

from askterm.config import ProviderConfig
from askterm.errors import TransportError
from askterm.providers import WireRequest
from askterm.transport import (
    HttpTransport,
    LiteLLMTransport,
    transport_for,
    ERROR_BODY_CHARS,
)


def _request(**overrides):
    fields = dict(
        url="https://api.example.com/v1/chat/completions",
        body={"model": "m", "messages": []},
        headers={"Content-Type": "application/json", "Authorization": "Bearer k"},
    )
    fields.update(overrides)
    return WireRequest(**fields)


def _response(body: bytes):
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


class TestHttpTransport:
    @patch("askterm.transport.urllib.request.urlopen")
    def test_posts_json_and_returns_text(self, mock_urlopen):
        mock_urlopen.return_value = _response(b'{"ok": true}')
        out = HttpTransport(timeout=7).send(_request())
        assert out == '{"ok": true}'
        req = mock_urlopen.call_args[0][0]
        assert req.get_method() == "POST"
        assert req.full_url == "https://api.example.com/v1/chat/completions"
        assert json.loads(req.data) == {"model": "m", "messages": []}
        assert req.get_header("Authorization") == "Bearer k"
        assert mock_urlopen.call_args[1]["timeout"] == 7

    @patch("askterm.transport.urllib.request.urlopen")
    def test_query_params_appended(self, mock_urlopen):
        mock_urlopen.return_value = _response(b"{}")
        HttpTransport().send(_request(url="https://g.example/gen", params={"key": "a b"}))
        assert mock_urlopen.call_args[0][0].full_url == "https://g.example/gen?key=a+b"

    @patch("askterm.transport.urllib.request.urlopen")
    def test_http_error_carries_status_and_body(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "https://api.example.com", 401, "Unauthorized", {}, BytesIO(b'{"error": "bad key"}')
        )
        with pytest.raises(TransportError, match=r'API error: 401 - \{"error": "bad key"\}'):
            HttpTransport().send(_request())

    @patch("askterm.transport.urllib.request.urlopen")
    def test_long_error_body_is_capped(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "u", 500, "err", {}, BytesIO(b"x" * (ERROR_BODY_CHARS * 2))
        )
        with pytest.raises(TransportError) as exc:
            HttpTransport().send(_request())
        assert len(str(exc.value)) < ERROR_BODY_CHARS + 50

    @patch("askterm.transport.urllib.request.urlopen")
    def test_connection_failure(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("Name or service not known")
        with pytest.raises(TransportError, match="could not reach"):
            HttpTransport().send(_request())

    @patch("askterm.transport.urllib.request.urlopen")
    def test_timeout(self, mock_urlopen):
        mock_urlopen.side_effect = TimeoutError()
        with pytest.raises(TransportError, match="timed out"):
            HttpTransport(timeout=3).send(_request())


class TestLiteLLMTransport:
    def test_passes_body_and_options(self):
        response = MagicMock()
        response.model_dump.return_value = {"choices": [{"message": {"content": "hi"}}]}
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = response
            out = LiteLLMTransport(timeout=30).send(
                _request(options={"api_key": "sk", "api_base": "https://x"})
            )
        assert out == {"choices": [{"message": {"content": "hi"}}]}
        kwargs = mock_comp.call_args[1]
        assert kwargs["model"] == "m"
        assert kwargs["api_key"] == "sk"
        assert kwargs["api_base"] == "https://x"
        assert kwargs["timeout"] == 30

    def test_failure_becomes_transport_error(self):
        with patch("litellm.completion", side_effect=RuntimeError("boom")):
            with pytest.raises(TransportError, match="boom"):
                LiteLLMTransport().send(_request())


class TestTransportFor:
    def _config(self, api):
        return ProviderConfig(
            name="p", model="m", host="h", endpoint="", api_key_variable="K", api=api,
            request_timeout=12,
        )

    def test_http_for_openai_and_gemini(self):
        for api in ("openai", "gemini"):
            transport = transport_for(self._config(api))
            assert isinstance(transport, HttpTransport)
            assert transport.timeout == 12

    def test_litellm(self):
        assert isinstance(transport_for(self._config("litellm")), LiteLLMTransport)
