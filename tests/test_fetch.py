"""Tests for fetch.py: fetch_url and web_search."""

import http.client
from unittest.mock import MagicMock, patch

import pytest

from askterm.errors import ToolError
from askterm.fetch import (
    MAX_OUTPUT_BYTES,
    MAX_RESPONSE_SIZE,
    _RedirectError,
    check_url_safety,
    fetch_url,
    html_to_text,
    parse_search_results,
    web_search,
)

PUBLIC = [(2, 1, 0, "", ("93.184.216.34", 0))]


def _make_response(body: bytes, content_type: str = "text/html; charset=utf-8"):
    resp = MagicMock()
    resp.read.return_value = body
    resp.headers = http.client.HTTPMessage()
    resp.headers["Content-Type"] = content_type
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def _opener(*results):
    opener = MagicMock()
    opener.open.side_effect = list(results)
    return opener


class TestHtmlToText:
    def test_strips_script_and_style(self):
        html = (
            "<html><head><style>body { color: red; }</style></head>"
            "<body><script>alert('x')</script><p>visible</p></body></html>"
        )
        text = html_to_text(html)
        assert text == "visible"

    def test_entities_decoded(self):
        assert html_to_text("<p>5 &gt; 3 &amp; 2 &lt; 4</p>") == "5 > 3 & 2 < 4"

    def test_blocks_separate_lines(self):
        assert html_to_text("<div>first</div><div>second</div>").split() == [
            "first",
            "second",
        ]
        assert "\n" in html_to_text("<div>first</div><div>second</div>")


class TestUrlSafety:
    @pytest.mark.parametrize("url", ["ftp://example.com/f", "file:///etc/passwd"])
    def test_rejects_schemes(self, url):
        with pytest.raises(ToolError, match="not allowed"):
            check_url_safety(url)

    def test_rejects_missing_hostname(self):
        with pytest.raises(ToolError, match="hostname"):
            check_url_safety("http://")

    @pytest.mark.parametrize(
        "addr", ["127.0.0.1", "10.0.0.1", "192.168.1.1", "169.254.169.254", "::1"]
    )
    @patch("askterm.fetch.socket.getaddrinfo")
    def test_blocks_internal(self, mock_dns, addr):
        mock_dns.return_value = [(2, 1, 0, "", (addr, 0))]
        with pytest.raises(ToolError, match="private/internal"):
            check_url_safety("http://evil.example")

    @patch("askterm.fetch.socket.getaddrinfo", return_value=PUBLIC)
    def test_allows_public(self, mock_dns):
        check_url_safety("https://example.com")


@patch("askterm.fetch.socket.getaddrinfo", return_value=PUBLIC)
class TestFetchUrl:
    def test_raw_html(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"<h1>Hello</h1>"))
            assert fetch_url("http://example.com", format="html") == "<h1>Hello</h1>"

    def test_text(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"<p>Hi <b>there</b></p>"))
            assert fetch_url("http://example.com", format="text") == "Hi there"

    def test_markdown_conversion(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"<h1>Title</h1><p>Body</p>"))
            out = fetch_url("http://example.com")
        assert "Title" in out
        assert "Body" in out
        assert "<h1>" not in out

    def test_markdown_passthrough(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"# Doc", "text/markdown"))
            assert fetch_url("http://example.com") == "# Doc"

    def test_binary_refused(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"\x89PNG", "image/png"))
            with pytest.raises(ToolError, match="binary content"):
                fetch_url("http://example.com")

    def test_too_large(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_make_response(b"a" * (MAX_RESPONSE_SIZE + 1)))
            with pytest.raises(ToolError, match="too large"):
                fetch_url("http://example.com")

    def test_output_truncated(self, mock_dns):
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(
                _make_response(b"a" * (MAX_OUTPUT_BYTES + 10), "text/plain")
            )
            out = fetch_url("http://example.com", format="html")
        assert "[content truncated" in out

    def test_redirect_rechecked(self, mock_dns):
        mock_dns.side_effect = [PUBLIC, [(2, 1, 0, "", ("127.0.0.1", 0))]]
        with patch("askterm.fetch.urllib.request.build_opener") as factory:
            factory.return_value = _opener(_RedirectError("http://internal/", 302))
            with pytest.raises(ToolError, match="private/internal"):
                fetch_url("http://example.com")

    def test_bad_format(self, mock_dns):
        with pytest.raises(ToolError, match="invalid format"):
            fetch_url("http://example.com", format="pdf")


DDG_HTML = """
<table>
<tr><td>1.&nbsp;</td><td>
<a rel="nofollow" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fdocs.python.org%2F3%2F&amp;rut=x" class='result-link'>Python &amp; Docs</a>
</td></tr>
<tr><td>&nbsp;</td><td class='result-snippet'>The official <b>Python</b> documentation.</td></tr>
<tr><td>2.&nbsp;</td><td>
<a rel="nofollow" href="https://example.org/" class='result-link'>Example</a>
</td></tr>
<tr><td>&nbsp;</td><td class='result-snippet'>An example site.</td></tr>
</table>
"""


class TestWebSearch:
    def test_parse_results(self):
        results = parse_search_results(DDG_HTML)
        assert results == [
            {
                "url": "https://docs.python.org/3/",
                "title": "Python & Docs",
                "snippet": "The official Python documentation.",
            },
            {
                "url": "https://example.org/",
                "title": "Example",
                "snippet": "An example site.",
            },
        ]

    def test_limit(self):
        assert len(parse_search_results(DDG_HTML, limit=1)) == 1

    def test_formats_results(self):
        with patch("askterm.fetch._get", return_value=(DDG_HTML.encode(), "text/html")) as get:
            out = web_search("python docs")
        assert out.startswith("**Python & Docs**\nThe official Python documentation.\n")
        assert "q=python+docs" in get.call_args[0][0]

    def test_no_results(self):
        with patch("askterm.fetch._get", return_value=(b"<html></html>", "text/html")):
            assert web_search("zzz") == "No results found for: zzz"

    def test_empty_query(self):
        with pytest.raises(ToolError):
            web_search("")
