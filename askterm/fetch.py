"""Web tools: fetch_url (page as markdown, text or raw HTML) and web_search."""

import html.parser
import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request

from .errors import ToolError

MAX_RESPONSE_SIZE = 5 * 1024 * 1024  # 5 MB raw download cap
MAX_OUTPUT_BYTES = 50 * 1024  # converted output cap, same as read_file
MAX_REDIRECTS = 10
MAX_SEARCH_RESULTS = 5

SEARCH_URL = "https://lite.duckduckgo.com/lite/"

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/markdown,text/html,text/plain,application/json,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

_TEXT_MIMES = frozenset(
    {
        "application/json",
        "application/xml",
        "application/xhtml+xml",
        "application/javascript",
        "application/rss+xml",
        "application/atom+xml",
    }
)

_BLOCK_TAGS = frozenset(
    {
        "p", "div", "br", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr",
        "blockquote", "pre", "hr", "dt", "dd", "section", "article", "header",
        "footer", "nav", "main", "table", "figure", "figcaption",
    }
)

_SKIP_TAGS = frozenset({"script", "style", "noscript", "svg"})


class _RedirectError(Exception):
    def __init__(self, url: str, code: int):
        self.url = url
        self.code = code


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):
        raise _RedirectError(newurl, code)


class _TextExtractor(html.parser.HTMLParser):
    """Readable text from HTML, skipping script/style/svg/noscript."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag in _BLOCK_TAGS and self._skip_depth == 0:
            self._parts.append("\n")

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in _BLOCK_TAGS and self._skip_depth == 0:
            self._parts.append("\n")

    def handle_data(self, data):
        if self._skip_depth == 0:
            self._parts.append(data)

    def get_text(self) -> str:
        text = "".join(self._parts)
        text = re.sub(r"[^\S\n]+", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()


def html_to_text(body: str) -> str:
    parser = _TextExtractor()
    parser.feed(body)
    parser.close()
    return parser.get_text()


def check_url_safety(url: str) -> None:
    """Raise ToolError for non-http(s) schemes or hosts resolving to internal addresses."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ToolError(
            f"url scheme {parsed.scheme!r} is not allowed, must be http or https"
        )
    hostname = parsed.hostname
    if not hostname:
        raise ToolError("could not parse hostname from url")
    try:
        infos = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ToolError(f"could not resolve hostname {hostname!r}: {e}")
    for _family, _, _, _, sockaddr in infos:
        addr = ipaddress.ip_address(sockaddr[0])
        if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved:
            raise ToolError(
                f"url resolves to private/internal address ({addr}), blocked"
            )


def _decode_body(data: bytes, content_type: str | None) -> str:
    charset = None
    if content_type:
        for part in content_type.split(";"):
            part = part.strip()
            if part.lower().startswith("charset="):
                charset = part.split("=", 1)[1].strip().strip("\"'")
                break
    for encoding in (charset, "utf-8"):
        if encoding is None:
            continue
        try:
            return data.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return data.decode("latin-1")


def _get(url: str, timeout: int) -> tuple[bytes, str]:
    """GET ``url``, re-checking every redirect hop. Returns (body, content-type)."""
    current = url
    opener = urllib.request.build_opener(_NoRedirectHandler)
    for _ in range(MAX_REDIRECTS + 1):
        check_url_safety(current)
        req = urllib.request.Request(current, headers=HEADERS)
        host = urllib.parse.urlparse(current).hostname
        try:
            resp = opener.open(req, timeout=timeout)
            break
        except _RedirectError as r:
            current = urllib.parse.urljoin(current, r.url)
        except urllib.error.HTTPError as e:
            raise ToolError(f"HTTP {e.code} {e.reason}")
        except urllib.error.URLError as e:
            if "timed out" in str(e.reason).lower():
                raise ToolError(f"request timed out after {timeout} seconds")
            raise ToolError(f"could not connect to {host}: {e.reason}")
        except TimeoutError:
            raise ToolError(f"request timed out after {timeout} seconds")
        except OSError as e:
            raise ToolError(f"could not connect to {host}: {e}")
    else:
        raise ToolError(f"too many redirects (limit is {MAX_REDIRECTS})")

    with resp:
        content_type = resp.headers.get("Content-Type", "")
        try:
            data = resp.read(MAX_RESPONSE_SIZE + 1)
        except TimeoutError:
            raise ToolError(f"request timed out after {timeout} seconds")
        except OSError as e:
            raise ToolError(f"failed to read response: {e}")
    if len(data) > MAX_RESPONSE_SIZE:
        raise ToolError(f"response too large (over {MAX_RESPONSE_SIZE} bytes)")
    return data, content_type


def fetch_url(url: str, format: str = "markdown", timeout: int = 30) -> str:
    """Fetch a URL and return its content as markdown, text, or raw HTML."""
    if format not in ("markdown", "text", "html"):
        raise ToolError(
            f"invalid format {format!r}, must be 'markdown', 'text', or 'html'"
        )
    if not url or not isinstance(url, str):
        raise ToolError("url must be a non-empty string")

    data, content_type = _get(url, timeout)
    mime = content_type.split(";")[0].strip().lower()
    if mime and not mime.startswith("text/") and mime not in _TEXT_MIMES:
        raise ToolError(f"binary content (content-type: {mime}), cannot display as text")
    if b"\x00" in data[:8192]:
        raise ToolError("binary content detected (null bytes found)")
    body = _decode_body(data, content_type)

    if format == "html":
        output = body
    elif format == "text":
        output = html_to_text(body)
    elif mime == "text/markdown":
        output = body
    else:
        from html_to_markdown import convert

        try:
            output = convert(body)
        except Exception as e:
            raise ToolError(f"failed to convert HTML to markdown: {e}")

    encoded = output.encode("utf-8")
    if len(encoded) > MAX_OUTPUT_BYTES:
        output = (
            encoded[:MAX_OUTPUT_BYTES].decode("utf-8", errors="ignore")
            + f"\n[content truncated at {MAX_OUTPUT_BYTES} bytes, total was {len(encoded)} bytes]"
        )
    return output


# -- Web search ---------------------------------------------------------------


class _SearchResultParser(html.parser.HTMLParser):
    """Collect (title, url, snippet) from DuckDuckGo lite result tables."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.results: list[dict] = []
        self._field: str | None = None
        self._buf: list[str] = []
        self._current: dict = {}
        self._tag: str | None = None

    def handle_starttag(self, tag, attrs):
        classes = (dict(attrs).get("class") or "").split()
        if tag == "a" and "result-link" in classes:
            self._current = {"url": _unwrap_redirect(dict(attrs).get("href") or "")}
            self._field = "title"
            self._buf = []
        elif "result-snippet" in classes and self._current.get("title"):
            self._field = "snippet"
            self._buf = []
            self._tag = tag

    def handle_endtag(self, tag):
        if self._field == "title" and tag == "a":
            self._current["title"] = " ".join("".join(self._buf).split())
            self._field = None
        elif self._field == "snippet" and tag == self._tag:
            self._current["snippet"] = " ".join("".join(self._buf).split())
            if self._current["snippet"]:
                self.results.append(self._current)
            self._current = {}
            self._field = None

    def handle_data(self, data):
        if self._field:
            self._buf.append(data)


def _unwrap_redirect(href: str) -> str:
    """DuckDuckGo wraps result links as //duckduckgo.com/l/?uddg=<target>."""
    parsed = urllib.parse.urlparse(href)
    target = urllib.parse.parse_qs(parsed.query).get("uddg")
    if target:
        return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


def parse_search_results(body: str, limit: int = MAX_SEARCH_RESULTS) -> list[dict]:
    parser = _SearchResultParser()
    parser.feed(body)
    parser.close()
    return parser.results[:limit]


def format_search_results(results: list[dict]) -> str:
    return "\n\n".join(
        f"**{r['title']}**\n{r['snippet']}\n{r['url']}" for r in results
    )


def web_search(query: str, timeout: int = 30) -> str:
    """Search the web via DuckDuckGo lite; return up to five results."""
    if not query or not isinstance(query, str):
        raise ToolError("query must be a non-empty string")
    url = f"{SEARCH_URL}?{urllib.parse.urlencode({'q': query})}"
    data, content_type = _get(url, timeout)
    results = parse_search_results(_decode_body(data, content_type))
    if not results:
        return f"No results found for: {query}"
    return format_search_results(results)
