from __future__ import annotations

import asyncio
import html
import json
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec

USER_AGENT = "Mozilla/5.0 (compatible; pycomrade/0.1)"
_RESULT_TITLE_RE = re.compile(r'<a[^>]*class="result__a"[^>]*href="([^"]*)"[^>]*>(.*?)</a>', re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


class _HTMLTextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"}:
            self._skip_depth += 1

    def handle_endtag(self, tag: str):  # type: ignore[override]
        if tag.lower() in {"script", "style", "noscript"} and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str):  # type: ignore[override]
        if self._skip_depth > 0:
            return
        text = data.strip()
        if text:
            self._parts.append(text)

    def text(self) -> str:
        joined = "\n".join(self._parts)
        joined = re.sub(r"\n{3,}", "\n\n", joined)
        return joined.strip()


def html_to_text(raw: str) -> str:
    parser = _HTMLTextExtractor()
    parser.feed(raw)
    return parser.text()


def _decode(raw: bytes, charset: str | None) -> str:
    for enc in filter(None, (charset, "utf-8", "latin-1")):
        try:
            return raw.decode(enc)
        except (UnicodeDecodeError, LookupError):
            continue
    return raw.decode("utf-8", errors="replace")


def _fetch(req: urllib.request.Request, timeout: float) -> tuple[int, str, str, str]:
    """(status, reason, content_type, body); HTTP error statuses are returned, not raised."""
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            ctype = resp.headers.get("Content-Type") or ""
            return resp.status, resp.reason or "", ctype, _decode(raw, resp.headers.get_content_charset())
    except urllib.error.HTTPError as e:
        raw = e.read() if hasattr(e, "read") else b""
        return e.code, str(e.reason), e.headers.get("Content-Type") or "", _decode(raw, None)


def _check_url(url: str) -> str | None:
    scheme = urllib.parse.urlsplit(url).scheme.lower()
    if scheme not in {"http", "https"}:
        return f"Only http(s) URLs are supported, got: {url}"
    return None


@dataclass
class WebSearchTool:
    spec: ToolSpec = ToolSpec(
        name="web_search",
        description="Search the web (DuckDuckGo) and return result titles and links.",
        permission_key="net",
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query."},
                "count": {"type": "integer", "description": "Number of results (default 5)."},
            },
            "required": ["query"],
        },
    )
    endpoint: str = "https://html.duckduckgo.com/html/"

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        query = args["query"]
        count = int(args.get("count") or 5)
        url = f"{self.endpoint}?q={urllib.parse.quote_plus(query)}"
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            status, reason, _, body = await asyncio.to_thread(_fetch, req, 15)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            return ToolResult.fail(f"Web search failed: {e}")
        if status >= 400:
            return ToolResult.fail(f"Web search failed: HTTP {status} {reason}")
        results = []
        for href, title in _RESULT_TITLE_RE.findall(body)[:count]:
            clean = html.unescape(_TAG_RE.sub("", title)).strip()
            results.append(f"{len(results) + 1}. {clean}\n   {html.unescape(href)}")
        if not results:
            return ToolResult.ok(f'Search results for "{query}":\nNo results found')
        return ToolResult.ok(f'Search results for "{query}":\n\n' + "\n".join(results))


@dataclass
class WebFetchTool:
    """Fetch a URL and return readable text.

    Designed for local usage without extra dependencies (requests/bs4).
    """

    spec: ToolSpec = ToolSpec(
        name="web_fetch",
        description="Fetch a URL and return its text content (HTML is converted to plain text).",
        permission_key="net",
        parameters={
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to fetch."},
                "max_length": {"type": "integer", "description": "Max characters to return (default 10000)."},
            },
            "required": ["url"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        url = str(args.get("url") or "").strip()
        bad = _check_url(url)
        if bad:
            return ToolResult.fail(bad)
        max_chars = int(args.get("max_length") or 10000)
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            status, reason, ctype, text = await asyncio.to_thread(_fetch, req, 15)
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            return ToolResult.fail(f"web_fetch failed: {e}")
        if status >= 400:
            return ToolResult.fail(f"web_fetch failed: HTTP {status} {reason}")

        if "html" in ctype.lower() or "<html" in text[:2000].lower():
            text = html_to_text(text)

        if len(text) > max_chars:
            text = text[:max_chars] + "\n\n... (truncated)"
        return ToolResult.ok(text)


@dataclass
class HttpRequestTool:
    spec: ToolSpec = ToolSpec(
        name="http_request",
        description="Make an HTTP request, e.g. to test an API or a server started with start_server.",
        permission_key="net",
        parameters={
            "type": "object",
            "properties": {
                "method": {"type": "string", "description": "HTTP method (GET, POST, PUT, DELETE, etc.)"},
                "url": {"type": "string", "description": "The URL to request"},
                "headers": {"type": "string", "description": "JSON string of headers (optional)"},
                "body": {"type": "string", "description": "Request body (optional)"},
                "timeout": {"type": "integer", "description": "Timeout in milliseconds (default 10000)"},
            },
            "required": ["method", "url"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        url = args["url"]
        bad = _check_url(url)
        if bad:
            return ToolResult.fail(bad)
        timeout_ms = int(args.get("timeout") or 10000)
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        raw_headers = args.get("headers")
        if raw_headers:
            try:
                extra = json.loads(raw_headers) if isinstance(raw_headers, str) else raw_headers
            except json.JSONDecodeError as e:
                return ToolResult.fail(f"headers must be a JSON object: {e}")
            if not isinstance(extra, dict):
                return ToolResult.fail("headers must be a JSON object")
            headers.update({str(k): str(v) for k, v in extra.items()})
        body = args.get("body")
        data = body.encode("utf-8") if isinstance(body, str) and body else None
        req = urllib.request.Request(url, data=data, headers=headers, method=args["method"])
        try:
            status, reason, _, text = await asyncio.to_thread(_fetch, req, timeout_ms / 1000)
        except TimeoutError:
            return ToolResult.fail(f"Request timed out after {timeout_ms}ms")
        except urllib.error.URLError as e:
            if isinstance(e.reason, ConnectionRefusedError):
                return ToolResult.fail(f"Connection refused - server may not be running at {url}")
            return ToolResult.fail(f"HTTP request failed: {e.reason}")
        except OSError as e:
            return ToolResult.fail(f"HTTP request failed: {e}")
        if len(text) > 5000:
            text = text[:5000] + "..."
        out = f"HTTP {status} {reason}\n\n{text}"
        return ToolResult.ok(out) if status < 400 else ToolResult.fail(f"HTTP {status} {reason}", output=text)
