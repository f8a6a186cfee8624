"""URL source handler.

Fetches web pages through a content-extraction collaborator (see
`aihub_sources.connectors.web_extractor.WebContentExtractor`). When no
extractor is supplied the handler uses `FallbackExtractor`, a plain HTTP GET
with naive tag stripping.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence
from urllib.parse import urlsplit

import httpx

from aihub_sources.config import Settings
from aihub_sources.exceptions import (
    ConfigurationError,
    FetchTimeoutError,
    SourceError,
    UpstreamError,
)
from aihub_sources.sources.base import LoadResult, SourceHandler, run_batch, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_LENGTH = 50000

# Only these options change the extracted output
CACHE_RELEVANT_OPTIONS = ("maxContentLength", "cleanContent", "followRedirects")

_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_CHROME_RE = re.compile(r"<(nav|header|footer|aside)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)


def is_valid_url(url: Any) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class ContentExtractor(Protocol):
    """Fetches a page and returns `{"content": str, "metadata": {...}}`."""

    async def extract(
        self,
        *,
        url: str,
        max_content_length: int,
        include_metadata: bool = True,
        clean_content: bool = True,
        follow_redirects: bool = True,
        ignore_ssl: bool = False,
    ) -> Dict[str, Any]:
        ...


class FallbackExtractor:
    """Minimal extractor: HTTP GET plus regex tag stripping."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = "AI-Hub-Apps/1.0 (+https://github.com/intrafind/ai-hub-apps)",
        max_redirects: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self._transport = transport

    def _client(self, *, follow_redirects: bool, verify: bool) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=follow_redirects,
            max_redirects=self.max_redirects,
            verify=verify,
            transport=self._transport,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    async def extract(
        self,
        *,
        url: str,
        max_content_length: int,
        include_metadata: bool = True,
        clean_content: bool = True,
        follow_redirects: bool = True,
        ignore_ssl: bool = False,
    ) -> Dict[str, Any]:
        async with self._client(follow_redirects=follow_redirects, verify=not ignore_ssl) as client:
            try:
                resp = await client.get(url)
            except httpx.TimeoutException as exc:
                raise FetchTimeoutError(f"Request timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Request failed: {exc}") from exc
        if not resp.is_success:
            raise UpstreamError(f"HTTP {resp.status_code}: {resp.reason_phrase}", status_code=resp.status_code)

        html = resp.text
        title_match = _TITLE_RE.search(html)
        text = _SCRIPT_RE.sub("", html)
        text = _STYLE_RE.sub("", text)
        if clean_content:
            text = _CHROME_RE.sub("", text)
        text = _WS_RE.sub(" ", _TAG_RE.sub(" ", text)).strip()

        metadata: Dict[str, Any] = {
            "statusCode": resp.status_code,
            "contentType": resp.headers.get("content-type"),
            "finalUrl": str(resp.url),
        }
        if include_metadata:
            metadata["title"] = _WS_RE.sub(" ", title_match.group(1)).strip() if title_match else ""
            metadata["description"] = ""
        return {"content": text[:max_content_length], "metadata": metadata}


def parse_max_length(value: Any) -> Optional[int]:
    """Positive character limit from a `maxContentLength` value; None when unset."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid maxContentLength: {value!r}")
    try:
        limit = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid maxContentLength: {value!r}") from exc
    if limit <= 0:
        raise ConfigurationError(f"Invalid maxContentLength: {value!r}")
    return limit


class URLHandler(SourceHandler):
    """Handler for `url` sources."""

    source_type = "url"
    # Web content changes less often than local files
    default_ttl = 7200

    def __init__(
        self,
        extractor: Optional[ContentExtractor] = None,
        *,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> None:
        cfg = settings or Settings()
        kwargs.setdefault("cache_ttl", cfg.url.cache_ttl)
        super().__init__(**kwargs)
        self._url_cfg = cfg.url
        self.extractor: ContentExtractor = extractor or FallbackExtractor(
            timeout=cfg.url.timeout,
            user_agent=cfg.url.user_agent,
            max_redirects=cfg.url.max_redirects,
        )

    def _options(self, source_config: Mapping[str, Any]) -> Dict[str, Any]:
        options = dict(source_config.get("options") or {})
        # Tool calls pass maxContentLength at the top level
        if source_config.get("maxContentLength") is not None:
            options["maxContentLength"] = source_config["maxContentLength"]
        return options

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        if not isinstance(source_config, Mapping):
            return False
        options = source_config.get("options")
        if options is not None and not isinstance(options, Mapping):
            return False
        try:
            parse_max_length(self._options(source_config).get("maxContentLength"))
        except ConfigurationError:
            return False
        return is_valid_url(source_config.get("url"))

    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        url = source_config.get("url")
        if not url:
            raise ConfigurationError("URLHandler requires a url in sourceConfig")
        if not is_valid_url(url):
            raise ConfigurationError(f"Invalid URL: {url}")

        options = self._options(source_config)
        ignore_ssl = options.get("ignoreSSL")
        if ignore_ssl is None:
            ignore_ssl = self._url_cfg.ignore_invalid_certificates
        max_len = (
            parse_max_length(options.get("maxContentLength"))
            or self._url_cfg.max_content_length
            or DEFAULT_MAX_CONTENT_LENGTH
        )

        try:
            result = await self.extractor.extract(
                url=url,
                max_content_length=max_len,
                include_metadata=True,
                clean_content=options.get("cleanContent") is not False,
                follow_redirects=options.get("followRedirects") is not False,
                ignore_ssl=bool(ignore_ssl),
            )
        except UpstreamError as exc:
            raise UpstreamError(f"Error loading URL {url}: {exc}", status_code=exc.status_code) from exc
        except SourceError as exc:
            raise type(exc)(f"Error loading URL {url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Error loading URL {url}: request timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Error loading URL {url}: {exc}") from exc

        content = str(result.get("content") or "")[:max_len]
        meta = result.get("metadata") or {}
        final_url = meta.get("finalUrl") or url
        now = utc_now_iso()
        logger.debug("URLHandler load: extracted page. url=%s chars=%s", url, len(content))
        return LoadResult(
            content=content,
            metadata={
                "type": "url",
                "url": url,
                "title": meta.get("title") or "",
                "description": meta.get("description") or "",
                "contentLength": len(content),
                "extractedAt": now,
                "statusCode": meta.get("statusCode"),
                "finalUrl": final_url,
                "contentType": meta.get("contentType"),
                "link": final_url,
                "loadedAt": now,
            },
        )

    async def get_cache_key(self, source_config: Mapping[str, Any]) -> str:
        """Normalize the URL and keep only options that affect the output."""
        url = source_config.get("url")
        if not is_valid_url(url):
            return await super().get_cache_key(source_config)
        parts = urlsplit(url)
        normalized = f"{parts.scheme}://{parts.netloc}{parts.path or '/'}"
        if parts.query:
            normalized += f"?{parts.query}"
        options = self._options(source_config)
        return json.dumps(
            {
                "url": normalized,
                "options": {name: options.get(name) for name in CACHE_RELEVANT_OPTIONS},
            },
            sort_keys=True,
        )

    async def batch_load(
        self,
        urls: Sequence[Mapping[str, Any]],
        *,
        concurrency: int = 3,
        failure_mode: str = "continue",
    ) -> List[LoadResult]:
        """Load several URL configs in windows of `concurrency`, keeping input order."""

        def on_error(url_config: Mapping[str, Any], exc: Exception) -> LoadResult:
            return LoadResult(
                content="",
                metadata={
                    "type": "url",
                    "url": url_config.get("url"),
                    "link": url_config.get("url"),
                    "error": str(exc),
                    "loadedAt": utc_now_iso(),
                },
            )

        return await run_batch(
            urls,
            self.get_cached_content,
            concurrency=concurrency,
            failure_mode=failure_mode,
            on_error=on_error,
        )
