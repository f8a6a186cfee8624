"""Web content extractor used by `URLHandler`.

Fetches a page with httpx and turns it into readable text with BeautifulSoup,
dropping navigation, headers, footers, ads and similar page chrome. No
persistence is performed; results are returned directly.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from aihub_sources.config import URLConfig
from aihub_sources.exceptions import AccessDeniedError, FetchTimeoutError, NotFoundError, UpstreamError
from aihub_sources.parsers.html_parser import HTMLParser

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class WebContentExtractor:
    """Content-extraction collaborator implementing the `ContentExtractor` protocol.

    Parameters
    ----------
    timeout: float
        Per-request timeout in seconds.
    user_agent: str
        User-Agent header sent with every request.
    max_redirects: int
        Redirect limit when redirects are followed.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = "AI-Hub-Apps/1.0",
        max_redirects: int = 5,
        html_parser: Optional[HTMLParser] = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self._parser = html_parser or HTMLParser()

    @classmethod
    def from_config(cls, cfg: URLConfig) -> "WebContentExtractor":
        return cls(timeout=cfg.timeout, user_agent=cfg.user_agent, max_redirects=cfg.max_redirects)

    def _client(self, *, follow_redirects: bool, verify: bool) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=follow_redirects,
            max_redirects=self.max_redirects,
            verify=verify,
            headers={"User-Agent": self.user_agent, **BROWSER_HEADERS},
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
        if ignore_ssl:
            logger.debug("WebContentExtractor: TLS verification disabled. url=%s", url)
        async with self._client(follow_redirects=follow_redirects, verify=not ignore_ssl) as client:
            try:
                resp = await client.get(url)
            except httpx.TimeoutException as exc:
                raise FetchTimeoutError(f"Request timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Request failed: {exc}") from exc

        status = resp.status_code
        if status == 404:
            raise NotFoundError("Page could not be found (HTTP 404)")
        if status in (401, 403):
            raise AccessDeniedError(f"Authentication required to access this page (HTTP {status})")
        if not resp.is_success:
            raise UpstreamError(f"Failed to fetch webpage: {status} {resp.reason_phrase}", status_code=status)

        content_type = resp.headers.get("content-type", "")
        final_url = str(resp.url)
        if "html" in content_type.lower() or not content_type:
            doc = self._parser.parse_html_content(resp.text, metadata={"source_url": final_url}, clean=clean_content)
            text = doc.text
            title = doc.title
            description = str(doc.metadata.get("description") or "")
        else:
            # Plain text, JSON, XML and the like are passed through untouched
            text = resp.text
            title = ""
            description = ""

        truncated = len(text) > max_content_length
        metadata: Dict[str, Any] = {
            "statusCode": status,
            "finalUrl": final_url,
            "contentType": content_type or None,
        }
        if include_metadata:
            metadata.update({"title": title, "description": description, "truncated": truncated})
        logger.debug(
            "WebContentExtractor: extracted page. url=%s status=%s chars=%s truncated=%s",
            final_url,
            status,
            len(text),
            truncated,
        )
        return {"content": text[:max_content_length], "metadata": metadata}
