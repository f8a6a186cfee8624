"""iFinder document-search connector.

Uses the iFinder public retrieval REST API via httpx. Every call runs on behalf
of a user; the Authorization header is produced per user by `auth_header`
(by default a static bearer API key).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx

from aihub_sources.config import IFinderConfig
from aihub_sources.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    FetchTimeoutError,
    NotFoundError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

AuthHeaderFactory = Callable[[Mapping[str, Any]], str]

# Content fetches get extra time on top of the configured timeout
CONTENT_TIMEOUT_EXTRA = 30.0


def format_content_length(length: int) -> str:
    if length < 1000:
        return f"{length} characters"
    if length < 1_000_000:
        return f"{round(length / 1000, 1)}K characters"
    return f"{round(length / 1_000_000, 1)}M characters"


def format_file_size(size: Optional[int]) -> str:
    if not size:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    return f"{round(value, 2):g} {units[idx]}"


def ensure_user_context(user: Any, chat_id: Any) -> None:
    """Reject anonymous or missing users and missing chat ids."""
    if not isinstance(user, Mapping) or not user or user.get("id") == "anonymous":
        raise AccessDeniedError("iFinder access requires authenticated user")
    if not chat_id:
        raise ConfigurationError("Chat ID is required for tracking")


class IFinderClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        default_search_profile: str = "default",
        timeout: float = 30.0,
        search_endpoint: str = "/public-api/retrieval/api/v1/search-profiles/{profileId}/_search",
        document_endpoint: str = "/public-api/retrieval/api/v1/search-profiles/{profileId}/docs/{docId}",
        auth_header: Optional[AuthHeaderFactory] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_search_profile = default_search_profile
        self.timeout = timeout
        self.search_endpoint = search_endpoint
        self.document_endpoint = document_endpoint
        self._auth_header = auth_header or self._api_key_header

    @classmethod
    def from_config(cls, cfg: IFinderConfig, *, auth_header: Optional[AuthHeaderFactory] = None) -> Optional["IFinderClient"]:
        """Build a client from settings, or None when no base URL is configured."""
        if not cfg.base_url:
            return None
        return cls(
            base_url=cfg.base_url,
            api_key=cfg.api_key,
            default_search_profile=cfg.default_search_profile,
            timeout=cfg.timeout,
            search_endpoint=cfg.search_endpoint,
            document_endpoint=cfg.document_endpoint,
            auth_header=auth_header,
        )

    def _api_key_header(self, user: Mapping[str, Any]) -> str:
        if not self.api_key:
            raise ConfigurationError("iFinder API key is not configured")
        return f"Bearer {self.api_key}"

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            headers={"Accept": "application/json"},
        )

    def _profile(self, search_profile: Optional[str]) -> str:
        return search_profile or self.default_search_profile

    def _document_path(self, profile: str, document_id: str) -> str:
        return self.document_endpoint.replace("{profileId}", quote(profile, safe="")).replace(
            "{docId}", quote(str(document_id), safe="")
        )

    async def _get(
        self,
        path: str,
        *,
        user: Mapping[str, Any],
        params: Any = None,
        timeout: Optional[float] = None,
        document_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": self._auth_header(user)}
        async with self._client(timeout) as client:
            try:
                resp = await client.get(path, params=params, headers=headers)
            except httpx.TimeoutException as exc:
                raise FetchTimeoutError("iFinder request timed out. Please try again.") from exc
            except httpx.HTTPError as exc:
                raise UpstreamError(f"iFinder operation failed: {exc}") from exc
        if resp.status_code == 404 and document_id is not None:
            raise NotFoundError(f"Document not found: {document_id}")
        if resp.status_code in (401, 403):
            target = f"document: {document_id}" if document_id is not None else "iFinder"
            raise AccessDeniedError(f"Access denied to {target}")
        if not resp.is_success:
            raise UpstreamError(
                f"iFinder request failed with status {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        data = resp.json()
        return data if isinstance(data, dict) else {}

    async def search(
        self,
        *,
        query: str,
        chat_id: str,
        user: Mapping[str, Any],
        max_results: int = 10,
        search_profile: Optional[str] = None,
        return_fields: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Search a profile and return `{query, searchProfile, totalFound, results}`.

        Each result is normalized to id, title, author, documentType, mimeType,
        createdDate, lastModified, score, teasers, filename, url, size.
        """
        ensure_user_context(user, chat_id)
        profile = self._profile(search_profile)
        path = self.search_endpoint.replace("{profileId}", quote(profile, safe=""))
        params: List[tuple] = [("query", query), ("size", str(min(int(max_results), 100)))]
        for name in return_fields or []:
            params.append(("return_fields", name))

        logger.info(
            "iFinder search: querying profile. profile=%s user=%s chat_id=%s",
            profile,
            user.get("email") or user.get("id"),
            chat_id,
        )
        data = await self._get(path, user=user, params=params)
        results: List[Dict[str, Any]] = []
        for hit in data.get("results") or []:
            if not isinstance(hit, dict):
                continue
            doc = hit.get("document") or {}
            meta = hit.get("metadata") or {}
            results.append(
                {
                    "id": doc.get("id"),
                    "score": meta.get("score"),
                    "title": doc.get("title"),
                    "url": doc.get("url") or meta.get("url"),
                    "filename": doc.get("filename") or (doc.get("file") or {}).get("name"),
                    "documentType": doc.get("documentType") or doc.get("type"),
                    "mimeType": doc.get("mimeType") or doc.get("mediaType"),
                    "language": doc.get("language") or meta.get("language"),
                    "size": doc.get("size"),
                    "author": doc.get("author") or doc.get("creator"),
                    "createdDate": doc.get("createdDate") or doc.get("created"),
                    "lastModified": doc.get("lastModified") or doc.get("modified"),
                    "teasers": meta.get("teasers") or [],
                }
            )
        api_meta = data.get("metadata") or {}
        return {
            "query": query,
            "searchProfile": profile,
            "totalFound": api_meta.get("total_hits", len(results)),
            "took": api_meta.get("took"),
            "results": results,
        }

    async def get_content(
        self,
        *,
        document_id: str,
        chat_id: str,
        user: Mapping[str, Any],
        search_profile: Optional[str] = None,
        max_length: int = 50000,
    ) -> Dict[str, Any]:
        """Fetch document text, truncated to `max_length` characters."""
        if not document_id:
            raise ConfigurationError("Document ID parameter is required")
        ensure_user_context(user, chat_id)
        profile = self._profile(search_profile)
        data = await self._get(
            self._document_path(profile, document_id),
            user=user,
            timeout=self.timeout + CONTENT_TIMEOUT_EXTRA,
            document_id=document_id,
        )
        doc = data.get("document") or {}
        content = str(doc.get("content") or "")
        length = len(content)
        truncated = length > max_length
        if truncated:
            logger.warning("iFinder content: truncated. document_id=%s max_length=%s", document_id, max_length)
            content = content[:max_length] + "... [Content truncated]"
        elif not content:
            logger.warning("iFinder content: no content extracted. document_id=%s", document_id)
        return {
            "documentId": doc.get("id") or document_id,
            "content": content,
            "contentLength": length,
            "contentLengthFormatted": format_content_length(length),
            "truncated": truncated,
            "searchProfile": profile,
        }

    async def get_metadata(
        self,
        *,
        document_id: str,
        chat_id: str,
        user: Mapping[str, Any],
        search_profile: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not document_id:
            raise ConfigurationError("Document ID parameter is required")
        ensure_user_context(user, chat_id)
        profile = self._profile(search_profile)
        data = await self._get(self._document_path(profile, document_id), user=user, document_id=document_id)
        doc = data.get("document") or {}
        return {
            "documentId": doc.get("id") or document_id,
            "searchProfile": profile,
            "title": doc.get("title"),
            "url": doc.get("url"),
            "filename": doc.get("filename"),
            "documentType": doc.get("documentType") or doc.get("type"),
            "mimeType": doc.get("mimeType"),
            "language": doc.get("language"),
            "size": doc.get("size"),
            "sizeFormatted": format_file_size(doc.get("size")),
            "createdDate": doc.get("createdDate") or doc.get("created"),
            "lastModified": doc.get("lastModified") or doc.get("modified"),
            "author": doc.get("author") or doc.get("creator"),
        }
