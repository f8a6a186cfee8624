"""iFinder source handler.

Resolves documents by id or by search query through a document-search
collaborator. Every request runs as an authenticated user within a chat, and
cache entries are scoped per user so that permission-filtered content is never
served to someone else.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from aihub_sources.config import Settings
from aihub_sources.connectors.ifinder import IFinderClient, ensure_user_context
from aihub_sources.exceptions import ConfigurationError, NotFoundError, SourceError, UpstreamError
from aihub_sources.sources.base import LoadResult, SourceHandler, run_batch, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 50000


class DocumentSearchClient(Protocol):
    """Boundary of the document-search service (implemented by `IFinderClient`)."""

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
        ...

    async def get_content(
        self,
        *,
        document_id: str,
        chat_id: str,
        user: Mapping[str, Any],
        search_profile: Optional[str] = None,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> Dict[str, Any]:
        ...

    async def get_metadata(
        self,
        *,
        document_id: str,
        chat_id: str,
        user: Mapping[str, Any],
        search_profile: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


def _is_authenticated(user: Any) -> bool:
    return isinstance(user, Mapping) and bool(user) and user.get("id") != "anonymous"


def user_identity(user: Any) -> str:
    if isinstance(user, Mapping) and user:
        return str(user.get("email") or user.get("id") or "anonymous")
    return "anonymous"


class IFinderHandler(SourceHandler):
    """Handler for `ifinder` sources.

    Parameters
    ----------
    client: DocumentSearchClient | None
        Search backend. Defaults to an `IFinderClient` built from settings; when
        iFinder is not configured every load fails with `ConfigurationError`.
    """

    source_type = "ifinder"
    default_ttl = 7200

    def __init__(
        self,
        client: Optional[DocumentSearchClient] = None,
        *,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> None:
        cfg = settings or Settings()
        kwargs.setdefault("cache_ttl", cfg.ifinder.cache_ttl)
        super().__init__(**kwargs)
        self.client: Optional[DocumentSearchClient] = client or IFinderClient.from_config(cfg.ifinder)

    def _require_client(self) -> DocumentSearchClient:
        if self.client is None:
            raise ConfigurationError(
                "iFinder is not configured. Provide AIHUB_IFINDER__BASE_URL in config/.env."
            )
        return self.client

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        if not isinstance(source_config, Mapping):
            return False
        if not source_config.get("documentId") and not source_config.get("query"):
            return False
        if not source_config.get("chatId"):
            return False
        return _is_authenticated(source_config.get("user"))

    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        document_id = source_config.get("documentId")
        query = source_config.get("query")
        search_profile = source_config.get("searchProfile")
        user = source_config.get("user")
        chat_id = source_config.get("chatId")
        max_length = int(source_config.get("maxLength") or DEFAULT_MAX_LENGTH)

        ensure_user_context(user, chat_id)
        if not document_id and not query:
            raise ConfigurationError("IFinderHandler requires either documentId or query in sourceConfig")
        client = self._require_client()

        try:
            search_results: Optional[Dict[str, Any]] = None
            target_id = document_id
            if not document_id:
                # Search first to resolve a document id
                search_results = await client.search(
                    query=query,
                    chat_id=chat_id,
                    user=user,
                    max_results=int(source_config.get("maxResults") or 1),
                    search_profile=search_profile,
                )
                hits = search_results.get("results") or []
                if not hits:
                    raise NotFoundError(f"No documents found for query: {query}")
                target_id = hits[0].get("id")

            content_result = await client.get_content(
                document_id=target_id,
                chat_id=chat_id,
                user=user,
                search_profile=search_profile,
                max_length=max_length,
            )
            meta = await client.get_metadata(
                document_id=target_id,
                chat_id=chat_id,
                user=user,
                search_profile=search_profile,
            )
        except UpstreamError as exc:
            raise UpstreamError(f"Error loading from iFinder: {exc}", status_code=exc.status_code) from exc
        except SourceError as exc:
            raise type(exc)(f"Error loading from iFinder: {exc}") from exc

        top_hit = (search_results or {}).get("results", [{}])[0] if search_results else {}
        logger.debug(
            "IFinderHandler load: fetched document. document_id=%s user=%s",
            target_id,
            user_identity(user),
        )
        return LoadResult(
            content=str(content_result.get("content") or ""),
            metadata={
                "type": "ifinder",
                "documentId": target_id,
                "title": meta.get("title"),
                "author": meta.get("author"),
                "documentType": meta.get("documentType"),
                "mimeType": meta.get("mimeType"),
                "size": meta.get("size"),
                "sizeFormatted": meta.get("sizeFormatted"),
                "createdDate": meta.get("createdDate"),
                "lastModified": meta.get("lastModified"),
                "contentLength": content_result.get("contentLength"),
                "contentLengthFormatted": content_result.get("contentLengthFormatted"),
                "truncated": bool(content_result.get("truncated")),
                "searchProfile": content_result.get("searchProfile") or search_profile,
                "searchQuery": query,
                "searchResults": search_results,
                "link": meta.get("url") or top_hit.get("url"),
                "loadedAt": utc_now_iso(),
            },
        )

    async def get_cache_key(self, source_config: Mapping[str, Any]) -> str:
        """Per-user key: identical queries by different users never share an entry."""
        return json.dumps(
            {
                "documentId": source_config.get("documentId"),
                "query": source_config.get("query"),
                "searchProfile": source_config.get("searchProfile"),
                "maxLength": source_config.get("maxLength"),
                "maxResults": source_config.get("maxResults"),
                "user": user_identity(source_config.get("user")),
            },
            sort_keys=True,
        )

    def validate_search_config(self, search_config: Mapping[str, Any]) -> bool:
        if not isinstance(search_config, Mapping):
            return False
        query = search_config.get("query")
        if not isinstance(query, str) or not query.strip():
            return False
        chat_id = search_config.get("chatId")
        if not isinstance(chat_id, str) or not chat_id:
            return False
        return _is_authenticated(search_config.get("user"))

    async def search_documents(
        self,
        *,
        query: str,
        user: Mapping[str, Any],
        chat_id: str,
        max_results: int = 10,
        search_profile: Optional[str] = None,
        return_fields: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Ranked document metadata for `query`; no content is fetched."""
        if not self.validate_search_config({"query": query, "user": user, "chatId": chat_id}):
            raise ConfigurationError("Invalid search configuration for iFinder")
        client = self._require_client()
        try:
            search_results = await client.search(
                query=query,
                chat_id=chat_id,
                user=user,
                max_results=max_results,
                search_profile=search_profile,
                return_fields=return_fields,
            )
        except UpstreamError as exc:
            raise UpstreamError(f"Error searching iFinder: {exc}", status_code=exc.status_code) from exc
        except SourceError as exc:
            raise type(exc)(f"Error searching iFinder: {exc}") from exc

        return [
            {
                "documentId": hit.get("id"),
                "title": hit.get("title"),
                "author": hit.get("author"),
                "documentType": hit.get("documentType"),
                "mimeType": hit.get("mimeType"),
                "createdDate": hit.get("createdDate"),
                "lastModified": hit.get("lastModified"),
                "score": hit.get("score"),
                "teasers": hit.get("teasers"),
                "filename": hit.get("filename"),
                "url": hit.get("url"),
                "size": hit.get("size"),
            }
            for hit in search_results.get("results") or []
        ]

    async def batch_load_documents(
        self,
        document_ids: Sequence[str],
        *,
        user: Mapping[str, Any],
        chat_id: str,
        search_profile: Optional[str] = None,
        concurrency: int = 3,
        failure_mode: str = "continue",
    ) -> List[LoadResult]:
        if not user or not chat_id:
            raise ConfigurationError("batch_load_documents requires user and chat_id")

        async def load_one(document_id: str) -> LoadResult:
            return await self.get_cached_content(
                {"documentId": document_id, "user": user, "chatId": chat_id, "searchProfile": search_profile}
            )

        def on_error(document_id: str, exc: Exception) -> LoadResult:
            return LoadResult(
                content="",
                metadata={
                    "type": "ifinder",
                    "documentId": document_id,
                    "link": None,
                    "error": str(exc),
                    "loadedAt": utc_now_iso(),
                },
            )

        return await run_batch(
            document_ids,
            load_one,
            concurrency=concurrency,
            failure_mode=failure_mode,
            on_error=on_error,
        )
