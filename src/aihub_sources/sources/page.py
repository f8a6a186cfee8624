"""Static page source handler.

Pages live under `{pages_base_path}/{language}/{pageId}.jsx|.md`. A page that
is missing in the requested language is served from the default language, and
the generated link always points at the language actually served.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from aihub_sources.config import Settings
from aihub_sources.exceptions import AccessDeniedError, ConfigurationError, NotFoundError, UpstreamError
from aihub_sources.parsers.markdown_parser import MarkdownParser
from aihub_sources.sources.base import LoadResult, SourceHandler, run_batch, timestamp_iso, utc_now_iso

logger = logging.getLogger(__name__)

PAGE_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
LANGUAGE_RE = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
# Components win over Markdown when both exist
PAGE_EXTENSIONS = (".jsx", ".md")


def content_type_for(extension: str) -> str:
    return "react-component" if extension == ".jsx" else "markdown"


class PageHandler(SourceHandler):
    """Handler for `page` sources."""

    source_type = "page"
    default_ttl = 3600

    def __init__(
        self,
        pages_base_path: Optional[str | Path] = None,
        *,
        default_language: Optional[str] = None,
        base_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> None:
        cfg = settings or Settings()
        kwargs.setdefault("cache_ttl", cfg.pages.cache_ttl)
        super().__init__(**kwargs)
        chosen = pages_base_path or cfg.pages.base_path or cfg.content.contents_path / "pages"
        self.pages_base_path = Path(chosen).expanduser().resolve()
        self.default_language = default_language or cfg.pages.default_language
        self.base_url = base_url if base_url is not None else cfg.pages.base_url
        self._markdown = MarkdownParser()

    def _find_in_language(self, page_id: str, language: str) -> Optional[Tuple[Path, str]]:
        lang_dir = self.pages_base_path / language
        for ext in PAGE_EXTENSIONS:
            candidate = (lang_dir / f"{page_id}{ext}").resolve()
            if not candidate.is_relative_to(self.pages_base_path):
                raise AccessDeniedError(f"Access denied: page {page_id} is outside the pages directory")
            if candidate.is_file():
                return candidate, ext
        return None

    def _resolve_page(self, page_id: str, language: str) -> Tuple[Path, str, str]:
        """Return `(file, extension, served_language)` for a page, with default-language fallback."""
        found = self._find_in_language(page_id, language)
        if found is not None:
            return found[0], found[1], language
        if language != self.default_language:
            found = self._find_in_language(page_id, self.default_language)
            if found is not None:
                logger.debug(
                    "PageHandler resolve: falling back to default language. page_id=%s requested=%s",
                    page_id,
                    language,
                )
                return found[0], found[1], self.default_language
        raise NotFoundError(f"Page not found: {page_id} (tried languages: {language}, {self.default_language})")

    def generate_page_url(self, page_id: str, language: str, base_url: Optional[str] = None) -> str:
        clean_base = (base_url if base_url is not None else self.base_url or "").rstrip("/")
        if language == self.default_language:
            return f"{clean_base}/pages/{page_id}"
        return f"{clean_base}/{language}/pages/{page_id}"

    def _markdown_title(self, path: Path, content: str) -> Optional[str]:
        if not self._markdown.can_parse(path):
            return None
        return self._markdown.parse_markdown_content(content).title or None

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        if not isinstance(source_config, Mapping):
            return False
        page_id = source_config.get("pageId")
        if not isinstance(page_id, str) or not PAGE_ID_RE.match(page_id):
            return False
        language = source_config.get("language")
        if language and (not isinstance(language, str) or not LANGUAGE_RE.match(language)):
            return False
        return True

    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        page_id = source_config.get("pageId")
        language = source_config.get("language") or self.default_language
        base_url = source_config.get("baseUrl")
        if not page_id:
            raise ConfigurationError("PageHandler requires a pageId in sourceConfig")
        if not isinstance(page_id, str) or not PAGE_ID_RE.match(page_id):
            raise ConfigurationError(f"Invalid pageId: {page_id}")

        found_file, extension, served_language = await asyncio.to_thread(self._resolve_page, page_id, language)
        try:
            st = await asyncio.to_thread(found_file.stat)
            content = await asyncio.to_thread(found_file.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"Page file not found: {found_file}") from exc
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied: {found_file}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise UpstreamError(f"Error loading page {page_id}: {exc}") from exc

        return LoadResult(
            content=content,
            metadata={
                "type": "page",
                "pageId": page_id,
                "language": served_language,
                "requestedLanguage": language,
                "fileExtension": extension,
                "contentType": content_type_for(extension),
                "title": self._markdown_title(found_file, content),
                "link": self.generate_page_url(page_id, served_language, base_url),
                "filePath": str(found_file),
                "size": st.st_size,
                "modified": timestamp_iso(st.st_mtime),
                "created": timestamp_iso(float(getattr(st, "st_birthtime", st.st_ctime))),
                "loadedAt": utc_now_iso(),
            },
        )

    async def get_cache_key(self, source_config: Mapping[str, Any]) -> str:
        page_id = source_config.get("pageId")
        language = source_config.get("language") or self.default_language
        if not isinstance(page_id, str) or not PAGE_ID_RE.match(page_id):
            return await super().get_cache_key(source_config)

        def _stat() -> Tuple[Path, str, int]:
            found_file, _, served = self._resolve_page(page_id, language)
            return found_file, served, found_file.stat().st_mtime_ns // 1_000_000

        try:
            found_file, served, mtime_ms = await asyncio.to_thread(_stat)
        except (NotFoundError, AccessDeniedError, OSError):
            return await super().get_cache_key(source_config)
        key = {
            "file": str(found_file),
            "language": served,
            # metadata reports the requested language too
            "requestedLanguage": language,
            "baseUrl": source_config.get("baseUrl"),
        }
        return f"{json.dumps(key, sort_keys=True)}:{mtime_ms}"

    async def list_pages(self, language: Optional[str] = None) -> List[Dict[str, Any]]:
        """Pages available in `language`, sorted by page id."""
        lang = language or self.default_language
        lang_dir = self.pages_base_path / lang

        def _scan() -> List[Dict[str, Any]]:
            pages = []
            for entry in lang_dir.iterdir():
                if not entry.is_file() or entry.suffix not in PAGE_EXTENSIONS:
                    continue
                st = entry.stat()
                pages.append(
                    {
                        "pageId": entry.stem,
                        "language": lang,
                        "fileName": entry.name,
                        "extension": entry.suffix,
                        "contentType": content_type_for(entry.suffix),
                        "size": st.st_size,
                        "modified": timestamp_iso(st.st_mtime),
                        "url": self.generate_page_url(entry.stem, lang),
                    }
                )
            return sorted(pages, key=lambda p: (p["pageId"], p["extension"]))

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise UpstreamError(f"Error listing pages for language {lang}: {exc}") from exc

    async def get_available_languages(self) -> List[str]:
        def _scan() -> List[str]:
            return sorted(
                entry.name
                for entry in self.pages_base_path.iterdir()
                if entry.is_dir() and LANGUAGE_RE.match(entry.name)
            )

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise UpstreamError(f"Error getting available languages: {exc}") from exc

    async def page_exists(self, page_id: str) -> Dict[str, Any]:
        """Report each language a page exists in, with its format."""
        if not isinstance(page_id, str) or not PAGE_ID_RE.match(page_id):
            return {"exists": False, "languages": []}
        try:
            languages = await self.get_available_languages()
        except UpstreamError as exc:
            return {"exists": False, "languages": [], "error": str(exc)}

        found: List[Dict[str, str]] = []
        for lang in languages:
            hit = await asyncio.to_thread(self._find_in_language, page_id, lang)
            if hit is not None:
                found.append({"language": lang, "extension": hit[1], "contentType": content_type_for(hit[1])})
        return {"exists": bool(found), "languages": found}

    async def batch_load_pages(
        self,
        page_configs: Sequence[Mapping[str, Any]],
        *,
        concurrency: int = 5,
        failure_mode: str = "continue",
    ) -> List[LoadResult]:
        def on_error(page_config: Mapping[str, Any], exc: Exception) -> LoadResult:
            language = page_config.get("language") or self.default_language
            page_id = page_config.get("pageId")
            return LoadResult(
                content="",
                metadata={
                    "type": "page",
                    "pageId": page_id,
                    "language": language,
                    "link": self.generate_page_url(str(page_id), language, page_config.get("baseUrl")),
                    "error": str(exc),
                    "loadedAt": utc_now_iso(),
                },
            )

        return await run_batch(
            page_configs,
            self.get_cached_content,
            concurrency=concurrency,
            failure_mode=failure_mode,
            on_error=on_error,
        )
