"""Filesystem source handler.

Loads text files from a sandboxed content directory and offers the write,
delete and listing operations used by the authoring UI. Every path is resolved
(symlinks included) and must stay inside the base path.
"""
from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import stat as stat_mod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from aihub_sources.config import Settings
from aihub_sources.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    NotFoundError,
    UpstreamError,
)
from aihub_sources.sources.base import LoadResult, SourceHandler, timestamp_iso, utc_now_iso

logger = logging.getLogger(__name__)


def _created_time(st: os.stat_result) -> float:
    # st_birthtime exists on macOS/BSD (and Windows on 3.12+); ctime elsewhere
    return float(getattr(st, "st_birthtime", st.st_ctime))


def _file_entry(name: str, rel_path: str, st: os.stat_result) -> Dict[str, Any]:
    return {
        "name": name,
        "path": rel_path,
        "size": st.st_size,
        "modified": timestamp_iso(st.st_mtime),
        "extension": Path(name).suffix.lower(),
    }


class FileSystemHandler(SourceHandler):
    """Handler for `filesystem` sources.

    Parameters
    ----------
    base_path: str | Path | None
        Directory all reads and writes are confined to. Defaults to
        `settings.filesystem.base_path`, then the configured content root.
    """

    source_type = "filesystem"
    default_ttl = 3600

    def __init__(
        self,
        base_path: Optional[str | Path] = None,
        *,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> None:
        cfg = settings or Settings()
        kwargs.setdefault("cache_ttl", cfg.filesystem.cache_ttl)
        kwargs.setdefault("timeout", cfg.filesystem.timeout)
        super().__init__(**kwargs)
        chosen = base_path or cfg.filesystem.base_path or cfg.content.contents_path
        self.base_path = Path(chosen).expanduser().resolve()
        if cfg.filesystem.create_sources_dir:
            self.ensure_sources_directory()
        logger.info("FileSystemHandler initialized. base_path=%s", self.base_path)

    def ensure_sources_directory(self) -> Optional[Path]:
        """Create `<base_path>/sources`; a failure is logged, not raised."""
        sources_path = self.base_path / "sources"
        try:
            sources_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("FileSystemHandler sources directory not created. path=%s error=%s", sources_path, exc)
            return None
        return sources_path

    # ----- Path confinement -----

    def resolve_path(self, rel_path: str) -> Path:
        """Resolve `rel_path` against the base path, refusing anything outside it."""
        full = (self.base_path / rel_path.lstrip("/\\")).resolve()
        if not full.is_relative_to(self.base_path):
            raise AccessDeniedError(f"Access denied: path {rel_path} is outside allowed directory")
        return full

    # ----- SourceHandler contract -----

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        if not isinstance(source_config, Mapping):
            return False
        path = source_config.get("path")
        if not isinstance(path, str) or not path.strip():
            return False
        # Check for suspicious path patterns
        if ".." in path or "~" in path or os.path.isabs(path) or path.startswith(("/", "\\")):
            return False
        return True

    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        file_path = source_config.get("path")
        encoding = source_config.get("encoding") or "utf-8"
        url = source_config.get("url")
        if not file_path:
            raise ConfigurationError("FileSystemHandler requires a path in sourceConfig")
        try:
            codecs.lookup(encoding)
        except LookupError as exc:
            raise ConfigurationError(f"Unknown encoding for {file_path}: {encoding}") from exc

        full_path = self.resolve_path(file_path)
        try:
            st = await asyncio.to_thread(full_path.stat)
            if not stat_mod.S_ISREG(st.st_mode):
                raise NotFoundError(f"Path {file_path} is not a file")
            content = await asyncio.to_thread(full_path.read_text, encoding=encoding)
        except FileNotFoundError as exc:
            raise NotFoundError(f"File not found: {file_path}") from exc
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied: {file_path}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise UpstreamError(f"Error loading file {file_path}: {exc}") from exc

        logger.debug("FileSystemHandler load: read file. path=%s size=%s", file_path, st.st_size)
        return LoadResult(
            content=content,
            metadata={
                "type": "file",
                "path": file_path,
                "fullPath": str(full_path),
                # custom URL when provided, otherwise a file:// URL
                "link": url or full_path.as_uri(),
                "size": st.st_size,
                "modified": timestamp_iso(st.st_mtime),
                "created": timestamp_iso(_created_time(st)),
                "encoding": encoding,
                "extension": full_path.suffix.lower(),
                "loadedAt": utc_now_iso(),
            },
        )

    async def get_cache_key(self, source_config: Mapping[str, Any]) -> str:
        """Key on the resolved file plus its modification time.

        Editing the file changes the key, so the next read misses the cache.
        """
        try:
            full_path = self.resolve_path(str(source_config.get("path") or ""))
            st = await asyncio.to_thread(full_path.stat)
        except (AccessDeniedError, OSError):
            return await super().get_cache_key(source_config)
        key = {
            "path": str(full_path),
            "url": source_config.get("url"),
            "encoding": source_config.get("encoding") or "utf-8",
        }
        return f"{json.dumps(key, sort_keys=True)}:{st.st_mtime_ns // 1_000_000}"

    def cache_tag(self, source_config: Mapping[str, Any]) -> Optional[str]:
        try:
            return str(self.resolve_path(str(source_config.get("path") or "")))
        except AccessDeniedError:
            return None

    def clear_file_cache(self, file_path: str) -> int:
        """Drop every cache entry loaded from `file_path`."""
        removed = self.cache.purge_tag(str(self.resolve_path(file_path)))
        if removed:
            logger.debug("FileSystemHandler cache: purged entries. path=%s removed=%s", file_path, removed)
        return removed

    # ----- Authoring operations -----

    async def file_exists(self, file_path: str) -> bool:
        try:
            full_path = self.resolve_path(file_path)
        except AccessDeniedError:
            return False
        return await asyncio.to_thread(full_path.is_file)

    async def write_file(self, file_path: str, content: str, encoding: str = "utf-8") -> Dict[str, Any]:
        """Write `content` to `file_path`, creating parent directories as needed."""
        if not file_path or not isinstance(file_path, str):
            raise ConfigurationError("File path is required")
        if not isinstance(content, str):
            raise ConfigurationError("Content must be a string")
        full_path = self.resolve_path(file_path)

        def _write() -> os.stat_result:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding=encoding)
            return full_path.stat()

        try:
            st = await asyncio.to_thread(_write)
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied: {file_path}") from exc
        except (OSError, LookupError, UnicodeEncodeError) as exc:
            raise UpstreamError(f"Error writing file {file_path}: {exc}") from exc

        self.clear_file_cache(file_path)
        logger.info("FileSystemHandler write: wrote file. path=%s size=%s", file_path, st.st_size)
        return {
            "success": True,
            "path": file_path,
            "fullPath": str(full_path),
            "size": st.st_size,
            "modified": timestamp_iso(st.st_mtime),
            "encoding": encoding,
        }

    async def delete_file(self, file_path: str) -> Dict[str, Any]:
        if not file_path or not isinstance(file_path, str):
            raise ConfigurationError("File path is required")
        full_path = self.resolve_path(file_path)
        try:
            await asyncio.to_thread(full_path.unlink)
        except FileNotFoundError as exc:
            raise NotFoundError(f"File not found: {file_path}") from exc
        except PermissionError as exc:
            raise AccessDeniedError(f"Permission denied: {file_path}") from exc
        except OSError as exc:
            raise UpstreamError(f"Error deleting file {file_path}: {exc}") from exc

        self.clear_file_cache(file_path)
        logger.info("FileSystemHandler delete: removed file. path=%s", file_path)
        return {"success": True, "path": file_path, "deleted": True}

    async def create_directory(self, dir_path: str) -> Dict[str, Any]:
        if not dir_path or not isinstance(dir_path, str):
            raise ConfigurationError("Directory path is required")
        full_path = self.resolve_path(dir_path)
        try:
            await asyncio.to_thread(full_path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise UpstreamError(f"Error creating directory {dir_path}: {exc}") from exc
        return {"success": True, "path": dir_path, "fullPath": str(full_path), "created": True}

    async def list_files(self, dir_path: str = "") -> List[Dict[str, Any]]:
        full_path = self.resolve_path(dir_path)

        def _scan() -> List[Dict[str, Any]]:
            files = []
            for entry in os.scandir(full_path):
                if entry.is_file():
                    files.append(_file_entry(entry.name, os.path.join(dir_path, entry.name), entry.stat()))
            return sorted(files, key=lambda f: f["name"])

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise UpstreamError(f"Error listing files in {dir_path}: {exc}") from exc

    async def list_directories(self, dir_path: str = "") -> List[Dict[str, Any]]:
        full_path = self.resolve_path(dir_path)

        def _scan() -> List[Dict[str, Any]]:
            dirs = [
                {"name": entry.name, "path": os.path.join(dir_path, entry.name)}
                for entry in os.scandir(full_path)
                if entry.is_dir()
            ]
            return sorted(dirs, key=lambda d: d["name"])

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise UpstreamError(f"Error listing directories in {dir_path}: {exc}") from exc

    async def get_file_tree(self, dir_path: str = "", max_depth: int = 3) -> Dict[str, Any]:
        """Nested `{files, directories}` listing down to `max_depth` levels."""
        full_path = self.resolve_path(dir_path)

        def _walk(current: Path, rel: str, depth: int) -> Dict[str, Any]:
            if depth >= max_depth:
                return {"files": [], "directories": []}
            files: List[Dict[str, Any]] = []
            directories: List[Dict[str, Any]] = []
            for entry in os.scandir(current):
                entry_rel = os.path.join(rel, entry.name)
                if entry.is_file():
                    files.append(_file_entry(entry.name, entry_rel, entry.stat()))
                elif entry.is_dir():
                    try:
                        sub_path = self.resolve_path(entry_rel)
                    except AccessDeniedError:
                        logger.debug("FileSystemHandler tree: skipping link outside base. path=%s", entry_rel)
                        continue
                    directories.append(
                        {"name": entry.name, "path": entry_rel, **_walk(sub_path, entry_rel, depth + 1)}
                    )
            return {
                "files": sorted(files, key=lambda f: f["name"]),
                "directories": sorted(directories, key=lambda d: d["name"]),
            }

        try:
            return await asyncio.to_thread(_walk, full_path, dir_path, 0)
        except OSError as exc:
            raise UpstreamError(f"Error getting file tree for {dir_path}: {exc}") from exc
