from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseModel):
    """Application-specific configuration values."""

    name: str = "AI Hub Sources"
    env: str = "development"
    debug: bool = False  # forces DEBUG logging when set
    port: int = 8000
    log_level: str = "INFO"
    # Transport settings for FastMCP: "stdio" (default), "http", or "sse"
    transport: Literal["stdio", "http", "sse"] = "stdio"
    host: str = "127.0.0.1"
    # JSON file holding the source descriptors served by the MCP server
    sources_file: Optional[str] = None


class ContentConfig(BaseModel):
    """Content root under which filesystem and page reads are sandboxed."""

    root_dir: str = "."
    contents_dir: str = "contents"

    @property
    def contents_path(self) -> Path:
        return Path(self.root_dir) / self.contents_dir


class FilesystemConfig(BaseModel):
    """Filesystem source handler configuration values."""

    base_path: Optional[str] = None  # defaults to the content root
    # create <base_path>/sources on startup; the authoring UI writes there
    create_sources_dir: bool = True
    cache_ttl: int = 3600  # seconds
    timeout: Optional[float] = None


class URLConfig(BaseModel):
    """URL source handler configuration values."""

    cache_ttl: int = 7200
    timeout: float = 30.0
    # Platform-wide TLS policy used when a source does not set ignoreSSL
    ignore_invalid_certificates: bool = False
    user_agent: str = "AI-Hub-Apps/1.0 (+https://github.com/intrafind/ai-hub-apps)"
    max_content_length: int = 50000
    max_redirects: int = 5


class IFinderConfig(BaseModel):
    """iFinder document-search configuration values."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None
    default_search_profile: str = "default"
    timeout: float = 30.0
    cache_ttl: int = 7200
    search_endpoint: str = "/public-api/retrieval/api/v1/search-profiles/{profileId}/_search"
    document_endpoint: str = "/public-api/retrieval/api/v1/search-profiles/{profileId}/docs/{docId}"


class PagesConfig(BaseModel):
    """Static page handler configuration values."""

    base_path: Optional[str] = None  # defaults to <content root>/pages
    default_language: str = "en"
    base_url: str = ""
    cache_ttl: int = 3600


class ContextConfig(BaseModel):
    """Request context used when sources are served outside a chat request (MCP)."""

    user_id: Optional[str] = None
    user_email: Optional[str] = None
    chat_id: Optional[str] = None
    language: str = "en"


class Settings(BaseSettings):
    """Top-level settings loaded from environment variables and .env only."""

    model_config = SettingsConfigDict(
        env_prefix="AIHUB_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app: AppConfig = AppConfig()
    content: ContentConfig = ContentConfig()
    filesystem: FilesystemConfig = FilesystemConfig()
    url: URLConfig = URLConfig()
    ifinder: IFinderConfig = IFinderConfig()
    pages: PagesConfig = PagesConfig()
    context: ContextConfig = ContextConfig()


def load_settings() -> Settings:
    """Load settings from environment variables and .env only."""
    return Settings()  # type: ignore[call-arg]
