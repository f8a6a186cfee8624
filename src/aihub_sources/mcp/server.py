"""aihub-sources MCP server entrypoint using FastMCP.

Exposes the configured content sources as MCP tools.
Run with:
  - aihub-sources-mcp
  - or: python -m aihub_sources.mcp.server (ensure PYTHONPATH includes ./src)

Sources are read from the JSON file named by AIHUB_APP__SOURCES_FILE, either a
list of source descriptors or an app object with a "sources" list.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP

from aihub_sources.config import Settings, load_settings
from aihub_sources.exceptions import ConfigurationError
from aihub_sources.log_setup import setup_logging
from aihub_sources.mcp.tools import register_source_tools
from aihub_sources.sources.manager import SourceDescriptor, SourceManager, coerce_descriptor

logger = logging.getLogger(__name__)


def load_descriptors(path: Optional[str]) -> List[SourceDescriptor]:
    """Read source descriptors from a JSON file; no file means no sources."""
    if not path:
        return []
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read sources file {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("sources") or []
    if not isinstance(data, list):
        raise ConfigurationError(f"Sources file {path} must contain a list of sources")
    return [coerce_descriptor(item) for item in data]


def build_context(settings: Settings) -> Dict[str, Any]:
    """Request context for loads made outside a chat request."""
    cfg = settings.context
    context: Dict[str, Any] = {"language": cfg.language}
    if cfg.user_id or cfg.user_email:
        context["user"] = {"id": cfg.user_id or cfg.user_email, "email": cfg.user_email}
    if cfg.chat_id:
        context["chatId"] = cfg.chat_id
    return context


class AppState:
    """Application state shared by MCP tools."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.manager: Optional[SourceManager] = None
        self.descriptors: List[SourceDescriptor] = []
        self.context: Dict[str, Any] = {}

    def init_sources(self) -> None:
        """Build the source manager and read the configured sources."""
        self.manager = SourceManager(self.settings)
        self.descriptors = load_descriptors(self.settings.app.sources_file)
        self.context = build_context(self.settings)
        logger.info(
            "MCP server state initialized. sources=%s handlers=%s",
            len(self.descriptors),
            ",".join(self.manager.get_handler_types()),
        )


# Global state
_state: Optional[AppState] = None


def health() -> str:
    """Simple health check tool."""
    return "ok"


def build_server(settings: Settings, get_state: Callable[[], Any]) -> FastMCP:
    """Create the FastMCP server titled after `settings.app.name` and register its tools."""
    mcp = FastMCP(settings.app.name)
    mcp.tool(health)
    register_source_tools(mcp, get_state=get_state)
    return mcp


# ----- Entrypoint -----

def main() -> None:
    """Initialize state and run the MCP server."""
    global _state
    settings = load_settings()
    setup_logging("DEBUG" if settings.app.debug else settings.app.log_level)
    _state = AppState(settings)
    _state.init_sources()
    mcp = build_server(settings, get_state=lambda: _state)
    # Choose transport based on configuration: stdio (default), http, or sse
    transport = settings.app.transport
    logger.info("MCP server starting. name=%s env=%s transport=%s", settings.app.name, settings.app.env, transport)
    if transport in ("http", "sse"):
        mcp.run(transport=transport, host=settings.app.host, port=settings.app.port)
    else:
        mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
