"""Source tools for FastMCP.

Static tools load the configured sources and administer the caches; every
source configured with `exposeAs: "tool"` additionally becomes its own MCP tool
named `source_<id>`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP

from aihub_sources.sources.manager import SourceDescriptor, SourceManager, coerce_descriptor

logger = logging.getLogger(__name__)


def _make_source_tool(manager: SourceManager, tool_id: str, source_type: str) -> Callable[..., Any]:
    """Typed wrapper for one source tool; FastMCP derives the input schema from it."""

    async def run(params: Dict[str, Any]) -> Dict[str, Any]:
        result = await manager.execute_tool(tool_id, params)
        return result.to_dict()

    if source_type == "filesystem":

        async def filesystem_tool(path: Optional[str] = None) -> Dict[str, Any]:
            return await run({"path": path})

        return filesystem_tool

    if source_type == "url":

        async def url_tool(url: Optional[str] = None, max_content_length: Optional[int] = None) -> Dict[str, Any]:
            return await run({"url": url, "maxContentLength": max_content_length})

        return url_tool

    if source_type == "ifinder":

        async def ifinder_tool(
            query: Optional[str] = None,
            document_id: Optional[str] = None,
            max_results: Optional[int] = None,
        ) -> Dict[str, Any]:
            return await run({"query": query, "documentId": document_id, "maxResults": max_results})

        return ifinder_tool

    if source_type == "page":

        async def page_tool(language: Optional[str] = None) -> Dict[str, Any]:
            return await run({"language": language})

        return page_tool

    async def generic_tool() -> Dict[str, Any]:
        return await run({})

    return generic_tool


def register_source_tools(mcp: FastMCP, get_state: Callable[[], Any]) -> List[str]:
    """Register source tools on the given FastMCP instance.

    Reads `state.manager`, `state.descriptors` and `state.context`. Returns the
    names of the per-source tools that were registered.
    """

    @mcp.tool
    async def sources_load() -> Dict[str, Any]:
        """Load every configured source and return the aggregate result.

        Content of sources exposed as prompt is concatenated in `content`;
        failures are reported per source without aborting the others.
        """
        state = get_state()
        result = await state.manager.load_sources(state.descriptors, state.context)
        return result.to_dict()

    @mcp.tool
    def sources_list() -> List[Dict[str, Any]]:
        """List the configured sources (id, type, exposeAs, description)."""
        state = get_state()
        return [d.model_dump(by_alias=True, exclude={"config"}) for d in state.descriptors]

    @mcp.tool
    def sources_cache_stats() -> Dict[str, Dict[str, int]]:
        """Cache statistics per source type."""
        return get_state().manager.get_cache_stats()

    @mcp.tool
    async def sources_clear_caches() -> str:
        """Drop every cached entry of every source handler."""
        await get_state().manager.clear_all_caches()
        return "ok"

    state = get_state()
    manager: SourceManager = state.manager
    descriptors: List[SourceDescriptor] = [coerce_descriptor(d) for d in state.descriptors]
    registered: List[str] = []
    for tool in manager.generate_tools(descriptors, state.context):
        function = tool["function"]
        source_type = next(d.type for d in descriptors if f"source_{d.id}" == function["name"])
        fn = _make_source_tool(manager, function["name"], source_type)
        mcp.tool(fn, name=function["name"], description=function["description"])
        registered.append(function["name"])
    logger.info("MCP source tools registered. count=%s", len(registered))
    return registered
