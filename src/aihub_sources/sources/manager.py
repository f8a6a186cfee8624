"""Source orchestration.

`SourceManager` owns the handler registry, loads an app's sources in order,
and turns tool-exposed sources into function-calling tool descriptors with a
matching executor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aihub_sources.config import Settings
from aihub_sources.connectors.ifinder import IFinderClient
from aihub_sources.connectors.web_extractor import WebContentExtractor
from aihub_sources.exceptions import ConfigurationError, ToolNotFoundError
from aihub_sources.sources.base import LoadResult, SourceHandler, utc_now_iso
from aihub_sources.sources.filesystem import FileSystemHandler
from aihub_sources.sources.ifinder import IFinderHandler
from aihub_sources.sources.page import PageHandler
from aihub_sources.sources.url import URLHandler

logger = logging.getLogger(__name__)

SOURCE_DELIMITER = "\n\n--- Source: {id} ---\n"

ToolExecutor = Callable[[Mapping[str, Any], Mapping[str, Any]], Awaitable[LoadResult]]


class SourceType(str, Enum):
    FILESYSTEM = "filesystem"
    URL = "url"
    IFINDER = "ifinder"
    PAGE = "page"


class SourceDescriptor(BaseModel):
    """One configured source of an app."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: str
    config: Dict[str, Any]
    expose_as: Literal["prompt", "tool"] = Field(default="prompt", alias="exposeAs")
    description: Union[str, Dict[str, str], None] = None


DescriptorLike = Union[SourceDescriptor, Mapping[str, Any]]


def coerce_descriptor(descriptor: DescriptorLike) -> SourceDescriptor:
    if isinstance(descriptor, SourceDescriptor):
        return descriptor
    try:
        return SourceDescriptor.model_validate(descriptor)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid source configuration: {exc.errors(include_url=False)}") from exc


@dataclass(slots=True)
class SourceResult:
    id: str
    type: str
    expose_as: str
    content: str
    metadata: Dict[str, Any]
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "exposeAs": self.expose_as,
            "content": self.content,
            "metadata": dict(self.metadata),
            "success": self.success,
        }


@dataclass(slots=True)
class AggregateLoadResult:
    """Outcome of `SourceManager.load_sources()`; partial failure is a normal result."""

    sources: List[SourceResult] = field(default_factory=list)
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": [s.to_dict() for s in self.sources],
            "content": self.content,
            "metadata": dict(self.metadata),
        }


@dataclass(slots=True)
class AppSourcesResult:
    sources: List[SourceResult] = field(default_factory=list)
    content: str = ""
    tools: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": [s.to_dict() for s in self.sources],
            "content": self.content,
            "tools": list(self.tools),
            "metadata": dict(self.metadata),
        }


def localized_description(description: Union[str, Mapping[str, str], None], language: Optional[str]) -> Optional[str]:
    """Pick `language`, then English, then the first available translation."""
    if description is None or isinstance(description, str):
        return description or None
    if not description:
        return None
    if language and description.get(language):
        return description[language]
    if description.get("en"):
        return description["en"]
    return next(iter(description.values()))


def generate_tool_parameters(source_type: str) -> Dict[str, Any]:
    """JSON schema of the parameters an LLM may pass to a source tool."""
    properties: Dict[str, Any] = {}
    if source_type == SourceType.FILESYSTEM.value:
        properties["path"] = {
            "type": "string",
            "description": "File path to load (optional if configured in source)",
        }
    elif source_type == SourceType.URL.value:
        properties["url"] = {"type": "string", "description": "URL to fetch (optional if configured in source)"}
        properties["maxContentLength"] = {"type": "number", "description": "Maximum content length to fetch"}
    elif source_type == SourceType.IFINDER.value:
        properties["query"] = {"type": "string", "description": "Search query for documents"}
        properties["documentId"] = {"type": "string", "description": "Specific document ID to retrieve"}
        properties["maxResults"] = {"type": "number", "description": "Maximum number of search results"}
    elif source_type == SourceType.PAGE.value:
        properties["language"] = {"type": "string", "description": "Language code of the page, e.g. en or de"}
    return {"type": "object", "properties": properties, "required": []}


def build_default_handlers(settings: Settings) -> Dict[str, SourceHandler]:
    """Handlers for every built-in source type, wired from settings."""
    return {
        SourceType.FILESYSTEM.value: FileSystemHandler(settings=settings),
        SourceType.URL.value: URLHandler(WebContentExtractor.from_config(settings.url), settings=settings),
        SourceType.IFINDER.value: IFinderHandler(IFinderClient.from_config(settings.ifinder), settings=settings),
        SourceType.PAGE.value: PageHandler(settings=settings),
    }


class SourceManager:
    """Registry of source handlers plus the load and tool entry points.

    Parameters
    ----------
    settings: Settings | None
        Used to build the default handlers.
    handlers: Mapping[str, SourceHandler] | None
        Replaces the default handler set when given.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        handlers: Optional[Mapping[str, SourceHandler]] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._handlers: Dict[str, SourceHandler] = {}
        self._tool_registry: Dict[str, ToolExecutor] = {}
        self._tool_contexts: Dict[str, Dict[str, Any]] = {}
        initial = handlers if handlers is not None else build_default_handlers(self.settings)
        for source_type, handler in initial.items():
            self.register_handler(source_type, handler)

    # ----- Registry -----

    def register_handler(self, source_type: str, handler: SourceHandler) -> None:
        if not isinstance(source_type, str) or not source_type.strip():
            raise ConfigurationError("Handler type must be a non-empty string")
        if handler is None or not callable(getattr(handler, "load_content", None)):
            raise ConfigurationError("Handler must implement load_content")
        self._handlers[source_type] = handler
        logger.debug("SourceManager registry: handler registered. type=%s", source_type)

    def get_handler(self, source_type: str) -> SourceHandler:
        handler = self._handlers.get(source_type)
        if handler is None:
            raise ConfigurationError(f"No handler registered for type: {source_type}")
        return handler

    def get_handler_types(self) -> List[str]:
        return list(self._handlers)

    def validate_source_config(
        self,
        descriptor: DescriptorLike,
        context: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Check descriptor shape, then let the handler check the context-merged config."""
        try:
            source = coerce_descriptor(descriptor)
        except ConfigurationError:
            return False
        if not source.id.strip() or source.type not in self._handlers:
            return False
        merged = {**source.config, **(context or {})}
        return bool(self._handlers[source.type].validate_config(merged))

    # ----- Loading -----

    async def load_sources(
        self,
        descriptors: Sequence[DescriptorLike],
        context: Optional[Mapping[str, Any]] = None,
    ) -> AggregateLoadResult:
        """Load every descriptor in order; failures become per-source error records."""
        ctx = dict(context or {})
        results: List[SourceResult] = []
        errors: List[str] = []
        parts: List[str] = []

        for raw in descriptors or []:
            source_id, source_type, expose_as = _identity(raw)
            try:
                source = coerce_descriptor(raw)
                if not self.validate_source_config(source, ctx):
                    raise ConfigurationError(f"Invalid source configuration: {source.id} ({source.type})")
                handler = self.get_handler(source.type)
                result = await handler.get_cached_content({**source.config, **ctx})
            except Exception as exc:
                logger.warning("SourceManager load: source failed. id=%s type=%s error=%s", source_id, source_type, exc)
                results.append(
                    SourceResult(
                        id=source_id,
                        type=source_type,
                        expose_as=expose_as,
                        content="",
                        metadata={"error": str(exc)},
                        success=False,
                    )
                )
                errors.append(f"Source {source_id}: {exc}")
                continue

            results.append(
                SourceResult(
                    id=source.id,
                    type=source.type,
                    expose_as=source.expose_as,
                    content=result.content,
                    metadata=dict(result.metadata),
                    success=True,
                )
            )
            if source.expose_as != "tool":
                parts.append(SOURCE_DELIMITER.format(id=source.id) + result.content)

        loaded = sum(1 for r in results if r.success)
        logger.info(
            "SourceManager load: finished. total=%s loaded=%s failed=%s",
            len(results),
            loaded,
            len(results) - loaded,
        )
        return AggregateLoadResult(
            sources=results,
            content="".join(parts).strip(),
            metadata={
                "totalSources": len(results),
                "loadedSources": loaded,
                "failedSources": len(results) - loaded,
                "errors": errors,
                "loadedAt": utc_now_iso(),
            },
        )

    # ----- Tools -----

    def generate_tools(
        self,
        descriptors: Sequence[DescriptorLike],
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Tool descriptors for every `exposeAs == "tool"` source; registers their executors."""
        ctx = dict(context or {})
        tools: List[Dict[str, Any]] = []
        for raw in descriptors or []:
            try:
                source = coerce_descriptor(raw)
            except ConfigurationError as exc:
                logger.warning("SourceManager tools: skipping invalid descriptor. error=%s", exc)
                continue
            if source.expose_as != "tool" or source.type not in self._handlers:
                continue
            tools.append(self._create_source_tool(source, ctx))
        return tools

    def _create_source_tool(self, source: SourceDescriptor, context: Dict[str, Any]) -> Dict[str, Any]:
        handler = self._handlers[source.type]
        tool_id = f"source_{source.id}"

        async def execute(params: Mapping[str, Any], call_context: Mapping[str, Any]) -> LoadResult:
            supplied = {k: v for k, v in (params or {}).items() if v is not None}
            merged = {**source.config, **call_context, **supplied}
            # Parameters come from the model; reject anything the handler would refuse
            if not handler.validate_config(merged):
                raise ConfigurationError(f"Invalid parameters for tool {tool_id}")
            return await handler.get_cached_content(merged)

        self._tool_registry[tool_id] = execute
        self._tool_contexts[tool_id] = context
        description = localized_description(source.description, context.get("language"))
        return {
            "type": "function",
            "function": {
                "name": tool_id,
                "description": description or f"Load content from {source.type} source: {source.id}",
                "parameters": generate_tool_parameters(source.type),
            },
        }

    async def execute_tool(
        self,
        tool_id: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        context: Optional[Mapping[str, Any]] = None,
    ) -> LoadResult:
        """Run a registered source tool.

        Without `context` the tool runs with the context of the last
        `generate_tools()` call that registered it. A manager shared between
        users must pass the caller's context here, otherwise iFinder tools
        load documents under the identity of whoever generated the tools last.
        """
        executor = self._tool_registry.get(tool_id)
        if executor is None:
            raise ToolNotFoundError(f"Tool not found: {tool_id}")
        call_context = dict(context) if context is not None else self._tool_contexts.get(tool_id, {})
        logger.debug("SourceManager tool: executing. tool_id=%s", tool_id)
        return await executor(params or {}, call_context)

    # ----- Cache administration -----

    async def clear_all_caches(self) -> None:
        for handler in self._handlers.values():
            await handler.clear_cache()

    def get_cache_stats(self) -> Dict[str, Dict[str, int]]:
        return {source_type: handler.get_cache_stats() for source_type, handler in self._handlers.items()}

    async def process_app_sources(
        self,
        app: Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> AppSourcesResult:
        """Load an app's sources and generate its source tools in one call."""
        sources = app.get("sources") if isinstance(app, Mapping) else None
        if not isinstance(sources, list):
            return AppSourcesResult(
                metadata={"totalSources": 0, "loadedSources": 0, "failedSources": 0, "errors": []}
            )
        loaded = await self.load_sources(sources, context)
        return AppSourcesResult(
            sources=loaded.sources,
            content=loaded.content,
            tools=self.generate_tools(sources, context),
            metadata=loaded.metadata,
        )


def _identity(raw: DescriptorLike) -> tuple:
    """Best-effort `(id, type, exposeAs)` of a descriptor that may not validate."""
    if isinstance(raw, SourceDescriptor):
        return raw.id, raw.type, raw.expose_as
    if isinstance(raw, Mapping):
        return str(raw.get("id", "")), str(raw.get("type", "")), str(raw.get("exposeAs") or "prompt")
    return "", "", "prompt"
