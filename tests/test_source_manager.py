from pathlib import Path
from typing import Any, Dict, List, Mapping

import pytest

from aihub_sources.config import Settings
from aihub_sources.exceptions import ConfigurationError, NotFoundError, ToolNotFoundError
from aihub_sources.sources.base import LoadResult, SourceHandler
from aihub_sources.sources.filesystem import FileSystemHandler
from aihub_sources.sources.ifinder import IFinderHandler
from aihub_sources.sources.manager import (
    SourceDescriptor,
    SourceManager,
    generate_tool_parameters,
    localized_description,
)

ALICE = {"id": "alice", "email": "alice@example.com"}
CONTEXT = {"user": ALICE, "chatId": "chat-1"}


class RecordingSearchClient:
    def __init__(self) -> None:
        self.queries: List[Dict[str, Any]] = []

    async def search(self, *, query: str, chat_id: str, user: Mapping[str, Any], max_results: int = 10, **kwargs: Any) -> Dict[str, Any]:
        self.queries.append({"query": query, "chat_id": chat_id, "user": user, "max_results": max_results})
        return {"query": query, "results": [{"id": "doc-9", "url": "https://intranet/doc-9"}]}

    async def get_content(self, *, document_id: str, **kwargs: Any) -> Dict[str, Any]:
        return {"documentId": document_id, "content": f"body of {document_id}", "contentLength": 14, "truncated": False}

    async def get_metadata(self, *, document_id: str, **kwargs: Any) -> Dict[str, Any]:
        return {"documentId": document_id, "title": "Doc 9", "url": None}


class StaticHandler(SourceHandler):
    source_type = "static"

    async def load_content(self, source_config: Mapping[str, Any]) -> LoadResult:
        if source_config.get("fail"):
            raise NotFoundError(f"Static text missing: {source_config.get('name')}")
        return LoadResult(
            content=str(source_config.get("text", "")),
            metadata={"type": "static", "link": None, "loadedAt": "now"},
        )

    def validate_config(self, source_config: Mapping[str, Any]) -> bool:
        return "text" in source_config or "fail" in source_config


@pytest.fixture()
def manager(tmp_path: Path) -> SourceManager:
    (tmp_path / "policy.md").write_text("Be kind.", encoding="utf-8")
    handlers = {
        "filesystem": FileSystemHandler(tmp_path),
        "ifinder": IFinderHandler(RecordingSearchClient()),
        "static": StaticHandler(),
    }
    return SourceManager(Settings(), handlers=handlers)


def test_default_handlers_are_registered(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    mgr = SourceManager(Settings())
    assert mgr.get_handler_types() == ["filesystem", "url", "ifinder", "page"]
    with pytest.raises(ConfigurationError, match="No handler registered for type: ftp"):
        mgr.get_handler("ftp")


def test_register_handler_checks_arguments(manager: SourceManager) -> None:
    with pytest.raises(ConfigurationError):
        manager.register_handler("", StaticHandler())
    with pytest.raises(ConfigurationError):
        manager.register_handler("broken", object())  # type: ignore[arg-type]
    manager.register_handler("static2", StaticHandler())
    assert "static2" in manager.get_handler_types()


def test_validate_source_config(manager: SourceManager) -> None:
    good = {"id": "rules", "type": "filesystem", "config": {"path": "policy.md"}}
    assert manager.validate_source_config(good)
    assert manager.validate_source_config(SourceDescriptor.model_validate(good))
    assert not manager.validate_source_config({**good, "id": "  "})
    assert not manager.validate_source_config({**good, "type": "ftp"})
    assert not manager.validate_source_config({**good, "exposeAs": "sidebar"})
    assert not manager.validate_source_config({**good, "config": {"path": "../etc/passwd"}})
    assert not manager.validate_source_config({"id": "x", "type": "filesystem"})

    docs = {"id": "docs", "type": "ifinder", "config": {"query": "travel"}}
    # user and chat id only arrive with the request context
    assert not manager.validate_source_config(docs)
    assert manager.validate_source_config(docs, CONTEXT)


@pytest.mark.asyncio
async def test_load_sources_keeps_order_and_reports_failures(manager: SourceManager) -> None:
    descriptors = [
        {"id": "intro", "type": "static", "config": {"text": "Hello"}},
        {"id": "gone", "type": "static", "config": {"fail": True, "name": "gone"}},
        {"id": "rules", "type": "filesystem", "config": {"path": "policy.md"}},
    ]

    result = await manager.load_sources(descriptors, CONTEXT)

    assert [s.id for s in result.sources] == ["intro", "gone", "rules"]
    assert [s.success for s in result.sources] == [True, False, True]
    assert result.metadata["totalSources"] == 3
    assert result.metadata["loadedSources"] == 2
    assert result.metadata["failedSources"] == 1
    assert result.metadata["errors"] == ["Source gone: Static text missing: gone"]
    assert result.sources[1].metadata == {"error": "Static text missing: gone"}
    assert result.content == "--- Source: intro ---\nHello\n\n--- Source: rules ---\nBe kind."


@pytest.mark.asyncio
async def test_load_sources_reports_invalid_descriptors(manager: SourceManager) -> None:
    result = await manager.load_sources(
        [
            {"id": "bad", "type": "ftp", "config": {}},
            {"id": "noconfig", "type": "static"},
        ]
    )
    assert result.metadata["failedSources"] == 2
    assert all(e.startswith("Source bad: Invalid source configuration") for e in result.metadata["errors"][:1])
    assert result.content == ""


@pytest.mark.asyncio
async def test_tool_sources_are_not_concatenated(manager: SourceManager) -> None:
    descriptors = [
        {"id": "intro", "type": "static", "config": {"text": "Hello"}},
        {"id": "lookup", "type": "static", "config": {"text": "Tool only"}, "exposeAs": "tool"},
    ]
    result = await manager.load_sources(descriptors)
    assert result.content == "--- Source: intro ---\nHello"
    assert result.sources[1].expose_as == "tool"
    assert result.to_dict()["sources"][1]["exposeAs"] == "tool"


@pytest.mark.asyncio
async def test_ifinder_tool_schema_and_execution(manager: SourceManager) -> None:
    descriptors = [
        {
            "id": "docs",
            "type": "ifinder",
            "config": {"searchProfile": "hr"},
            "exposeAs": "tool",
            "description": {"de": "Dokumente durchsuchen", "en": "Search documents"},
        },
        {"id": "intro", "type": "static", "config": {"text": "Hello"}},
    ]

    tools = manager.generate_tools(descriptors, {**CONTEXT, "language": "de"})

    assert len(tools) == 1
    fn = tools[0]["function"]
    assert tools[0]["type"] == "function"
    assert fn["name"] == "source_docs"
    assert fn["description"] == "Dokumente durchsuchen"
    assert set(fn["parameters"]["properties"]) == {"query", "documentId", "maxResults"}
    assert fn["parameters"]["required"] == []

    result = await manager.execute_tool("source_docs", {"query": "travel", "maxResults": 3})

    client = manager.get_handler("ifinder").client
    assert client.queries == [{"query": "travel", "chat_id": "chat-1", "user": ALICE, "max_results": 3}]
    assert result.content == "body of doc-9"
    assert result.metadata["searchProfile"] == "hr"
    assert result.metadata["link"] == "https://intranet/doc-9"


@pytest.mark.asyncio
async def test_tool_rejects_unsafe_parameters(manager: SourceManager) -> None:
    manager.generate_tools([{"id": "rules", "type": "filesystem", "config": {"path": "policy.md"}, "exposeAs": "tool"}])

    ok = await manager.execute_tool("source_rules", {})
    assert ok.content == "Be kind."
    with pytest.raises(ConfigurationError, match="Invalid parameters for tool source_rules"):
        await manager.execute_tool("source_rules", {"path": "../../etc/passwd"})


@pytest.mark.asyncio
async def test_execute_tool_uses_caller_context_when_given(manager: SourceManager) -> None:
    bob = {"id": "bob", "email": "bob@example.com"}
    descriptors = [{"id": "docs", "type": "ifinder", "config": {}, "exposeAs": "tool"}]
    manager.generate_tools(descriptors, CONTEXT)
    manager.generate_tools(descriptors, {"user": bob, "chatId": "chat-2"})

    await manager.execute_tool("source_docs", {"query": "q"}, context=CONTEXT)
    await manager.execute_tool("source_docs", {"query": "q"})

    client = manager.get_handler("ifinder").client
    assert [(q["user"]["id"], q["chat_id"]) for q in client.queries] == [("alice", "chat-1"), ("bob", "chat-2")]


@pytest.mark.asyncio
async def test_execute_unknown_tool(manager: SourceManager) -> None:
    with pytest.raises(ToolNotFoundError, match="Tool not found: source_nope"):
        await manager.execute_tool("source_nope", {})


def test_generate_tool_parameters_per_type() -> None:
    assert set(generate_tool_parameters("filesystem")["properties"]) == {"path"}
    assert set(generate_tool_parameters("url")["properties"]) == {"url", "maxContentLength"}
    assert set(generate_tool_parameters("page")["properties"]) == {"language"}
    assert generate_tool_parameters("static")["properties"] == {}


def test_localized_description_fallbacks() -> None:
    desc = {"fr": "Documents", "en": "Docs"}
    assert localized_description(desc, "fr") == "Documents"
    assert localized_description(desc, "de") == "Docs"
    assert localized_description({"fr": "Documents"}, "de") == "Documents"
    assert localized_description("Plain", "de") == "Plain"
    assert localized_description(None, "de") is None


@pytest.mark.asyncio
async def test_clear_all_caches_and_stats(manager: SourceManager) -> None:
    await manager.load_sources([{"id": "intro", "type": "static", "config": {"text": "Hello"}}])
    assert manager.get_cache_stats()["static"]["totalEntries"] == 1

    await manager.clear_all_caches()

    stats = manager.get_cache_stats()
    assert set(stats) == {"filesystem", "ifinder", "static"}
    assert all(s["totalEntries"] == 0 for s in stats.values())


@pytest.mark.asyncio
async def test_process_app_sources(manager: SourceManager) -> None:
    app = {
        "id": "helper",
        "sources": [
            {"id": "intro", "type": "static", "config": {"text": "Hello"}},
            {"id": "docs", "type": "ifinder", "config": {}, "exposeAs": "tool"},
        ],
    }

    result = await manager.process_app_sources(app, CONTEXT)

    assert result.content == "--- Source: intro ---\nHello"
    assert [t["function"]["name"] for t in result.tools] == ["source_docs"]
    # docs has neither query nor documentId until the model supplies one
    assert result.metadata["failedSources"] == 1

    empty = await manager.process_app_sources({"id": "bare"})
    assert empty.to_dict() == {
        "sources": [],
        "content": "",
        "tools": [],
        "metadata": {"totalSources": 0, "loadedSources": 0, "failedSources": 0, "errors": []},
    }
