import os
from pathlib import Path

import pytest

from aihub_sources.config import Settings
from aihub_sources.exceptions import AccessDeniedError, ConfigurationError, NotFoundError
from aihub_sources.sources.filesystem import FileSystemHandler


@pytest.fixture()
def content_dir(tmp_path: Path) -> Path:
    root = tmp_path / "contents"
    (root / "sources" / "nested").mkdir(parents=True)
    (root / "sources" / "faq.md").write_text("# FAQ\n\nAsk away.", encoding="utf-8")
    (root / "sources" / "nested" / "deep.txt").write_text("deep", encoding="utf-8")
    return root


@pytest.mark.parametrize(
    "path",
    ["../etc/passwd", "sources/../../secret.txt", "/etc/passwd", "~/notes.txt", "", "   "],
)
def test_validate_config_rejects_suspicious_paths(content_dir: Path, path: str) -> None:
    handler = FileSystemHandler(content_dir)
    assert handler.validate_config({"path": path}) is False


def test_init_creates_sources_directory(tmp_path: Path) -> None:
    root = tmp_path / "fresh"
    handler = FileSystemHandler(root)
    assert (root / "sources").is_dir()
    assert handler.base_path == root.resolve()

    settings = Settings()
    settings.filesystem.create_sources_dir = False
    FileSystemHandler(tmp_path / "untouched", settings=settings)
    assert not (tmp_path / "untouched").exists()


def test_validate_config_accepts_relative_path(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    assert handler.validate_config({"path": "sources/faq.md"}) is True
    assert handler.validate_config({"encoding": "utf-8"}) is False


@pytest.mark.asyncio
async def test_load_content_returns_text_and_metadata(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    result = await handler.get_cached_content({"path": "sources/faq.md"})

    assert result.content.startswith("# FAQ")
    meta = result.metadata
    assert meta["type"] == "file"
    assert meta["path"] == "sources/faq.md"
    assert meta["fullPath"] == str((content_dir / "sources" / "faq.md").resolve())
    assert meta["link"].startswith("file://")
    assert meta["extension"] == ".md"
    assert meta["encoding"] == "utf-8"
    assert meta["size"] == len("# FAQ\n\nAsk away.")
    assert meta["loadedAt"].endswith("Z")


@pytest.mark.asyncio
async def test_custom_url_becomes_link(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    result = await handler.load_content({"path": "sources/faq.md", "url": "https://docs.example.com/faq"})
    assert result.metadata["link"] == "https://docs.example.com/faq"


@pytest.mark.asyncio
async def test_missing_file_and_directory_raise_not_found(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    with pytest.raises(NotFoundError, match="File not found: sources/missing.md"):
        await handler.load_content({"path": "sources/missing.md"})
    with pytest.raises(NotFoundError, match="not a file"):
        await handler.load_content({"path": "sources/nested"})


@pytest.mark.asyncio
async def test_unknown_encoding_is_configuration_error(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    with pytest.raises(ConfigurationError):
        await handler.load_content({"path": "sources/faq.md", "encoding": "no-such-codec"})


@pytest.mark.asyncio
async def test_traversal_is_denied_even_without_validation(content_dir: Path, tmp_path: Path) -> None:
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")
    handler = FileSystemHandler(content_dir)
    with pytest.raises(AccessDeniedError, match="outside allowed directory"):
        await handler.load_content({"path": "../secret.txt"})


@pytest.mark.asyncio
async def test_symlink_escaping_base_is_denied(content_dir: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside.txt"
    outside.write_text("nope", encoding="utf-8")
    os.symlink(outside, content_dir / "sources" / "link.txt")
    handler = FileSystemHandler(content_dir)
    with pytest.raises(AccessDeniedError):
        await handler.load_content({"path": "sources/link.txt"})


@pytest.mark.asyncio
async def test_mtime_change_forces_fresh_read(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    target = content_dir / "sources" / "faq.md"

    first = await handler.get_cached_content({"path": "sources/faq.md"})
    target.write_text("# FAQ v2", encoding="utf-8")
    st = target.stat()
    os.utime(target, (st.st_atime, st.st_mtime + 5))

    second = await handler.get_cached_content({"path": "sources/faq.md"})
    assert first.content != second.content
    assert second.content == "# FAQ v2"


@pytest.mark.asyncio
async def test_write_file_invalidates_only_that_file(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    await handler.get_cached_content({"path": "sources/faq.md"})
    await handler.get_cached_content({"path": "sources/nested/deep.txt"})
    assert handler.get_cache_stats()["totalEntries"] == 2

    res = await handler.write_file("sources/faq.md", "rewritten")
    assert res["success"] is True
    assert res["size"] == len("rewritten")

    keys = handler.cache.keys()
    assert len(keys) == 1
    assert "deep.txt" in keys[0]
    assert (await handler.get_cached_content({"path": "sources/faq.md"})).content == "rewritten"


@pytest.mark.asyncio
async def test_write_creates_parents_and_delete_removes(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    await handler.write_file("drafts/new/note.txt", "hello")
    assert await handler.file_exists("drafts/new/note.txt") is True

    res = await handler.delete_file("drafts/new/note.txt")
    assert res == {"success": True, "path": "drafts/new/note.txt", "deleted": True}
    assert await handler.file_exists("drafts/new/note.txt") is False
    with pytest.raises(NotFoundError):
        await handler.delete_file("drafts/new/note.txt")


@pytest.mark.asyncio
async def test_write_outside_base_is_denied(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    with pytest.raises(AccessDeniedError):
        await handler.write_file("../escape.txt", "x")
    assert await handler.file_exists("../escape.txt") is False


@pytest.mark.asyncio
async def test_listings_are_sorted_and_tree_is_depth_limited(content_dir: Path) -> None:
    handler = FileSystemHandler(content_dir)
    (content_dir / "sources" / "about.txt").write_text("a", encoding="utf-8")
    await handler.create_directory("sources/archive")

    files = await handler.list_files("sources")
    assert [f["name"] for f in files] == ["about.txt", "faq.md"]
    dirs = await handler.list_directories("sources")
    assert [d["name"] for d in dirs] == ["archive", "nested"]

    tree = await handler.get_file_tree("", max_depth=2)
    sources = next(d for d in tree["directories"] if d["name"] == "sources")
    nested = next(d for d in sources["directories"] if d["name"] == "nested")
    assert [f["name"] for f in sources["files"]] == ["about.txt", "faq.md"]
    # depth 2 stops before listing nested's contents
    assert nested["files"] == []
