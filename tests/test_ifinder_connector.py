from typing import Any, List, Optional

import httpx
import pytest

from aihub_sources.config import IFinderConfig
from aihub_sources.connectors.ifinder import (
    IFinderClient,
    format_content_length,
    format_file_size,
)
from aihub_sources.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    FetchTimeoutError,
    NotFoundError,
    UpstreamError,
)

BASE_URL = "https://ifinder.example.com"
USER = {"id": "u1", "email": "alice@example.com"}

# ---------- Helpers ----------


def patch_client_with_responder(conn: IFinderClient, responder: Any) -> List[Optional[float]]:
    timeouts: List[Optional[float]] = []

    def _client(timeout: Optional[float] = None) -> httpx.AsyncClient:  # type: ignore[override]
        timeouts.append(timeout)
        return httpx.AsyncClient(
            transport=httpx.MockTransport(responder),
            base_url=BASE_URL,
            headers={"Accept": "application/json"},
        )

    setattr(conn, "_client", _client)
    return timeouts


def make_client(**kwargs: Any) -> IFinderClient:
    return IFinderClient(base_url=BASE_URL, api_key="secret", **kwargs)


# ---------- Formatting helpers ----------


def test_format_helpers() -> None:
    assert format_content_length(999) == "999 characters"
    assert format_content_length(1500) == "1.5K characters"
    assert format_content_length(2_500_000) == "2.5M characters"
    assert format_file_size(0) == "0 B"
    assert format_file_size(1024) == "1 KB"
    assert format_file_size(1536) == "1.5 KB"


def test_from_config_requires_base_url() -> None:
    assert IFinderClient.from_config(IFinderConfig()) is None
    client = IFinderClient.from_config(IFinderConfig(base_url=BASE_URL + "/", api_key="k"))
    assert client is not None
    assert client.base_url == BASE_URL


# ---------- search ----------


@pytest.mark.asyncio
async def test_search_normalizes_hits_and_sends_auth() -> None:
    payload = {
        "results": [
            {
                "document": {
                    "id": "doc-1",
                    "title": "Travel Policy",
                    "url": "https://intranet/doc-1",
                    "file": {"name": "travel.pdf"},
                    "mediaType": "application/pdf",
                    "creator": "HR",
                },
                "metadata": {"score": 12.5, "teasers": ["... per diem ..."]},
            }
        ],
        "metadata": {"total_hits": 42, "took": 7},
    }

    def responder(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.path == "/public-api/retrieval/api/v1/search-profiles/hr/_search"
        assert request.url.params["query"] == "travel"
        assert request.url.params["size"] == "5"
        assert request.url.params.get_list("return_fields") == ["title", "url"]
        return httpx.Response(200, json=payload)

    conn = make_client()
    patch_client_with_responder(conn, responder)

    res = await conn.search(
        query="travel",
        chat_id="chat-1",
        user=USER,
        max_results=5,
        search_profile="hr",
        return_fields=["title", "url"],
    )

    assert res["totalFound"] == 42
    assert res["searchProfile"] == "hr"
    hit = res["results"][0]
    assert hit["id"] == "doc-1"
    assert hit["filename"] == "travel.pdf"
    assert hit["mimeType"] == "application/pdf"
    assert hit["author"] == "HR"
    assert hit["score"] == 12.5
    assert hit["teasers"] == ["... per diem ..."]


@pytest.mark.asyncio
async def test_search_rejects_anonymous_and_missing_chat() -> None:
    conn = make_client()
    with pytest.raises(AccessDeniedError):
        await conn.search(query="q", chat_id="c", user={"id": "anonymous"})
    with pytest.raises(AccessDeniedError):
        await conn.search(query="q", chat_id="c", user={})
    with pytest.raises(ConfigurationError):
        await conn.search(query="q", chat_id="", user=USER)


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error() -> None:
    conn = IFinderClient(base_url=BASE_URL)
    patch_client_with_responder(conn, lambda request: httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError):
        await conn.search(query="q", chat_id="c", user=USER)


@pytest.mark.asyncio
async def test_custom_auth_header_factory_is_used_per_user() -> None:
    seen: List[str] = []

    def responder(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"results": []})

    conn = IFinderClient(base_url=BASE_URL, auth_header=lambda user: f"Bearer jwt-for-{user['id']}")
    patch_client_with_responder(conn, responder)
    await conn.search(query="q", chat_id="c", user=USER)

    assert seen == ["Bearer jwt-for-u1"]


# ---------- get_content / get_metadata ----------


@pytest.mark.asyncio
async def test_get_content_truncates_and_uses_longer_timeout() -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/public-api/retrieval/api/v1/search-profiles/default/docs/doc-1"
        return httpx.Response(200, json={"document": {"id": "doc-1", "content": "abcdefghij"}})

    conn = make_client(timeout=10.0)
    timeouts = patch_client_with_responder(conn, responder)

    res = await conn.get_content(document_id="doc-1", chat_id="c", user=USER, max_length=4)

    assert res["content"] == "abcd... [Content truncated]"
    assert res["contentLength"] == 10
    assert res["contentLengthFormatted"] == "10 characters"
    assert res["truncated"] is True
    assert timeouts == [40.0]


@pytest.mark.asyncio
async def test_get_metadata_formats_size() -> None:
    doc = {"id": "d", "title": "T", "url": "https://x/d", "size": 2048, "modified": "2024-01-01"}

    conn = make_client()
    patch_client_with_responder(conn, lambda request: httpx.Response(200, json={"document": doc}))

    meta = await conn.get_metadata(document_id="d", chat_id="c", user=USER)
    assert meta["title"] == "T"
    assert meta["sizeFormatted"] == "2 KB"
    assert meta["lastModified"] == "2024-01-01"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, exc_type",
    [(404, NotFoundError), (403, AccessDeniedError), (401, AccessDeniedError), (500, UpstreamError)],
)
async def test_document_errors_are_mapped(status: int, exc_type: type) -> None:
    conn = make_client()
    patch_client_with_responder(conn, lambda request: httpx.Response(status, json={"error": "x"}))
    with pytest.raises(exc_type):
        await conn.get_content(document_id="d", chat_id="c", user=USER)


@pytest.mark.asyncio
async def test_timeout_is_mapped() -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    conn = make_client()
    patch_client_with_responder(conn, responder)
    with pytest.raises(FetchTimeoutError):
        await conn.get_metadata(document_id="d", chat_id="c", user=USER)
