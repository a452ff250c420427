"""Tests for the local registry probe."""

import httpx
import pytest

from taskdeck.catalog.local import get_local_models


def tags_transport(status=200, body=None, error=None, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if error is not None:
            raise error
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


class TestGetLocalModels:
    """Tests for get_local_models."""

    @pytest.mark.asyncio
    async def test_lists_distinct_names(self):
        calls = []
        body = {"models": [{"name": "llama3:8b"}, {"name": "qwen2:7b"}, {"name": "llama3:8b"}]}
        names = await get_local_models("http://localhost:11434/", transport=tags_transport(body=body, calls=calls))
        assert names == ["llama3:8b", "qwen2:7b"]
        assert str(calls[0].url) == "http://localhost:11434/api/tags"

    @pytest.mark.asyncio
    async def test_default_base_url(self):
        calls = []
        await get_local_models(None, transport=tags_transport(body={"models": []}, calls=calls))
        assert str(calls[0].url) == "http://localhost:11434/api/tags"

    @pytest.mark.asyncio
    async def test_invalid_url_returns_empty(self):
        calls = []
        assert await get_local_models("not a url", transport=tags_transport(calls=calls)) == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        transport = tags_transport(error=httpx.ConnectError("connection refused"))
        assert await get_local_models("http://localhost:11434", transport=transport) == []

    @pytest.mark.asyncio
    async def test_error_status(self):
        transport = tags_transport(status=404, body={"error": "not found"})
        assert await get_local_models("http://localhost:11434", transport=transport) == []

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        transport = tags_transport(body="ollama is running")
        assert await get_local_models("http://localhost:11434", transport=transport) == []

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        transport = tags_transport(body={"models": [{"id": "x"}, "junk", {"name": ""}]})
        assert await get_local_models("http://localhost:11434", transport=transport) == []
