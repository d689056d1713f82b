"""
Tests for /v1 models, images, embeddings and moderations
"""

import pytest
from httpx import AsyncClient

from gateway.api.errors import UpstreamError
from gateway.core.config import settings


class TestModels:
    """Model catalog endpoints"""

    @pytest.mark.asyncio
    async def test_list_models(self, client: AsyncClient, key_headers: dict):
        response = await client.get("/v1/models", headers=key_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"

        ids = {m["id"] for m in data["data"]}
        assert {"gpt-3.5-turbo", "gpt-4", "gpt-4o-mini", "dall-e-3", "dall-e-2"} <= ids
        assert "text-embedding-3-small" in ids
        assert all(m["object"] == "model" for m in data["data"])
        assert settings.UPSTREAM_DEFAULT_MODEL not in ids

    @pytest.mark.asyncio
    async def test_get_model(self, client: AsyncClient, key_headers: dict):
        response = await client.get("/v1/models/gpt-4", headers=key_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "gpt-4"
        assert data["owned_by"] == "openai"

    @pytest.mark.asyncio
    async def test_unknown_model(self, client: AsyncClient, key_headers: dict):
        response = await client.get("/v1/models/gpt-17", headers=key_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "model_not_found"


class TestImages:
    """Image generation"""

    @pytest.mark.asyncio
    async def test_url_format_returns_data_url(self, client: AsyncClient, key_headers: dict, upstream):
        response = await client.post(
            "/v1/images/generations", json={"prompt": "a red fox"}, headers=key_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["created"] > 0
        assert data["data"] == [
            {"url": "data:image/png;base64,aGVsbG8=", "revised_prompt": "a red fox"}
        ]
        assert upstream.calls[0]["model"] == settings.UPSTREAM_IMAGE_MODEL

    @pytest.mark.asyncio
    async def test_b64_format(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/images/generations",
            json={"prompt": "a red fox", "response_format": "b64_json"},
            headers=key_headers,
        )
        assert response.status_code == 200
        assert response.json()["data"][0]["b64_json"] == "aGVsbG8="
        assert "url" not in response.json()["data"][0]

    @pytest.mark.asyncio
    async def test_upstream_url_passed_through(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.images = [{"url": "https://cdn.example.com/fox.png"}]
        response = await client.post(
            "/v1/images/generations", json={"prompt": "a red fox"}, headers=key_headers
        )
        assert response.json()["data"][0]["url"] == "https://cdn.example.com/fox.png"

    @pytest.mark.asyncio
    async def test_invalid_size(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/images/generations",
            json={"prompt": "a red fox", "size": "256x256"},
            headers=key_headers,
        )
        assert response.status_code == 400
        assert "Invalid size" in response.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_dalle3_allows_one_image(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/images/generations",
            json={"prompt": "a red fox", "n": 2},
            headers=key_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_prompt(self, client: AsyncClient, key_headers: dict):
        response = await client.post("/v1/images/generations", json={}, headers=key_headers)
        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"

    @pytest.mark.asyncio
    async def test_partial_failure(
        self, client: AsyncClient, auth_headers: dict, key_headers: dict, upstream
    ):
        upstream.images = [{"b64_json": "AAAA"}, UpstreamError("boom"), {"b64_json": "BBBB"}]
        response = await client.post(
            "/v1/images/generations",
            json={"prompt": "foxes", "model": "dall-e-2", "n": 3, "size": "512x512"},
            headers=key_headers,
        )
        assert response.status_code == 200
        assert len(response.json()["data"]) == 2

        usage = (await client.get("/api/dashboard/usage", headers=auth_headers)).json()
        assert usage["recent_usage"][0]["cost"] == pytest.approx(0.018 * 2)

    @pytest.mark.asyncio
    async def test_all_images_fail(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.images = [UpstreamError("boom")]
        response = await client.post(
            "/v1/images/generations", json={"prompt": "a red fox"}, headers=key_headers
        )
        assert response.status_code == 500


class TestEmbeddings:
    """Embeddings"""

    @pytest.mark.asyncio
    async def test_single_input(self, client: AsyncClient, key_headers: dict, upstream):
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-3-small", "input": "hello world"},
            headers=key_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"
        assert data["model"] == "text-embedding-3-small"
        assert data["data"] == [{"object": "embedding", "embedding": [0.1, 0.2, 0.3], "index": 0}]
        assert data["usage"] == {"prompt_tokens": 3, "total_tokens": 3}
        assert upstream.calls[0]["model"] == settings.UPSTREAM_EMBEDDING_MODEL

    @pytest.mark.asyncio
    async def test_unknown_model_uses_embedding_upstream(
        self, client: AsyncClient, key_headers: dict, upstream
    ):
        response = await client.post(
            "/v1/embeddings",
            json={"model": "custom-embedder", "input": "hello world"},
            headers=key_headers,
        )
        assert response.status_code == 200
        assert response.json()["model"] == "custom-embedder"
        assert upstream.calls[0]["model"] == settings.UPSTREAM_EMBEDDING_MODEL

    @pytest.mark.asyncio
    async def test_batch_input(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-ada-002", "input": ["one", "two", "three"]},
            headers=key_headers,
        )
        assert response.status_code == 200
        assert [d["index"] for d in response.json()["data"]] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_upstream_usage_preferred(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.embeddings = {
            "data": [{"embedding": [1.0], "index": 0}],
            "usage": {"prompt_tokens": 7, "total_tokens": 7},
        }
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-3-small", "input": "hi"},
            headers=key_headers,
        )
        assert response.json()["usage"]["total_tokens"] == 7

    @pytest.mark.asyncio
    async def test_empty_input(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-3-small", "input": []},
            headers=key_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_blank_item(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-3-small", "input": ["ok", "  "]},
            headers=key_headers,
        )
        assert response.status_code == 400
        assert "index 1" in response.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_model_required(self, client: AsyncClient, key_headers: dict):
        response = await client.post("/v1/embeddings", json={"input": "hi"}, headers=key_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_count_mismatch(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.embeddings = {"data": [{"embedding": [1.0], "index": 0}]}
        response = await client.post(
            "/v1/embeddings",
            json={"model": "text-embedding-3-small", "input": ["a", "b"]},
            headers=key_headers,
        )
        assert response.status_code == 500


class TestModerations:
    """Moderations"""

    @pytest.mark.asyncio
    async def test_moderation_shape(self, client: AsyncClient, key_headers: dict, upstream):
        response = await client.post(
            "/v1/moderations", json={"input": "some text"}, headers=key_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "modr-upstream"
        assert data["model"] == "text-moderation-latest"

        result = data["results"][0]
        assert result["flagged"] is False
        assert len(result["categories"]) == 11
        assert set(result["categories"]) == set(result["category_scores"])
        assert result["category_scores"]["self_harm_intent"] == pytest.approx(0.002)
        assert result["category_scores"]["hate"] == 0.0
        assert upstream.calls[0]["model"] == settings.UPSTREAM_MODERATION_MODEL

    @pytest.mark.asyncio
    async def test_flagged_category(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.moderation = {
            "results": [{"categories": {"violence": True}, "category_scores": {"violence": 0.97}}]
        }
        response = await client.post(
            "/v1/moderations", json={"input": "some text"}, headers=key_headers
        )
        data = response.json()
        assert data["id"].startswith("modr-")
        assert data["results"][0]["flagged"] is True
        assert data["results"][0]["categories"]["violence"] is True

    @pytest.mark.asyncio
    async def test_batch(self, client: AsyncClient, key_headers: dict):
        response = await client.post(
            "/v1/moderations", json={"input": ["one", "two"]}, headers=key_headers
        )
        assert len(response.json()["results"]) == 2

    @pytest.mark.asyncio
    async def test_empty_input(self, client: AsyncClient, key_headers: dict):
        response = await client.post("/v1/moderations", json={"input": ""}, headers=key_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_results(self, client: AsyncClient, key_headers: dict, upstream):
        upstream.moderation = {"results": []}
        response = await client.post(
            "/v1/moderations", json={"input": "text"}, headers=key_headers
        )
        assert response.status_code == 500
