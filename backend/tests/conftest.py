"""
Shared fixtures for the gateway test suite

The app runs against an in-memory SQLite database and a fake upstream
client, so no network access is needed.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["FINE_TUNE_WORKER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-gateway-test-suite"
os.environ.pop("ADMIN_PASS", None)

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gateway.main import app
from gateway.db.database import engine, async_session_maker
from gateway.models import Base
from gateway.services.auth import AuthService
from gateway.services.cache import cache
from gateway.services.rate_limiter import rate_limiter
from gateway.services.upstream import get_upstream_client


class FakeUpstream:
    """
    Stand-in for UpstreamClient.

    Responses are plain dicts, as the real client returns. Set `error` to
    make every call raise it.
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.stream_error: Optional[Exception] = None
        self.completion: Dict[str, Any] = {
            "id": "chatcmpl-upstream",
            "created": 1700000000,
            "model": "glm4.5-flash",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": "Hello there!"},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        }
        self.stream_chunks: List[Dict[str, Any]] = [
            {"choices": [{"index": 0, "delta": {"role": "assistant"}}]},
            {"choices": [{"index": 0, "delta": {"content": "Hel"}}]},
            {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}]},
        ]
        self.images: List[Dict[str, Any]] = [{"b64_json": "aGVsbG8="}]
        self.embeddings: Optional[Dict[str, Any]] = None
        self.moderation: Optional[Dict[str, Any]] = None

    def _call(self, method: str, **kwargs):
        self.calls.append({"method": method, **kwargs})
        if self.error is not None:
            raise self.error

    async def chat_completion(self, model, messages, **params):
        self._call("chat_completion", model=model, messages=messages, **params)
        return self.completion

    async def stream_chat_completion(self, model, messages, **params):
        self._call("stream_chat_completion", model=model, messages=messages, **params)

        async def chunks():
            for chunk in self.stream_chunks:
                yield chunk
            if self.stream_error is not None:
                raise self.stream_error

        return chunks()

    async def generate_image(self, model, prompt, size, quality=None, style=None):
        self._call("generate_image", model=model, prompt=prompt, size=size)
        index = sum(1 for c in self.calls if c["method"] == "generate_image") - 1
        item = self.images[index % len(self.images)]
        if isinstance(item, Exception):
            raise item
        return item

    async def create_embeddings(self, model, input, dimensions=None):
        self._call("create_embeddings", model=model, input=input, dimensions=dimensions)
        if self.embeddings is not None:
            return self.embeddings
        inputs = [input] if isinstance(input, str) else input
        return {
            "data": [
                {"object": "embedding", "embedding": [0.1, 0.2, 0.3], "index": i}
                for i in range(len(inputs))
            ],
            "model": model,
        }

    async def moderate(self, model, input):
        self._call("moderate", model=model, input=input)
        if self.moderation is not None:
            return self.moderation
        inputs = [input] if isinstance(input, str) else input
        return {
            "id": "modr-upstream",
            "results": [
                {
                    "flagged": False,
                    "categories": {"violence": False, "self-harm/intent": False},
                    "category_scores": {"violence": 0.01, "self-harm/intent": 0.002},
                }
                for _ in inputs
            ],
        }


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Fresh schema and empty in-process state for every test"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await rate_limiter.reset()
    cache.clear()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
    app.dependency_overrides.clear()


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    app.dependency_overrides[get_upstream_client] = lambda: fake
    return fake


@pytest_asyncio.fixture
async def client(upstream):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def test_user_data() -> dict:
    return {
        "email": "test@example.com",
        "password": "testpassword123",
        "name": "Test User",
    }


@pytest_asyncio.fixture
async def registered(client: AsyncClient, test_user_data: dict) -> dict:
    """Register a user; returns the registration response body"""
    response = await client.post("/api/auth/register", json=test_user_data)
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(registered: dict) -> dict:
    """Dashboard session headers"""
    return {"Authorization": f"Bearer {registered['access_token']}"}


@pytest.fixture
def key_headers(registered: dict) -> dict:
    """/v1 headers using the default API key"""
    return {"Authorization": f"Bearer {registered['api_key']['key']}"}


@pytest.fixture
def make_user_with_key():
    """Factory creating a user and key directly in the database"""

    async def create(email: str = "other@example.com", rate_limit: int = 1000):
        async with async_session_maker() as db:
            user = await AuthService.create_user(db, email=email, password="password123", name="Other")
            api_key = await AuthService.create_api_key(db, user, name="Other Key", rate_limit=rate_limit)
            await db.commit()
            return user, api_key

    return create
