"""
Authentication tests: dashboard accounts and /v1 API keys
"""

import pytest
from httpx import AsyncClient

from gateway.core.config import settings


class TestHealthEndpoint:
    """Tests for the health check endpoint"""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test that health endpoint returns OK"""
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == settings.APP_VERSION
        assert "usage_failed_records" in data


class TestDashboardAuth:
    """Tests for registration, login and the session token"""

    @pytest.mark.asyncio
    async def test_register_user(self, client: AsyncClient, test_user_data: dict):
        """Registration returns a session token and a default API key"""
        response = await client.post("/api/auth/register", json=test_user_data)
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["email"] == test_user_data["email"]
        assert "access_token" in data
        assert data["api_key"]["name"] == "Default Key"
        assert data["api_key"]["key"].startswith("sk-")
        assert len(data["api_key"]["key"]) == len("sk-") + 64

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, client: AsyncClient, test_user_data: dict):
        """Test that duplicate email registration fails"""
        await client.post("/api/auth/register", json=test_user_data)

        response = await client.post("/api/auth/register", json=test_user_data)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_register_short_password(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/register",
            json={"email": "short@example.com", "password": "short"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_login_user(self, client: AsyncClient, test_user_data: dict):
        """Test user login"""
        await client.post("/api/auth/register", json=test_user_data)

        login_data = {
            "email": test_user_data["email"],
            "password": test_user_data["password"]
        }
        response = await client.post("/api/auth/login", json=login_data)
        assert response.status_code == 200
        data = response.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"

    @pytest.mark.asyncio
    async def test_login_invalid_credentials(self, client: AsyncClient):
        """Test login with invalid credentials"""
        login_data = {
            "email": "nonexistent@example.com",
            "password": "wrongpassword"
        }
        response = await client.post("/api/auth/login", json=login_data)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login_rate_limited_per_ip(self, client: AsyncClient):
        login_data = {"email": "nobody@example.com", "password": "wrongpassword"}
        for _ in range(settings.LOGIN_RATE_LIMIT):
            response = await client.post("/api/auth/login", json=login_data)
            assert response.status_code == 401

        response = await client.post("/api/auth/login", json=login_data)
        assert response.status_code == 429
        assert "Retry-After" in response.headers

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, auth_headers: dict, test_user_data: dict):
        response = await client.get("/api/auth/me", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["email"] == test_user_data["email"]

    @pytest.mark.asyncio
    async def test_dashboard_without_auth(self, client: AsyncClient):
        """Dashboard endpoints require a session token"""
        response = await client.get("/api/dashboard/keys")
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_api_key_is_not_a_session_token(self, client: AsyncClient, key_headers: dict):
        response = await client.get("/api/dashboard/keys", headers=key_headers)
        assert response.status_code == 401


class TestApiKeyAuth:
    """Tests for API key authentication on /v1"""

    @pytest.mark.asyncio
    async def test_missing_authorization(self, client: AsyncClient):
        response = await client.get("/v1/models")
        assert response.status_code == 401
        error = response.json()["error"]
        assert error["type"] == "authentication_error"
        assert error["code"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_malformed_authorization(self, client: AsyncClient):
        response = await client.get("/v1/models", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_unknown_key(self, client: AsyncClient):
        response = await client.get(
            "/v1/models", headers={"Authorization": "Bearer sk-doesnotexist"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_key"

    @pytest.mark.asyncio
    async def test_session_token_is_not_an_api_key(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/v1/models", headers=auth_headers)
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_key"

    @pytest.mark.asyncio
    async def test_valid_key(self, client: AsyncClient, key_headers: dict):
        response = await client.get("/v1/models", headers=key_headers)
        assert response.status_code == 200
        assert response.headers["x-ratelimit-limit-requests"] == str(settings.DEFAULT_KEY_RATE_LIMIT)
        assert response.headers["x-ratelimit-remaining-requests"] == str(settings.DEFAULT_KEY_RATE_LIMIT - 1)

    @pytest.mark.asyncio
    async def test_deactivated_key(
        self, client: AsyncClient, registered: dict, auth_headers: dict, key_headers: dict
    ):
        key_id = registered["api_key"]["id"]
        response = await client.put(
            f"/api/dashboard/keys/{key_id}", json={"is_active": False}, headers=auth_headers
        )
        assert response.status_code == 200

        response = await client.get("/v1/models", headers=key_headers)
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["type"] == "permission_error"
        assert error["code"] == "key_deactivated"

    @pytest.mark.asyncio
    async def test_last_used_at_updated(
        self, client: AsyncClient, auth_headers: dict, key_headers: dict
    ):
        await client.get("/v1/models", headers=key_headers)

        response = await client.get("/api/dashboard/keys", headers=auth_headers)
        assert response.json()[0]["last_used_at"] is not None

    @pytest.mark.asyncio
    async def test_auth_checked_before_body(self, client: AsyncClient):
        """An unauthenticated request with a bad body is still a 401"""
        response = await client.post("/v1/chat/completions", json={"model": "gpt-4"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_auth_checked_before_json_decoding(self, client: AsyncClient):
        """An undecodable body without a key is a 401, not a 400"""
        response = await client.post(
            "/v1/chat/completions",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthenticated"

        response = await client.post(
            "/v1/embeddings",
            content="{not json",
            headers={"Content-Type": "application/json", "Authorization": "Bearer sk-doesnotexist"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_key"

    @pytest.mark.asyncio
    async def test_invalid_json_with_valid_key(
        self, client: AsyncClient, auth_headers: dict, key_headers: dict
    ):
        response = await client.post(
            "/v1/chat/completions",
            content="{not json",
            headers={**key_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "invalid_request"
        assert error["message"] == "Invalid JSON body"
        assert response.headers["x-ratelimit-remaining-requests"] == str(settings.DEFAULT_KEY_RATE_LIMIT - 1)

        data = (await client.get("/api/dashboard/usage", headers=auth_headers)).json()
        assert data["total_requests"] == 1
        row = data["recent_usage"][0]
        assert row["endpoint"] == "chat/completions"
        assert row["status_code"] == 400
        assert row["model"] is None

    @pytest.mark.asyncio
    async def test_other_users_key_works_independently(
        self, client: AsyncClient, key_headers: dict, make_user_with_key
    ):
        _, other_key = await make_user_with_key()
        response = await client.get(
            "/v1/models", headers={"Authorization": f"Bearer {other_key.key}"}
        )
        assert response.status_code == 200
