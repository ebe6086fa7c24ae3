"""
API Tests for the Credits Routes
================================

Runs the FastAPI app against the in-memory credit store.

Tests:
1. Authentication on every endpoint
2. Free tier over HTTP: 3 uses, then 402
3. Redemption errors and success
4. Admin passcode endpoints and role check
5. Store failures surface as 503
6. The @metered decorator on a feature route
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from database import get_credit_store
from server import app
from utils.auth import create_token, get_current_user
from credits.config import ADMIN_ROLE, ERROR_CODES
from credits.entitlement import utc_now
from credits.errors import TransientStoreFailure
from credits.guard import metered


def auth_headers(user_id: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {create_token(user_id, **kwargs)}"}


@pytest.fixture
def client(store):
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(store):
    asyncio.run(store.grant_role("admin-1", ADMIN_ROLE, utc_now()))
    return auth_headers("admin-1")


class TestAuthentication:
    """Every credits endpoint requires a valid bearer token."""

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/credits"),
        ("post", "/api/credits/consume"),
        ("get", "/api/credits/admin/passcodes"),
        ("get", "/api/credits/admin/usage"),
    ])
    def test_missing_token(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code in (401, 403)

    def test_expired_token(self, client):
        headers = auth_headers("u1", expires_in=timedelta(seconds=-1))

        response = client.get("/api/credits", headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_garbage_token(self, client):
        response = client.get("/api/credits", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestUserEndpoints:
    """Entitlement query, consume and redeem."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "store": "memory"}

    def test_fresh_user_view(self, client):
        response = client.get("/api/credits", headers=auth_headers("u1"))

        assert response.status_code == 200
        data = response.json()
        assert data["remaining"] == 3
        assert data["is_premium"] is False
        assert data["can_use"] is True
        assert data["total_uses"] == 0

    def test_three_consumes_then_402(self, client):
        headers = auth_headers("u1")

        for expected in (2, 1, 0):
            response = client.post("/api/credits/consume", headers=headers)
            assert response.status_code == 200
            assert response.json()["view"]["remaining"] == expected

        response = client.post("/api/credits/consume", headers=headers)

        assert response.status_code == 402
        assert response.json()["detail"] == {
            "error_code": "QUOTA_EXHAUSTED",
            "message": ERROR_CODES["QUOTA_EXHAUSTED"]
        }

    def test_redeem_unknown_code(self, client):
        response = client.post(
            "/api/credits/redeem",
            json={"passcode": "AUTO-NOPE2345"},
            headers=auth_headers("u1")
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "NOT_FOUND_OR_USED"

    def test_redeem_overlong_code_gets_same_answer(self, client):
        response = client.post(
            "/api/credits/redeem",
            json={"passcode": "X" * 500},
            headers=auth_headers("u1")
        )

        assert response.status_code == 400
        assert response.json()["detail"] == {
            "error_code": "NOT_FOUND_OR_USED",
            "message": ERROR_CODES["NOT_FOUND_OR_USED"]
        }

    def test_redeem_generated_code(self, client, admin_headers):
        code = client.post(
            "/api/credits/admin/passcodes", json={"prefix": "shop"}, headers=admin_headers
        ).json()["code"]
        headers = auth_headers("driver")

        response = client.post("/api/credits/redeem", json={"passcode": code.lower()}, headers=headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["view"]["remaining"] == 100

        view = client.get("/api/credits", headers=headers).json()
        assert view["is_premium"] is True
        assert view["premium_expires_at"] is not None

        again = client.post("/api/credits/redeem", json={"passcode": code}, headers=auth_headers("other"))
        assert again.status_code == 400


class TestAdminEndpoints:
    """Passcode administration and usage overview."""

    def test_non_admin_is_forbidden(self, client):
        response = client.post(
            "/api/credits/admin/passcodes", json={"prefix": "AUTO"}, headers=auth_headers("u1")
        )

        assert response.status_code == 403
        assert response.json()["detail"] == ERROR_CODES["ADMIN_REQUIRED"]

    def test_generate_uses_default_prefix(self, client, admin_headers):
        response = client.post("/api/credits/admin/passcodes", json={}, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["code"].startswith("AUTO-")
        assert len(data["code"]) == len("AUTO-") + 8
        assert data["used"] is False
        assert data["created_by"] == "admin-1"

    def test_invalid_prefix(self, client, admin_headers):
        response = client.post(
            "/api/credits/admin/passcodes", json={"prefix": "TOOLONG"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == ERROR_CODES["INVALID_PREFIX"]

    def test_list_and_delete(self, client, admin_headers):
        created = client.post("/api/credits/admin/passcodes", json={}, headers=admin_headers).json()

        listed = client.get("/api/credits/admin/passcodes", headers=admin_headers).json()
        assert listed["count"] == 1
        assert listed["passcodes"][0]["id"] == created["id"]

        response = client.delete(f"/api/credits/admin/passcodes/{created['id']}", headers=admin_headers)
        assert response.status_code == 200

        listed = client.get("/api/credits/admin/passcodes", headers=admin_headers).json()
        assert listed["count"] == 0

    def test_used_passcode_cannot_be_deleted(self, client, admin_headers):
        created = client.post("/api/credits/admin/passcodes", json={}, headers=admin_headers).json()
        client.post("/api/credits/redeem", json={"passcode": created["code"]}, headers=auth_headers("u1"))

        response = client.delete(f"/api/credits/admin/passcodes/{created['id']}", headers=admin_headers)

        assert response.status_code == 404

    def test_list_limit_is_capped(self, client, admin_headers):
        response = client.get("/api/credits/admin/passcodes?limit=500", headers=admin_headers)

        assert response.status_code == 422

    def test_usage_overview_ordering(self, client, admin_headers):
        for user_id, uses in (("light", 1), ("heavy", 3)):
            for _ in range(uses):
                client.post("/api/credits/consume", headers=auth_headers(user_id))

        response = client.get("/api/credits/admin/usage", headers=admin_headers)

        assert response.status_code == 200
        users = response.json()["users"]
        assert [u["user_id"] for u in users] == ["heavy", "light"]
        assert users[0]["view"]["can_use"] is False


class TestStoreFailures:
    """Store errors are 503, never a denial."""

    @pytest.fixture
    def failing_store(self):
        failing = AsyncMock()
        failure = TransientStoreFailure("consume_one", "connection reset")
        failing.get_usage.side_effect = failure
        failing.ensure_usage.side_effect = failure
        failing.redeem_passcode.side_effect = failure
        failing.has_role.side_effect = failure
        return failing

    @pytest.mark.parametrize("method,path,body", [
        ("get", "/api/credits", None),
        ("post", "/api/credits/consume", None),
        ("post", "/api/credits/redeem", {"passcode": "AUTO-ABCD2345"}),
        ("get", "/api/credits/admin/usage", None),
    ])
    def test_store_failure_is_503(self, client, failing_store, method, path, body):
        app.dependency_overrides[get_credit_store] = lambda: failing_store
        kwargs = {"headers": auth_headers("u1")}
        if body is not None:
            kwargs["json"] = body

        response = getattr(client, method)(path, **kwargs)

        assert response.status_code == 503
        assert response.json()["detail"] == ERROR_CODES["STORE_UNAVAILABLE"]


class TestMeteredDecorator:
    """Feature handlers run only after a use is spent."""

    @pytest.fixture
    def feature_calls(self):
        return []

    @pytest.fixture
    def feature_client(self, store, feature_calls):
        feature_app = FastAPI()

        @feature_app.post("/fault-code")
        @metered("fault_code")
        async def explain_fault_code(code: str, user: dict = Depends(get_current_user)):
            feature_calls.append(code)
            return {"code": code, "explanation": "Misfire detected"}

        with TestClient(feature_app) as test_client:
            yield test_client

    def test_handler_runs_while_uses_remain(self, feature_client, feature_calls):
        response = feature_client.post("/fault-code?code=P0301", headers=auth_headers("u1"))

        assert response.status_code == 200
        assert feature_calls == ["P0301"]

    def test_handler_skipped_when_denied(self, feature_client, feature_calls):
        headers = auth_headers("u1")
        for _ in range(3):
            feature_client.post("/fault-code?code=P0301", headers=headers)

        response = feature_client.post("/fault-code?code=P0420", headers=headers)

        assert response.status_code == 402
        assert "P0420" not in feature_calls
        assert len(feature_calls) == 3

    def test_unknown_feature_rejected(self):
        with pytest.raises(ValueError):
            metered("horoscope")
