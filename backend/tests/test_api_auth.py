import pytest
from fastapi.testclient import TestClient

from pki_manager.auth import verify_admin_password
from pki_manager.config import settings
from pki_manager.security import create_access_token, hash_password


class TestAuthAPI:
    """Test operator login and bearer token checks"""

    def test_login_success(self, client: TestClient):
        response = client.post(
            "/api/auth/login",
            json={"username": "admin", "password": "admin_password"},
        )

        assert response.status_code == 200
        data = response.json()
        assert isinstance(data["token"], str)
        assert len(data["token"]) > 0
        assert "expires_at" in data

    @pytest.mark.parametrize(
        "username,password",
        [("wrong_admin", "admin_password"), ("admin", "wrong_password")],
    )
    def test_login_rejected(self, client: TestClient, username: str, password: str):
        response = client.post("/api/auth/login", json={"username": username, "password": password})

        assert response.status_code == 401
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Invalid username or password"
        assert data["error"]["code"] == "HTTP_401"

    @pytest.mark.parametrize("payload", [{"password": "admin_password"}, {"username": "admin"}])
    def test_login_missing_field(self, client: TestClient, payload: dict):
        response = client.post("/api/auth/login", json=payload)

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_token_grants_access(self, client: TestClient, auth_headers: dict):
        response = client.get("/api/audit/list", headers=auth_headers)

        assert response.status_code == 200

    def test_invalid_token(self, client: TestClient):
        response = client.get("/api/audit/list", headers={"Authorization": "Bearer not.a.token"})

        assert response.status_code == 401
        assert response.json()["message"] == "Could not validate credentials"

    def test_token_without_subject(self, client: TestClient):
        token = create_access_token({"role": "operator"})

        response = client.get("/api/audit/list", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestAdminPassword:
    """Test ADMIN_PASSWORD in plaintext and bcrypt form"""

    def test_plaintext_password(self):
        assert verify_admin_password("admin", "admin_password") is True
        assert verify_admin_password("admin", "nope") is False
        assert verify_admin_password("root", "admin_password") is False

    def test_bcrypt_password(self, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_PASSWORD", hash_password("hashed_secret"))

        assert verify_admin_password("admin", "hashed_secret") is True
        assert verify_admin_password("admin", "admin_password") is False
