from fastapi.testclient import TestClient


def _create(client: TestClient, headers: dict, **overrides) -> dict:
    payload = {"subject_dn": "CN=Second CA,O=Test Org,C=US", "key_algorithm": "ECDSA-P256", "validity_years": 2}
    payload.update(overrides)
    response = client.post("/api/authorities/create", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestAuthoritiesAPI:
    """Test CA API endpoints"""

    def test_requires_authentication(self, client: TestClient):
        response = client.get("/api/authorities/list")

        assert response.status_code in (401, 403)

    def test_list_empty(self, client: TestClient, auth_headers: dict):
        response = client.get("/api/authorities/list", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["authorities"] == []
        assert data["data"]["total"] == 0

    def test_create_authority(self, created_ca: dict):
        assert created_ca["subject_dn"] == "CN=Test CA,O=Test Org,C=US"
        assert created_ca["subject_cn"] == "Test CA"
        assert created_ca["key_algorithm"] == "ECDSA-P256"
        assert created_ca["status"] == "active"
        assert created_ca["revocation_date"] is None
        assert isinstance(created_ca["id"], int)

    def test_create_from_dn_string(self, client: TestClient, auth_headers: dict):
        data = _create(client, auth_headers, tags=["lab"])

        assert data["subject_cn"] == "Second CA"
        assert data["tags"] == ["lab"]

    def test_create_requires_subject(self, client: TestClient, auth_headers: dict):
        response = client.post(
            "/api/authorities/create",
            json={"key_algorithm": "ECDSA-P256"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_create_invalid_subject(self, client: TestClient, auth_headers: dict):
        response = client.post(
            "/api/authorities/create",
            json={"subject": {"CN": "Bad Country CA", "C": "USA"}, "key_algorithm": "ECDSA-P256"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"]["code"] == "VALIDATION_ERROR"

    def test_create_invalid_validity(self, client: TestClient, auth_headers: dict):
        response = client.post(
            "/api/authorities/create",
            json={"subject_dn": "CN=Long CA", "key_algorithm": "ECDSA-P256", "validity_years": 50},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "between 1 and 30 years" in response.json()["message"]

    def test_list_filters(self, client: TestClient, auth_headers: dict, created_ca: dict):
        second = _create(client, auth_headers)
        client.post("/api/authorities/revoke", json={"ca_id": second["id"]}, headers=auth_headers)

        active = client.get("/api/authorities/list?status=active", headers=auth_headers).json()["data"]
        revoked = client.get("/api/authorities/list?status=revoked", headers=auth_headers).json()["data"]
        search = client.get("/api/authorities/list?search=Second", headers=auth_headers).json()["data"]

        assert [ca["id"] for ca in active["authorities"]] == [created_ca["id"]]
        assert [ca["id"] for ca in revoked["authorities"]] == [second["id"]]
        assert search["total"] == 1

    def test_detail(self, client: TestClient, auth_headers: dict, created_ca: dict, issued_certificate: dict):
        response = client.get(f"/api/authorities/detail?ca_id={created_ca['id']}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["certificate_pem"].startswith("-----BEGIN CERTIFICATE-----")
        assert data["certificate_counts"]["active"] == 1
        assert data["crl_count"] == 0

    def test_detail_not_found(self, client: TestClient, auth_headers: dict):
        response = client.get("/api/authorities/detail?ca_id=999", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_revoke_cascades(self, client: TestClient, auth_headers: dict, created_ca: dict, issued_certificate: dict):
        response = client.post(
            "/api/authorities/revoke",
            json={"ca_id": created_ca["id"], "reason": "keyCompromise", "details": "HSM breach"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["reason"] == "keyCompromise"
        assert data["cascade_revoked_count"] == 1
        assert data["crl_number"] == 1
        assert data["crl_signed"] is True

        cert = client.get(
            f"/api/certificates/detail?certificate_id={issued_certificate['id']}", headers=auth_headers
        ).json()["data"]
        assert cert["status"] == "revoked"
        assert cert["revocation_reason"] == "caCompromise"

    def test_revoke_twice(self, client: TestClient, auth_headers: dict, created_ca: dict):
        client.post("/api/authorities/revoke", json={"ca_id": created_ca["id"]}, headers=auth_headers)

        response = client.post("/api/authorities/revoke", json={"ca_id": created_ca["id"]}, headers=auth_headers)

        assert response.status_code == 409
        data = response.json()
        assert data["message"] == "CA is already revoked"
        assert data["error"]["code"] == "STATE_CONFLICT"

    def test_revoke_unknown_reason(self, client: TestClient, auth_headers: dict, created_ca: dict):
        response = client.post(
            "/api/authorities/revoke",
            json={"ca_id": created_ca["id"], "reason": "bored"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    def test_delete_active_rejected(self, client: TestClient, auth_headers: dict, created_ca: dict):
        response = client.post("/api/authorities/delete", json={"ca_id": created_ca["id"]}, headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["message"] == "CA must be revoked or expired before deletion"

    def test_delete_revoked(self, client: TestClient, auth_headers: dict, created_ca: dict, issued_certificate: dict):
        client.post("/api/authorities/revoke", json={"ca_id": created_ca["id"]}, headers=auth_headers)

        response = client.post(
            "/api/authorities/delete",
            json={"ca_id": created_ca["id"], "destroy_key": True},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["certificates_deleted"] == 1
        assert data["crls_deleted"] == 1
        assert data["key_destroyed"] is True

        listing = client.get("/api/authorities/list", headers=auth_headers).json()["data"]
        assert listing["total"] == 0
