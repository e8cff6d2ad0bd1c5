from fastapi.testclient import TestClient


class TestAuditAPI:
    """Test audit trail endpoint"""

    def test_list_empty(self, client: TestClient, auth_headers: dict):
        response = client.get("/api/audit/list", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["entries"] == []
        assert data["total"] == 0

    def test_operations_are_recorded(
        self, client: TestClient, auth_headers: dict, created_ca: dict, issued_certificate: dict
    ):
        data = client.get("/api/audit/list", headers=auth_headers).json()["data"]

        operations = [entry["operation"] for entry in data["entries"]]
        assert "ca.create" in operations
        assert "certificate.issue" in operations
        assert all(entry["status"] == "success" for entry in data["entries"])
        assert all(entry["ip_address"] for entry in data["entries"])

    def test_filter_by_operation_and_entity(self, client: TestClient, auth_headers: dict, created_ca: dict):
        response = client.get(
            f"/api/audit/list?operation=ca.create&entity_id={created_ca['id']}", headers=auth_headers
        )

        entries = response.json()["data"]["entries"]
        assert len(entries) == 1
        assert entries[0]["entity_type"] == "ca"
        assert entries[0]["details"]["subject"] == created_ca["subject_dn"]

    def test_failures_are_recorded(self, client: TestClient, auth_headers: dict, created_ca: dict):
        client.post("/api/authorities/delete", json={"ca_id": created_ca["id"]}, headers=auth_headers)

        response = client.get("/api/audit/list?status=failure", headers=auth_headers)

        entries = response.json()["data"]["entries"]
        assert [entry["operation"] for entry in entries] == ["ca.delete"]
        assert entries[0]["details"]["error"] == "CA must be revoked or expired before deletion"

    def test_invalid_status_filter(self, client: TestClient, auth_headers: dict):
        response = client.get("/api/audit/list?status=maybe", headers=auth_headers)

        assert response.status_code == 422
