from datetime import timedelta

from cryptography import x509
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from pki_manager.models import CRL
from pki_manager.models.authority import utcnow


def _generate_crl(client: TestClient, headers: dict, ca_id: int) -> dict:
    response = client.post("/api/crl/generate", json={"ca_id": ca_id}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestPublicAPI:
    """Test public API endpoints"""

    def test_health_check(self, client: TestClient):
        response = client.get("/public/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_public_health_returns_json(self, client: TestClient):
        response = client.get("/public/health")

        assert response.headers["content-type"] == "application/json"

    def test_public_ca_download_not_found(self, client: TestClient):
        response = client.get("/public/ca/99999.crt")

        assert response.status_code == 404

    def test_public_ca_download(self, client: TestClient, created_ca: dict):
        response = client.get(f"/public/ca/{created_ca['id']}.crt")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pkix-cert"
        certificate = x509.load_der_x509_certificate(response.content)
        assert format(certificate.serial_number, "X") == created_ca["serial_number"]

    def test_public_crl_unknown_ca(self, client: TestClient):
        response = client.get("/public/crl/99999.crl")

        assert response.status_code == 404
        assert response.json()["message"] == "CA not found"

    def test_public_crl_non_numeric_id(self, client: TestClient):
        response = client.get("/public/crl/root.crl")

        assert response.status_code == 404

    def test_public_crl_not_generated(self, client: TestClient, created_ca: dict):
        response = client.get(f"/public/crl/{created_ca['id']}.crl")

        assert response.status_code == 404
        assert response.json()["message"] == "No CRL available"

    def test_public_crl_invalid_format(self, client: TestClient, auth_headers: dict, created_ca: dict):
        _generate_crl(client, auth_headers, created_ca["id"])

        response = client.get(f"/public/crl/{created_ca['id']}.p7b")

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid format"

    def test_public_crl_pem(self, client: TestClient, auth_headers: dict, created_ca: dict):
        _generate_crl(client, auth_headers, created_ca["id"])
        latest = _generate_crl(client, auth_headers, created_ca["id"])

        response = client.get(f"/public/crl/{created_ca['id']}.crl")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pkix-crl"
        assert response.headers["cache-control"].startswith("public, max-age=")
        assert "last-modified" in response.headers
        assert response.headers["expires"].endswith("GMT")
        assert response.text.startswith("-----BEGIN X509 CRL-----")

        crl = x509.load_pem_x509_crl(response.content)
        number = crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
        assert number == latest["crl_number"] == 2

    def test_public_crl_der(self, client: TestClient, auth_headers: dict, created_ca: dict):
        _generate_crl(client, auth_headers, created_ca["id"])

        response = client.get(f"/public/crl/{created_ca['id']}.der")

        assert response.status_code == 200
        crl = x509.load_der_x509_crl(response.content)
        assert crl.issuer.get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value == "Test CA"

    def test_public_crl_unsigned(self, client: TestClient, db: Session, created_ca: dict):
        now = utcnow().replace(microsecond=0)
        db.add(CRL(ca_id=created_ca["id"], crl_number=1, this_update=now, next_update=now + timedelta(days=7)))
        db.commit()

        response = client.get(f"/public/crl/{created_ca['id']}.crl")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "CRL_UNAVAILABLE"

    def test_public_endpoints_no_auth_required(self, client: TestClient, created_ca: dict):
        assert client.get("/public/health").status_code == 200
        assert client.get(f"/public/ca/{created_ca['id']}.crt").status_code == 200
        assert client.get(f"/public/crl/{created_ca['id']}.crl").status_code == 404
