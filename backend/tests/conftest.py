import os
import sys
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path to import pki_manager modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables before importing the app
os.environ["MASTER_KEY"] = "test_master_key_32_characters_minimum_length"
os.environ["ADMIN_PASSWORD"] = "admin_password"
os.environ["DB_TYPE"] = "sqlite"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CUSTODY_BACKEND"] = "local"
os.environ["CRL_DISTRIBUTION_URL"] = "http://pki.example.test/public/crl"
os.environ["DEBUG"] = "false"
os.environ["HOST"] = "0.0.0.0"
os.environ["PORT"] = "8000"

# Import app after setting environment variables
from pki_manager.main import app
from pki_manager.config import LifecycleConfig
from pki_manager.custody.local import LocalKeyCustody
from pki_manager.database import Base, get_db
from pki_manager.services.audit_service import AuditService
from pki_manager.services.lifecycle import LifecycleStateMachine

CRL_BASE_URL = "http://pki.example.test/public/crl"

CA_SUBJECT = {"CN": "Test CA", "O": "Test Org", "C": "US"}


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh in-memory database for each test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_token(client: TestClient) -> str:
    """Get authentication token for testing"""
    response = client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "admin_password"},
    )
    assert response.status_code == 200
    data = response.json()
    assert "token" in data
    return data["token"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    """Get headers with authentication token"""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig(crl_distribution_url=CRL_BASE_URL)


@pytest.fixture
def lifecycle(db: Session, lifecycle_config: LifecycleConfig) -> LifecycleStateMachine:
    """State machine over the local custodian, for direct (non HTTP) tests"""
    return LifecycleStateMachine(db, LocalKeyCustody(db), lifecycle_config, AuditService(db))


@pytest.fixture
def created_ca(client: TestClient, auth_headers: dict) -> dict:
    """An active ECDSA-P256 root CA created through the API"""
    response = client.post(
        "/api/authorities/create",
        json={"subject": CA_SUBJECT, "key_algorithm": "ECDSA-P256", "validity_years": 5},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.fixture
def issued_certificate(client: TestClient, auth_headers: dict, created_ca: dict) -> dict:
    """A server certificate issued under ``created_ca``"""
    response = client.post(
        "/api/certificates/issue",
        json={
            "ca_id": created_ca["id"],
            "certificate_type": "server",
            "subject_dn": "CN=www.example.com,O=Test Org,C=US",
            "san_dns": ["www.example.com", "example.com"],
            "validity_days": 90,
            "key_algorithm": "ECDSA-P256",
        },
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]
