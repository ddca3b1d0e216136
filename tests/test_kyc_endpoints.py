"""Tests for the KYC and auth HTTP endpoints."""

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from observer_identity.config import settings
from observer_identity.services.settings_service import DatabaseSettingsStore

VERIFY_REQUEST = {
    "firstName": "Jane",
    "lastName": "Brown",
    "dateOfBirth": "1990-04-12",
    "nationalId": "123456789",
    "documentType": "national_id",
    "documentImage": "ZG9jdW1lbnQ=",
    "selfieImage": "c2VsZmll",
}

SUBMIT_RESPONSE = {
    "verification_id": "vrf_001",
    "status": "completed",
    "confidence_score": 92,
    "similarity_score": 88,
    "document_verification": {"status": "passed"},
    "face_verification": {"status": "passed"},
    "liveness_check": {"status": "passed"},
    "extracted_fields": {"first_name": "Jane", "last_name": "Browne"},
}


@pytest.fixture
def provider_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "DIDIT_API_KEY", "env-key")


# ============== Auth ==============


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, operator_credentials: dict):
    response = await client.post("/api/v1/auth/token", data=operator_credentials)

    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, operator_credentials: dict):
    response = await client.post(
        "/api/v1/auth/token",
        data={"username": operator_credentials["username"], "password": "wrong"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_INVALID_CREDENTIALS"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_unconfigured(client: AsyncClient, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "OPERATOR_PASSWORD_HASH", "")

    response = await client.post("/api/v1/auth/token", data={"username": "admin", "password": "x"})

    assert response.status_code == 503
    assert response.json()["code"] == "CONFIG_MISSING"
    assert response.json()["metadata"] == {"setting": "OPERATOR_PASSWORD_HASH"}


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.post(
        "/api/v1/kyc/manual",
        json={"subjectId": "observer-42", "approved": True},
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_TOKEN_INVALID"


# ============== Verify ==============


@pytest.mark.asyncio
async def test_verify_success(client: AsyncClient, didit, provider_key):
    didit.on("GET", "/v2/status", httpx.Response(200))
    didit.on("POST", "/v2/identity/verify", httpx.Response(200, json=SUBMIT_RESPONSE))

    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 200
    data = response.json()
    assert data["claimConsistent"] is True
    result = data["result"]
    assert result["verificationId"] == "vrf_001"
    assert result["status"] == "approved"
    assert result["matchScore"] == 88
    assert result["details"]["documentVerified"] is True
    assert result["details"]["documentType"] == "national_id"
    assert result["details"]["amlStatus"] is None


@pytest.mark.asyncio
async def test_verify_reports_name_mismatch(client: AsyncClient, didit, provider_key):
    mismatched = {**SUBMIT_RESPONSE, "extracted_fields": {"first_name": "Mary", "last_name": "Brown"}}
    didit.on("GET", "/v2/status", httpx.Response(200))
    didit.on("POST", "/v2/identity/verify", httpx.Response(200, json=mismatched))

    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 200
    assert response.json()["claimConsistent"] is False
    assert response.json()["result"]["status"] == "approved"


@pytest.mark.asyncio
async def test_verify_uses_persisted_settings(client: AsyncClient, db_session: AsyncSession, didit):
    store = DatabaseSettingsStore(db_session)
    await store.set_setting("didit_api_key", "db-key")
    await store.set_setting("didit_aml_check_enabled", "true")
    didit.on("GET", "/v2/status", httpx.Response(200))
    didit.on("POST", "/v2/identity/verify", httpx.Response(200, json=SUBMIT_RESPONSE))

    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 200
    submission = didit.requests[-1]
    assert submission.headers["x-api-key"] == "db-key"
    assert b'"aml"' in submission.content


@pytest.mark.asyncio
async def test_verify_without_provider_credentials(client: AsyncClient, didit):
    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 503
    assert response.json()["code"] == "CONFIG_MISSING"
    assert didit.requests == []


@pytest.mark.asyncio
async def test_verify_provider_unauthorized(client: AsyncClient, didit, provider_key):
    didit.on("GET", "/v2/status", httpx.Response(401))

    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 502
    assert response.json()["code"] == "PROVIDER_UNAUTHORIZED"
    assert response.json()["detail"] == "Verification provider credentials not activated"


@pytest.mark.asyncio
async def test_verify_provider_failure_hides_details(client: AsyncClient, didit, provider_key):
    didit.on("GET", "/v2/status", httpx.Response(200))
    didit.on("POST", "/v2/identity/verify", httpx.Response(500, text="stack trace from provider"))

    response = await client.post("/api/v1/kyc/verify", json=VERIFY_REQUEST)

    assert response.status_code == 502
    assert response.json() == {"detail": "Identity verification failed", "code": "PROVIDER_ERROR"}


@pytest.mark.asyncio
async def test_verify_validation_error(client: AsyncClient):
    response = await client.post("/api/v1/kyc/verify", json={"firstName": "Jane"})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


# ============== Status ==============


@pytest.mark.asyncio
async def test_status_endpoint(client: AsyncClient, didit, provider_key):
    didit.on(
        "GET",
        "/v2/identity/verify/vrf_001",
        httpx.Response(200, json={"id": "vrf_001", "status": "in_review", "overall_score": 40}),
    )

    response = await client.get("/api/v1/kyc/status/vrf_001")

    assert response.status_code == 200
    data = response.json()
    assert data["verificationId"] == "vrf_001"
    assert data["status"] == "pending"
    assert data["confidence"] == 40


# ============== Manual override ==============


@pytest.mark.asyncio
async def test_manual_requires_operator(client: AsyncClient):
    response = await client.post("/api/v1/kyc/manual", json={"subjectId": "observer-42", "approved": True})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_manual_approval(client: AsyncClient, auth_headers: dict, didit):
    response = await client.post(
        "/api/v1/kyc/manual",
        json={"subjectId": "observer-42", "approved": True, "notes": "Checked passport in person"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "approved"
    assert data["confidence"] == 100
    assert data["details"]["documentType"] == "manual"
    assert data["details"]["extractedData"]["verifiedBy"] == settings.OPERATOR_USERNAME
    assert data["details"]["extractedData"]["notes"] == "Checked passport in person"
    assert didit.requests == []


# ============== Webhook ==============


@pytest.mark.asyncio
async def test_webhook_approved(client: AsyncClient):
    payload = {
        "id": "vrf_001",
        "reference_id": "123456789",
        "status": "completed",
        "document_verification": {"status": "passed"},
        "face_verification": {"status": "passed"},
        "liveness_check": {"status": "passed"},
        "aml_check": {"status": "clear"},
    }

    response = await client.post("/api/v1/kyc/webhook", json=payload)

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "verificationId": "vrf_001",
        "referenceId": "123456789",
        "kycStatus": "approved",
    }


@pytest.mark.asyncio
async def test_webhook_aml_hit_rejects(client: AsyncClient):
    payload = {
        "reference_id": "123456789",
        "status": "completed",
        "document_verification": {"status": "passed"},
        "face_verification": {"status": "passed"},
        "liveness_check": {"status": "passed"},
        "aml_check": {"status": "hit"},
    }

    response = await client.post("/api/v1/kyc/webhook", json=payload)

    assert response.status_code == 200
    assert response.json()["kycStatus"] == "rejected"
    assert response.json()["verificationId"] is None


@pytest.mark.asyncio
async def test_webhook_missing_reference(client: AsyncClient):
    response = await client.post("/api/v1/kyc/webhook", json={"status": "completed"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing reference_id"


# ============== Health ==============


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
