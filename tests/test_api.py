"""Tests for the onboarding verification HTTP API."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from email_verification.config import Settings
from email_verification.database.engine import Database
from email_verification.main import app
from email_verification.services.email_service import EmailResult, EmailService
from email_verification.services.verification_service import VerificationService
from email_verification.store.verification_store import VerificationStore


@pytest.fixture
def email_service():
    svc = EmailService(Settings(_env_file=None, email_provider="console"))
    svc.send_verification_code = AsyncMock(
        return_value=EmailResult(success=True, provider="console")
    )
    return svc


@pytest_asyncio.fixture
async def client(clock, email_service):
    """HTTP client wired to a fresh store and an in-memory database."""
    database = Database("sqlite+aiosqlite://")
    await database.create_tables()

    config = Settings(_env_file=None, environment="test")
    app.state.verification_service = VerificationService(
        VerificationStore(clock=clock), email_service, config, clock=clock
    )
    app.state.database = database

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    await database.drop_tables()
    await database.dispose()


def last_code(email_service) -> str:
    return email_service.send_verification_code.call_args.args[1]


# ──────────────────────────────────────────────────────────
# POST /send-verification
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_send_verification_success(client, email_service):
    resp = await client.post(
        "/api/onboarding/send-verification",
        json={"email": "a@example.com", "organization_name": "Food Bank"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Verification code sent successfully"}
    email_service.send_verification_code.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"email": ""}, {"email": "nope"}])
async def test_send_verification_bad_email(client, body):
    resp = await client.post("/api/onboarding/send-verification", json=body)

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_send_verification_rate_limited(client):
    for _ in range(5):
        resp = await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})
        assert resp.status_code == 200

    resp = await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})

    assert resp.status_code == 429
    assert resp.json()["detail"].startswith("Too many verification requests. Please try again after")


@pytest.mark.asyncio
async def test_send_verification_email_failure(client, email_service):
    email_service.send_verification_code.return_value = EmailResult(
        success=False, provider="smtp", error="timeout"
    )

    resp = await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to send verification email. Please try again."


# ──────────────────────────────────────────────────────────
# POST /verify-code
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_verify_code_flow(client, email_service):
    await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})
    code = last_code(email_service)

    status = await client.get("/api/onboarding/verification-status", params={"email": "a@example.com"})
    assert status.json() == {"email": "a@example.com", "verified": False, "pending": True}

    resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": code})
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["email"] == "a@example.com"
    assert data["token"]

    status = await client.get("/api/onboarding/verification-status", params={"email": "A@Example.com"})
    assert status.json() == {"email": "a@example.com", "verified": True, "pending": False}

    replay = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": code})
    assert replay.status_code == 400
    assert replay.json()["detail"] == "No verification code found or code expired"


@pytest.mark.asyncio
async def test_verify_code_missing_fields(client):
    resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email and verification code are required"


@pytest.mark.asyncio
async def test_verify_code_bad_format(client):
    resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": "12"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid code format. Please enter a 6-digit code."


@pytest.mark.asyncio
async def test_verify_code_attempts_exceeded(client, email_service):
    await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})
    code = last_code(email_service)
    wrong = "999999" if code != "999999" else "888888"

    for _ in range(5):
        resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": wrong})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid verification code"

    resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": code})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Too many failed attempts. Please request a new code."


@pytest.mark.asyncio
async def test_verify_code_expired(client, email_service, clock):
    await client.post("/api/onboarding/send-verification", json={"email": "a@example.com"})
    code = last_code(email_service)
    clock.advance(minutes=15, seconds=1)

    resp = await client.post("/api/onboarding/verify-code", json={"email": "a@example.com", "code": code})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "No verification code found or code expired"


@pytest.mark.asyncio
async def test_verification_status_bad_email(client):
    resp = await client.get("/api/onboarding/verification-status", params={"email": "nope"})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_verification_status_tracks_pending_and_verified(client, email_service, clock):
    url = "/api/onboarding/verification-status"

    before = await client.get(url, params={"email": "b@example.com"})
    assert before.status_code == 200
    assert before.json() == {"email": "b@example.com", "verified": False, "pending": False}

    await client.post("/api/onboarding/send-verification", json={"email": "b@example.com"})
    assert (await client.get(url, params={"email": "b@example.com"})).json()["pending"] is True

    clock.advance(minutes=16)
    expired = await client.get(url, params={"email": "b@example.com"})
    assert expired.json() == {"email": "b@example.com", "verified": False, "pending": False}

    await client.post("/api/onboarding/send-verification", json={"email": "b@example.com"})
    code = last_code(email_service)
    await client.post("/api/onboarding/verify-code", json={"email": "b@example.com", "code": code})

    after = await client.get(url, params={"email": "b@example.com"})
    assert after.json() == {"email": "b@example.com", "verified": True, "pending": False}

    other = await client.get(url, params={"email": "c@example.com"})
    assert other.json()["verified"] is False


@pytest.mark.asyncio
async def test_magic_code_rejected_for_localhost_host_header_by_default(client):
    resp = await client.post(
        "/api/onboarding/verify-code",
        json={"email": "victim@example.com", "code": "111111"},
        headers={"Host": "localhost"},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "No verification code found or code expired"


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["pending_codes"] == 0
