import uuid
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from app.config.settings import settings
from app.db.session import get_async_session
from app.main import create_application
from app.utils.datetime_utils import utc_now

API = settings.API_PREFIX
INTERNAL = settings.INTERNAL_PREFIX


@pytest_asyncio.fixture
async def client(session_factory):
    application = create_application()

    async def override_session():
        async with session_factory() as db:
            yield db

    application.dependency_overrides[get_async_session] = override_session
    transport = httpx.ASGITransport(app=application)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def _user_headers(user_id) -> dict:
    return {"X-User-Id": str(user_id)}


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_health_sets_request_id_and_security_headers(self, client):
        response = await client.get(
            f"{API}/health/", headers={"X-Request-ID": "mobile-trace-0001"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["schedulerStarted"] is False
        assert body["requestId"] == "mobile-trace-0001"
        assert response.headers["X-Request-ID"] == "mobile-trace-0001"
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_malformed_request_id_is_replaced(self, client):
        response = await client.get(f"{API}/health/", headers={"X-Request-ID": "bad id!"})
        assert response.headers["X-Request-ID"] != "bad id!"
        uuid.UUID(response.headers["X-Request-ID"])

    @pytest.mark.asyncio
    async def test_missing_identity_is_rejected(self, client):
        response = await client.get(f"{API}/recurrence-rules")
        assert response.status_code == 401
        assert response.json()["success"] is False


class TestRecurrenceRulesApi:
    @pytest.mark.asyncio
    async def test_create_and_fetch_rule(self, client, user_id, sample_pet):
        start = (utc_now() - timedelta(days=1)).replace(microsecond=0)
        response = await client.post(
            f"{API}/recurrence-rules",
            headers=_user_headers(user_id),
            json={
                "petId": str(sample_pet.id),
                "title": "Morning walk",
                "type": "walk",
                "frequency": "daily",
                "dailyTimes": ["08:00"],
                "timezone": "Europe/Istanbul",
                "startDate": start.isoformat(),
            },
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["eventsCreated"] > 0
        rule_id = data["rule"]["id"]

        fetched = await client.get(
            f"{API}/recurrence-rules/{rule_id}", headers=_user_headers(user_id)
        )
        assert fetched.status_code == 200
        assert fetched.json()["data"]["timezone"] == "Europe/Istanbul"

        # Rules are scoped to their owner
        other = await client.get(
            f"{API}/recurrence-rules/{rule_id}", headers=_user_headers(uuid.uuid4())
        )
        assert other.status_code == 404
        assert other.json()["meta"]["error_code"] == "RECURRENCE_RULE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_timezone_is_a_validation_error(self, client, user_id, sample_pet):
        response = await client.post(
            f"{API}/recurrence-rules",
            headers=_user_headers(user_id),
            json={
                "petId": str(sample_pet.id),
                "title": "Morning walk",
                "type": "walk",
                "frequency": "daily",
                "timezone": "Mars/Olympus",
                "startDate": "2024-01-01T00:00:00Z",
            },
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_pet(self, client, user_id):
        response = await client.post(
            f"{API}/recurrence-rules",
            headers=_user_headers(user_id),
            json={
                "petId": str(uuid.uuid4()),
                "title": "Morning walk",
                "type": "walk",
                "frequency": "daily",
                "timezone": "UTC",
                "startDate": "2024-01-01T00:00:00Z",
            },
        )
        assert response.status_code == 404
        assert response.json()["meta"]["error_code"] == "PET_NOT_FOUND"


class TestInternalApi:
    @pytest.mark.asyncio
    async def test_disabled_without_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_API_KEY", "")
        response = await client.get(f"{INTERNAL}/jobs/status")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_key_is_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_API_KEY", "s3cret")
        response = await client.get(
            f"{INTERNAL}/jobs/status", headers={"X-Internal-Api-Key": "nope"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_job_status(self, client, monkeypatch):
        monkeypatch.setattr(settings, "INTERNAL_API_KEY", "s3cret")
        response = await client.get(
            f"{INTERNAL}/jobs/status", headers={"X-Internal-Api-Key": "s3cret"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["schedulerStarted"] is False
        assert {job["name"] for job in data["jobs"]} >= {
            "recurrence-generator",
            "budget-alert-checker",
        }


class TestNotFound:
    @pytest.mark.asyncio
    async def test_missing_budget_is_404(self, client, user_id):
        response = await client.get(f"{API}/budget", headers=_user_headers(user_id))

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["meta"]["error_code"] == "BUDGET_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_event_is_404(self, client, user_id):
        response = await client.get(
            f"{API}/events/{uuid.uuid4()}", headers=_user_headers(user_id)
        )

        assert response.status_code == 404
        assert response.json()["meta"]["error_code"] == "EVENT_NOT_FOUND"
