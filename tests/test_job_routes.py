"""Integration tests for job API endpoints.

Tests the HTTP surface end to end against a SQLite database, with the
generation service replaced by ``httpx.MockTransport``:
- POST /api/jobs/{job_type}/start - Admission control and queueing
- GET /api/jobs/{job_id}, GET /api/jobs - Polling and listing
- POST /api/jobs/{job_id}/cancel - Cancellation
- POST /api/jobs/process - Manual processing runs
- POST /api/cron/process-jobs - Authenticated, rate-limited cron trigger
- GET /api/jobs/health, GET /health - Health reporting
"""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from storyjobs.app import create_app, init_job_system
from storyjobs.core.config import Settings
from storyjobs.models.job import JobStatus
from storyjobs.services.generation.client import GenerationClient
from storyjobs.services.rate_limiter import RateLimiter

CRON_SECRET = "test_cron_secret"
GITHUB_HEADERS = {"X-Webhook-Secret": CRON_SECRET, "User-Agent": "GitHub-Actions/2.0"}


def generation_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, json={"url": "https://img.test/out.png", "permanent_url": "https://cdn.test/out.png"}
    )


def make_settings(**env) -> Settings:
    values = {
        "APP_ENV": "test",
        "ENABLE_AUTO_PROCESSING": "true",
        "GENERATION_SERVICE_URL": "https://generation.test",
        "CRON_WEBHOOK_SECRET": CRON_SECRET,
    }
    values.update(env)
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


@pytest_asyncio.fixture
async def app(session_factory):
    """Application with job components built over the test database.

    ASGITransport does not run the lifespan, so the components are wired here.
    """
    settings = make_settings()
    application = create_app(settings)
    client = GenerationClient(
        base_url=settings.generation_service_url,
        transport=httpx.MockTransport(generation_handler),
    )
    await init_job_system(application, settings, session_factory, generation_client=client)
    return application


@pytest_asyncio.fixture
async def test_client(app):
    """Provide AsyncClient for testing API endpoints."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def start_job(client: AsyncClient, job_type: str = "cartoonize", **body) -> str:
    payload = {"input_data": {"image_url": "https://img.test/in.png", "style": "anime"}}
    payload.update(body)
    response = await client.post(f"/api/jobs/{job_type}/start", json=payload)
    assert response.status_code == 202, response.text
    return response.json()["job_id"]


@pytest.mark.asyncio
class TestJobLifecycleEndpoints:
    """Test job creation, polling, listing and cancellation."""

    async def test_start_job_returns_polling_url(self, test_client):
        response = await test_client.post(
            "/api/jobs/storybook/start", json={"input_data": {"title": "Moon Picnic"}}
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["polling_url"] == f"/api/jobs/{data['job_id']}"
        assert data["estimated_duration_seconds"] == 8 * 60

    async def test_start_unknown_job_type(self, test_client):
        response = await test_client.post("/api/jobs/poetry/start", json={"input_data": {}})
        assert response.status_code == 422

    async def test_poll_active_job_is_not_cached(self, test_client):
        job_id = await start_job(test_client)

        response = await test_client.get(f"/api/jobs/{job_id}")

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        data = response.json()
        assert data["status"] == "pending"
        assert data["progress"] == 0
        assert data["current_step"] == "Initializing image cartoonization"
        assert data["metadata"] == {"type": "cartoonize", "user_id": None, "style": "anime"}
        assert data["result"] is None

    async def test_poll_unknown_job(self, test_client):
        response = await test_client.get(f"/api/jobs/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found"

    async def test_per_user_limit(self, test_client):
        user_id = str(uuid4())
        for _ in range(5):
            await start_job(test_client, user_id=user_id)

        response = await test_client.post(
            "/api/jobs/cartoonize/start", json={"input_data": {}, "user_id": user_id}
        )
        assert response.status_code == 429

        # Other users are unaffected
        await start_job(test_client, user_id=str(uuid4()))

    async def test_queue_full(self, test_client, app):
        app.state.job_config.update_config(max_queue_depth=2)
        await start_job(test_client)
        await start_job(test_client)

        response = await test_client.post("/api/jobs/cartoonize/start", json={"input_data": {}})
        assert response.status_code == 503

    async def test_list_jobs_with_filters(self, test_client):
        user_id = str(uuid4())
        cartoon_id = await start_job(test_client, user_id=user_id)
        await start_job(test_client, "scenes", user_id=user_id)
        await start_job(test_client)

        response = await test_client.get(
            "/api/jobs", params={"user_id": user_id, "type": "cartoonize", "status": "pending"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["jobs"][0]["job_id"] == cartoon_id

        response = await test_client.get("/api/jobs", params={"limit": 0})
        assert response.status_code == 422

    async def test_list_total_counts_all_pages(self, test_client):
        user_id = str(uuid4())
        for _ in range(3):
            await start_job(test_client, user_id=user_id)

        response = await test_client.get(
            "/api/jobs", params={"user_id": user_id, "limit": 1, "offset": 1}
        )

        data = response.json()
        assert len(data["jobs"]) == 1
        assert data["total"] == 3

    async def test_cancel_job(self, test_client):
        job_id = await start_job(test_client)

        response = await test_client.post(f"/api/jobs/{job_id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        again = await test_client.post(f"/api/jobs/{job_id}/cancel")
        assert again.status_code == 409

        missing = await test_client.post(f"/api/jobs/{uuid4()}/cancel")
        assert missing.status_code == 404

    async def test_cancel_disabled(self, test_client, app):
        app.state.job_config.update_config(enable_job_cancellation=False)
        job_id = await start_job(test_client)

        response = await test_client.post(f"/api/jobs/{job_id}/cancel")
        assert response.status_code == 403


@pytest.mark.asyncio
class TestProcessingEndpoints:
    """Test manual and cron-triggered processing."""

    async def test_manual_processing_completes_job(self, test_client):
        job_id = await start_job(test_client)

        response = await test_client.post("/api/jobs/process", json={"max_jobs": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["errors"] == 0
        assert data["statistics"]["completed"] == 1
        assert data["queue_status"]["queue"]["pending"] == 0

        polled = await test_client.get(f"/api/jobs/{job_id}")
        assert polled.headers["Cache-Control"] == "public, max-age=3600"
        job = polled.json()
        assert job["status"] == "completed"
        assert job["progress"] == 100
        assert job["current_phase"] is None
        assert job["result"]["url"] == "https://img.test/out.png"
        assert job["result"]["cached"] is True

    async def test_manual_processing_single_job(self, test_client):
        job_id = await start_job(test_client)
        await start_job(test_client)

        response = await test_client.post("/api/jobs/process", json={"job_id": job_id})

        data = response.json()
        assert data["specific_job"] == {"job_id": job_id, "success": True}
        assert data["statistics"]["pending"] == 1

    async def test_manual_processing_requires_auto_processing_or_force(self, test_client, app):
        app.state.job_config.update_config(enable_auto_processing=False)
        await start_job(test_client)

        response = await test_client.post("/api/jobs/process")
        assert response.status_code == 400

        forced = await test_client.post("/api/jobs/process", json={"force_processing": True})
        assert forced.status_code == 200
        assert forced.json()["processed"] == 1

    async def test_cron_requires_secret(self, test_client):
        missing = await test_client.post("/api/cron/process-jobs")
        assert missing.status_code == 401

        wrong = await test_client.post(
            "/api/cron/process-jobs", headers={"X-Webhook-Secret": "nope"}
        )
        assert wrong.status_code == 401

    async def test_cron_caps_jobs_per_provider(self, test_client, app):
        for _ in range(10):
            await start_job(test_client)

        response = await test_client.post(
            "/api/cron/process-jobs", json={"max_jobs": 50}, headers=GITHUB_HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "GitHub Actions"
        assert data["processed"] == 8
        assert data["queue_status"]["queue"]["pending"] == 2

    async def test_cron_rate_limit(self, test_client, app):
        app.state.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)

        first = await test_client.post("/api/cron/process-jobs", headers=GITHUB_HEADERS)
        assert first.status_code == 200

        second = await test_client.post("/api/cron/process-jobs", headers=GITHUB_HEADERS)
        assert second.status_code == 429
        assert int(second.headers["Retry-After"]) > 0
        assert second.json()["error"] == "Rate limit exceeded"

        # Providers are limited separately
        vercel = await test_client.post(
            "/api/cron/process-jobs",
            headers={"X-Webhook-Secret": CRON_SECRET, "User-Agent": "vercel-cron/1.0"},
        )
        assert vercel.status_code == 200

    async def test_cron_health_gate_and_emergency_override(self, test_client, app):
        manager = app.state.job_manager
        for _ in range(21):  # above the alert threshold of 20
            await manager.create_cartoonize_job({})

        gated = await test_client.post("/api/cron/process-jobs", headers=GITHUB_HEADERS)
        assert gated.status_code == 503
        assert gated.json()["health_check"]["healthy"] is False

        emergency = await test_client.post(
            "/api/cron/process-jobs",
            json={"emergency_mode": True, "max_jobs": 50},
            headers=GITHUB_HEADERS,
        )
        assert emergency.status_code == 200
        assert emergency.json()["processed"] == 15

    async def test_cron_respects_auto_processing_flag(self, test_client, app):
        app.state.job_config.update_config(enable_auto_processing=False)

        response = await test_client.post("/api/cron/process-jobs", headers=GITHUB_HEADERS)
        assert response.status_code == 400

        emergency = await test_client.post(
            "/api/cron/process-jobs", json={"emergency_mode": True}, headers=GITHUB_HEADERS
        )
        assert emergency.status_code == 200


@pytest.mark.asyncio
class TestHealthEndpoints:
    """Test job system and database health endpoints."""

    async def test_job_system_health(self, test_client):
        await start_job(test_client)

        response = await test_client.get("/api/jobs/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["metrics"]["queue_depth"] == 1
        assert data["system_status"]["manager"] is True
        assert data["operational"]["auto_processing_enabled"] is True
        assert data["config_summary"]["environment"] == "test"
        assert data["health"]["stuck_jobs_count"] == 0

    async def test_database_health(self, test_client):
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_health_without_database(self):
        settings = make_settings()
        application = create_app(settings)
        await init_job_system(application, settings, None)

        async with AsyncClient(
            transport=ASGITransport(app=application), base_url="http://test"
        ) as client:
            jobs_health = await client.get("/api/jobs/health")
            assert jobs_health.status_code == 503
            assert jobs_health.json()["system_status"]["manager"] is False

            db_health = await client.get("/health")
            assert db_health.status_code == 503

            start = await client.post("/api/jobs/scenes/start", json={"input_data": {}})
            assert start.status_code == 503


@pytest.mark.asyncio
async def test_job_status_values_are_wire_values(test_client):
    """Enum values on the wire are the lowercase/hyphenated forms."""
    job_id = await start_job(test_client, "auto-story")

    data = (await test_client.get(f"/api/jobs/{job_id}")).json()

    assert data["job_type"] == "auto-story"
    assert data["status"] == JobStatus.PENDING.value
