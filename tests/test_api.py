"""HTTP API tests against an in-memory container."""

from __future__ import annotations

import pytest
from conftest import FakeClock, FakeProvider, make_chain, simple_policy
from fastapi.testclient import TestClient

from ipsagent.api.app import create_api_app
from ipsagent.cache.budget import DailyBudget
from ipsagent.container import build_container
from ipsagent.core.config import Settings


@pytest.fixture
def client(clock: FakeClock, provider: FakeProvider, budget: DailyBudget):
    settings = Settings(job_store_backend="memory", budget_backend="memory", dispatcher_workers=0)
    container = build_container(settings, clock=clock, provider=provider, budget=budget)
    with TestClient(create_api_app(container)) as test_client:
        yield test_client


def _submit(client: TestClient, **overrides) -> str:
    body = {"kind": "agent_analysis", "symbols": ["AAPL"], "policy": simple_policy()}
    body.update(overrides)
    response = client.post("/jobs", json=body)
    assert response.status_code == 202, response.text
    return response.json()["job_id"]


class TestJobs:
    def test_submit_returns_pending(self, client: TestClient):
        response = client.post(
            "/jobs",
            json={"symbols": ["aapl"], "policy": simple_policy()},
            headers={"X-User-ID": "u1"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"

        job = client.get(f"/jobs/{body['job_id']}").json()
        assert job["status"] == "pending"
        assert job["user_id"] == "u1"
        assert job["progress"]["total_steps"] == 5
        assert "params" not in job

    def test_invalid_policy_is_422(self, client: TestClient):
        response = client.post(
            "/jobs",
            json={"symbols": ["AAPL"], "policy": {"factors": []}},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unknown_job_is_404(self, client: TestClient):
        response = client.get("/jobs/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_process_and_poll(self, client: TestClient, provider: FakeProvider):
        """A manual trigger runs the job to completion."""
        provider.prices["AAPL"] = 100.0
        provider.chains["AAPL"] = make_chain("AAPL")
        job_id = _submit(client)

        response = client.post("/jobs/worker/process", json={"job_id": job_id})
        assert response.status_code == 200
        assert response.json()["job_id"] == job_id

        job = client.get(f"/jobs/{job_id}").json()
        assert job["status"] == "completed"
        assert job["progress"]["completed_steps"] == 5
        assert job["result"]["candidates"]

    def test_process_non_pending_is_409(self, client: TestClient):
        job_id = _submit(client, symbols=["NODATA"])
        client.post("/jobs/worker/process", json={"job_id": job_id})

        response = client.post("/jobs/worker/process", json={"job_id": job_id})

        assert response.status_code == 409
        assert response.json()["error"] == "CLAIM_CONFLICT"

    def test_process_next_without_body(self, client: TestClient):
        response = client.post("/jobs/worker/process")

        assert response.status_code == 200
        assert response.json() == {"job_id": None, "message": "No pending jobs"}

    def test_recover_stuck(self, client: TestClient, clock: FakeClock):
        job_id = _submit(client, symbols=["NODATA"])
        assert client.post("/jobs/recover").json()["job_id"] is None

        clock.advance(61)
        response = client.post("/jobs/recover")

        assert response.json()["job_id"] == job_id
        assert client.get(f"/jobs/{job_id}").json()["status"] == "completed"

    def test_cancel(self, client: TestClient):
        job_id = _submit(client)

        first = client.post(f"/jobs/{job_id}/cancel").json()
        second = client.post(f"/jobs/{job_id}/cancel").json()

        assert first == {"job_id": job_id, "cancelled": True}
        assert second["cancelled"] is False
        assert client.get(f"/jobs/{job_id}").json()["status"] == "cancelled"

    def test_list_filters_by_status(self, client: TestClient):
        pending = _submit(client)
        cancelled = _submit(client)
        client.post(f"/jobs/{cancelled}/cancel")

        listed = client.get("/jobs", params={"status": "pending"}).json()

        assert [job["id"] for job in listed] == [pending]


class TestMarketData:
    def test_quotes_with_budget_headers(self, client: TestClient, provider: FakeProvider):
        provider.prices["AAPL"] = 190.0

        response = client.get("/market-data/quotes", params={"symbols": "aapl,AAPL,msft"})

        assert response.status_code == 200
        assert response.headers["X-Budget-Used"] == "1"
        assert response.headers["X-Budget-Limit"] == "50000"
        assert response.headers["X-Budget-Exceeded"] == "false"
        assert response.headers["X-RateLimited"] == "false"
        items = response.json()["items"]
        assert [item["symbol"] for item in items] == ["AAPL", "MSFT"]
        assert items[0]["quote"]["price"] == 190.0
        assert items[1]["quote"] is None
        assert items[1]["tag"] == "no-data:FETCH_FAILED"

    def test_blank_symbols_is_422(self, client: TestClient):
        response = client.get("/market-data/quotes", params={"symbols": " , "})
        assert response.status_code == 422

    def test_stats(self, client: TestClient):
        stats = client.get("/market-data/stats").json()
        assert stats["budget"]["limit"] == 50_000


class TestHealth:
    def test_live(self, client: TestClient):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_with_memory_backends(self, client: TestClient):
        """Only configured backends are checked."""
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["checks"] == {"workers": True}

    def test_request_id_echoed(self, client: TestClient):
        response = client.get("/health/live", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"
