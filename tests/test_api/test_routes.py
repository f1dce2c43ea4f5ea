"""Tests for the HTTP API."""

import re
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from delivery_engine.api.routes import ERROR_STATUS, _unwrap
from delivery_engine.engine.session import SessionRegistry
from delivery_engine.errors import ErrorKind
from delivery_engine.models.result import OperationResult
from delivery_engine.main import app
from tests.fakes import FakeBackend

PARTNER = {"X-Actor-Id": "partner-1", "X-Actor-Role": "delivery"}


@pytest_asyncio.fixture
async def sessions(redis_client, backend: FakeBackend) -> AsyncGenerator[SessionRegistry, None]:
    """Registry wired to fake Redis and the in-memory backend."""
    registry = SessionRegistry(
        redis_client,
        gateway_factory=lambda actor: backend.gateway(actor.id),
        watch_store=False,
        poll=False,
    )
    app.state.sessions = registry
    yield registry
    await registry.close_all()
    del app.state.sessions


@pytest_asyncio.fixture
async def test_client(sessions: SessionRegistry) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def online_client(test_client: AsyncClient) -> AsyncClient:
    """Client with an open, online session for partner-1."""
    response = await test_client.post("/api/v1/sessions", headers=PARTNER)
    assert response.status_code == 201
    response = await test_client.put("/api/v1/delivery/status", json={"online": True}, headers=PARTNER)
    assert response.json()["online"] is True
    return test_client


@pytest.mark.asyncio
async def test_health(test_client: AsyncClient) -> None:
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_session(test_client: AsyncClient) -> None:
    response = await test_client.get("/api/v1/delivery/tasks/available", headers=PARTNER)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_requires_actor_headers(test_client: AsyncClient) -> None:
    response = await test_client.get("/api/v1/delivery/tasks/available")

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_customer_cannot_open_session(test_client: AsyncClient) -> None:
    response = await test_client.post(
        "/api/v1/sessions",
        headers={"X-Actor-Id": "c-1", "X-Actor-Role": "customer"},
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_full_delivery_flow(online_client: AsyncClient) -> None:
    """List, accept, progress and complete a delivery over HTTP."""
    available = await online_client.get("/api/v1/delivery/tasks/available", headers=PARTNER)
    assert [t["id"] for t in available.json()["tasks"]] == ["T001", "T002"]

    accepted = await online_client.put("/api/v1/delivery/tasks/T001/accept", headers=PARTNER)
    assert accepted.status_code == 200
    code = accepted.json()["task"]["confirmationCode"]
    assert code == "1234"

    progressed = await online_client.put(
        "/api/v1/delivery/tasks/T001/status", json={"status": "Picked Up"}, headers=PARTNER
    )
    assert progressed.json()["task"]["status"] == "PickedUp"

    completed = await online_client.post(
        "/api/v1/delivery/tasks/T001/complete", json={"code": code}, headers=PARTNER
    )
    assert completed.status_code == 200
    assert completed.json()["feeCredited"] == 60

    done = await online_client.get("/api/v1/delivery/tasks/completed", headers=PARTNER)
    assert [t["id"] for t in done.json()["tasks"]] == ["T001"]

    ongoing = await online_client.get("/api/v1/delivery/tasks/ongoing", headers=PARTNER)
    assert ongoing.json()["tasks"] == []

    earnings = await online_client.get("/api/v1/delivery/earnings", headers=PARTNER)
    assert earnings.json()["allTime"] == 60
    assert earnings.json()["completedCount"] == 1


@pytest.mark.asyncio
async def test_error_kinds_map_to_status_codes(online_client: AsyncClient) -> None:
    await online_client.get("/api/v1/delivery/tasks/available", headers=PARTNER)
    await online_client.put("/api/v1/delivery/tasks/T001/accept", headers=PARTNER)

    again = await online_client.put("/api/v1/delivery/tasks/T001/accept", headers=PARTNER)
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "AlreadyAssigned"

    to_delivered = await online_client.put(
        "/api/v1/delivery/tasks/T001/status", json={"status": "Delivered"}, headers=PARTNER
    )
    assert to_delivered.status_code == 422
    assert to_delivered.json()["detail"]["error"] == "InvalidTransition"

    wrong_code = await online_client.post(
        "/api/v1/delivery/tasks/T001/complete", json={"code": "0000"}, headers=PARTNER
    )
    assert wrong_code.status_code == 400
    assert wrong_code.json()["detail"]["error"] == "CodeMismatch"

    missing = await online_client.post(
        "/api/v1/delivery/tasks/T002/complete", json={"code": "5678"}, headers=PARTNER
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "TaskNotFound"


@pytest.mark.asyncio
async def test_earnings_summary_and_payout(online_client: AsyncClient) -> None:
    summary = await online_client.get(
        "/api/v1/delivery/earnings/summary", params={"period": "week"}, headers=PARTNER
    )
    assert summary.status_code == 200
    assert summary.json()["period"] == "week"
    assert summary.json()["source"] == "gateway"

    payout = await online_client.post(
        "/api/v1/delivery/payouts", json={"amount": 100}, headers=PARTNER
    )
    assert payout.status_code == 201
    assert payout.json()["payout"]["amount"] == 100
    assert payout.json()["earnings"]["transferred"] == 100

    negative = await online_client.post(
        "/api/v1/delivery/payouts", json={"amount": -1}, headers=PARTNER
    )
    assert negative.status_code == 422


@pytest.mark.asyncio
async def test_close_session(online_client: AsyncClient, sessions: SessionRegistry) -> None:
    response = await online_client.delete("/api/v1/sessions", headers=PARTNER)

    assert response.status_code == 204
    assert sessions.get("partner-1") is None


@pytest.mark.asyncio
async def test_earnings_history(online_client: AsyncClient) -> None:
    """Completed fees show up in the daily and weekly series."""
    await online_client.get("/api/v1/delivery/tasks/available", headers=PARTNER)
    await online_client.put("/api/v1/delivery/tasks/T001/accept", headers=PARTNER)
    await online_client.post(
        "/api/v1/delivery/tasks/T001/complete", json={"code": "1234"}, headers=PARTNER
    )

    response = await online_client.get("/api/v1/delivery/earnings/history", headers=PARTNER)

    assert response.status_code == 200
    body = response.json()
    assert len(body["daily"]) == 1
    assert body["daily"][0]["total"] == 60
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", body["daily"][0]["date"])
    assert len(body["weekly"]) == 1
    assert re.fullmatch(r"\d{4}-W\d{2}", body["weekly"][0]["week"])


@pytest.mark.asyncio
async def test_unknown_earnings_period_is_rejected(online_client: AsyncClient) -> None:
    response = await online_client.get(
        "/api/v1/delivery/earnings/summary", params={"period": "fortnight"}, headers=PARTNER
    )

    assert response.status_code == 422


def test_invalid_transition_maps_to_422() -> None:
    assert ERROR_STATUS[ErrorKind.INVALID_TRANSITION] == 422


def test_unwrap_failure_without_error_kind() -> None:
    """A failed result missing its error kind surfaces as a server error."""
    with pytest.raises(HTTPException) as exc_info:
        _unwrap(OperationResult(success=False))

    assert exc_info.value.status_code == 500


def test_unwrap_failure_with_error_kind() -> None:
    with pytest.raises(HTTPException) as exc_info:
        _unwrap(OperationResult(success=False, error=ErrorKind.TASK_NOT_FOUND, message="gone"))

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == {"error": "TaskNotFound", "message": "gone"}
