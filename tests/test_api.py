"""Tests for the HTTP trigger surface."""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from flow_exporter import main
from flow_exporter.errors import ConfigurationError, SourceFetchError
from flow_exporter.models import RunResult, RunStatus, utcnow


def _result(status=RunStatus.DONE, error=None, processed=3):
    return RunResult(
        run_id="abc123",
        status=status,
        started_at=utcnow(),
        finished_at=utcnow(),
        processed_count=processed,
        error=error,
        error_code=error.code if error else None,
        error_message=error.message if error else None,
    )


@pytest.fixture
def client():
    main.last_result = None
    transport = ASGITransport(app=main.app)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_health(client):
    async with client:
        resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_run_reports_completed_result(client, monkeypatch):
    calls = []

    async def fake_run(lookback_hours, settings=None):
        calls.append(lookback_hours)
        return _result()

    monkeypatch.setattr(main, "run_extraction", fake_run)

    async with client:
        resp = await client.post("/extraction/run", params={"lookback_hours": 6})
        status = await client.get("/extraction/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["result"]["processed_count"] == 3
    assert "error" not in body["result"]
    assert calls == [6]
    assert status.json()["last_run"]["run_id"] == "abc123"


@pytest.mark.asyncio
async def test_failed_run_maps_to_bad_gateway(client, monkeypatch):
    async def fake_run(lookback_hours, settings=None):
        return _result(RunStatus.FAILED, SourceFetchError("boom", status_code=500), 0)

    monkeypatch.setattr(main, "run_extraction", fake_run)

    async with client:
        resp = await client.post("/extraction/run")

    assert resp.status_code == 502
    assert resp.json()["result"]["error_code"] == SourceFetchError.code


@pytest.mark.asyncio
async def test_configuration_failure_maps_to_server_error(client, monkeypatch):
    async def fake_run(lookback_hours, settings=None):
        return _result(RunStatus.FAILED, ConfigurationError("missing key"), 0)

    monkeypatch.setattr(main, "run_extraction", fake_run)

    async with client:
        resp = await client.post("/extraction/run")

    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_overlapping_trigger_is_skipped(client, monkeypatch):
    release = asyncio.Event()
    entered = asyncio.Event()

    async def slow_run(lookback_hours, settings=None):
        entered.set()
        await release.wait()
        return _result()

    monkeypatch.setattr(main, "run_extraction", slow_run)

    async with client:
        first = asyncio.create_task(client.post("/extraction/run"))
        await entered.wait()
        second = await client.post("/extraction/run")
        release.set()
        first_resp = await first

    assert second.json() == {"status": "skipped", "result": None}
    assert first_resp.json()["status"] == "completed"


@pytest.mark.asyncio
async def test_rejects_non_positive_lookback(client):
    async with client:
        resp = await client.post("/extraction/run", params={"lookback_hours": 0})
    assert resp.status_code == 422
