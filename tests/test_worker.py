"""Tests for worker mode."""
import logging

import httpx

from alertframe import worker as worker_module
from alertframe.config import Settings
from alertframe.worker import SweepWorker

SWEEP = {
    "success": True,
    "timestamp": "2026-03-01T12:00:00Z",
    "summary": {"alertsChecked": 2, "changesDetected": 1, "errors": 1},
    "details": [
        {"alertId": "a1", "title": "Price", "changeDetected": True},
        {"alertId": "a2", "title": "Stock", "error": "Request timeout"},
    ],
    "duration": 1200,
}


def make_worker(**overrides):
    fields = {"server_url": "http://alertframe:8000/", "cron_secret": "s3cret"}
    fields.update(overrides)
    return SweepWorker(Settings(**fields))


def mock_httpx(monkeypatch, handler):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        worker_module.httpx, "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


async def test_trigger_calls_sweep_endpoint(monkeypatch, caplog):
    caplog.set_level(logging.INFO)
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=SWEEP)

    mock_httpx(monkeypatch, handler)

    data = await make_worker().trigger()

    assert data == SWEEP
    assert str(requests[0].url) == "http://alertframe:8000/api/cron/check-alerts"
    assert requests[0].headers["Authorization"] == "Bearer s3cret"
    assert "checked=2 changes=1 errors=1" in caplog.text
    assert "Stock: error: Request timeout" in caplog.text


async def test_no_auth_header_without_secret(monkeypatch):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=SWEEP)

    mock_httpx(monkeypatch, handler)

    await make_worker(cron_secret=None).trigger()

    assert "Authorization" not in requests[0].headers


async def test_server_error_is_logged_not_raised(monkeypatch, caplog):
    mock_httpx(monkeypatch, lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

    assert await make_worker().trigger() is None
    assert "HTTP 401" in caplog.text


async def test_unreachable_server(monkeypatch, caplog):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    mock_httpx(monkeypatch, refuse)

    assert await make_worker().trigger() is None
    assert "Cannot connect to server" in caplog.text
