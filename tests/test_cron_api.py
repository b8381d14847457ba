"""Tests for the sweep trigger endpoint."""
from unittest.mock import AsyncMock

import pytest

from alertframe.config import settings
from alertframe.main import app
from alertframe.routers.cron import get_scheduler
from alertframe.services.extraction import ExtractionFailure, ExtractionResult

URL = "https://shop.example.com/item"


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    return "s3cret"


async def test_rejects_missing_token(client, cron_secret, extraction, make_alert):
    await make_alert()

    response = await client.get("/api/cron/check-alerts")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert extraction.calls == []


async def test_rejects_wrong_token(client, cron_secret):
    response = await client.get("/api/cron/check-alerts", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


async def test_open_when_no_secret_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)

    response = await client.get("/api/cron/check-alerts")

    assert response.status_code == 200
    assert response.json()["summary"] == {"alertsChecked": 0, "changesDetected": 0, "errors": 0}


@pytest.mark.parametrize("method", ["GET", "POST"])
async def test_sweep_summary(client, cron_secret, extraction, make_alert, method):
    alert = await make_alert()
    extraction.pages[URL] = ExtractionResult("<b>1</b>", "1")

    response = await client.request(
        method, "/api/cron/check-alerts", headers={"Authorization": f"Bearer {cron_secret}"}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["timestamp"].endswith("Z")
    assert data["summary"] == {"alertsChecked": 1, "changesDetected": 0, "errors": 0}
    assert data["details"] == [{"alertId": alert.id, "title": "Price tracker", "changeDetected": False}]
    assert isinstance(data["duration"], int)


async def test_error_details(client, cron_secret, extraction, make_alert):
    alert = await make_alert()
    extraction.pages[URL] = ExtractionFailure("Request timeout")

    response = await client.get("/api/cron/check-alerts", headers={"Authorization": f"Bearer {cron_secret}"})

    data = response.json()
    assert data["summary"]["errors"] == 1
    assert data["details"] == [{"alertId": alert.id, "title": "Price tracker", "error": "Request timeout"}]


async def test_sweep_failure_returns_500(client, cron_secret):
    failing = AsyncMock()
    failing.run_sweep = AsyncMock(side_effect=RuntimeError("database unavailable"))
    app.dependency_overrides[get_scheduler] = lambda: failing

    response = await client.get("/api/cron/check-alerts", headers={"Authorization": f"Bearer {cron_secret}"})

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Sweep failed"
    assert data["message"] == "database unavailable"
    assert "duration" in data


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
