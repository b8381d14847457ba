"""
Test fixtures for AlertFrame tests.
"""
import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport

from alertframe.database import build_engine, build_session_factory, create_tables, get_db
from alertframe.main import app
from alertframe.models import Alert, User
from alertframe.routers.alerts import get_notifier
from alertframe.routers.cron import get_scheduler
from alertframe.services.scheduler import SchedulerService

T0 = datetime(2026, 3, 1, 12, 0, 0)


class FakeExtraction:
    """Stands in for the extraction service; pages map url -> result or exception."""

    def __init__(self):
        self.pages = {}
        self.calls = []

    async def extract(self, url, selector, user=None):
        self.calls.append((url, selector))
        result = self.pages[url]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture(scope="function")
async def session_factory(tmp_path):
    """
    Fresh SQLite database file for each test, with all tables created.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def extraction():
    return FakeExtraction()


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.notify_change = AsyncMock()
    notifier.send_alert_created = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def scheduler(session_factory, extraction, notifier):
    return SchedulerService(
        session_factory=session_factory,
        extraction=extraction,
        notifier=notifier,
        max_concurrent_checks=1,
        snapshot_retention=50,
    )


@pytest.fixture
def make_alert(session_factory):
    """Insert an alert (and its owner) and return it."""

    async def _make_alert(**overrides):
        async with session_factory() as session:
            user = User(email=overrides.pop("owner_email", f"owner-{uuid.uuid4().hex[:8]}@example.com"))
            session.add(user)
            await session.flush()

            fields = {
                "user_id": user.id,
                "title": "Price tracker",
                "url": "https://shop.example.com/item",
                "css_selector": "#price",
                "frequency_minutes": 10,
                "created_at": T0,
            }
            fields.update(overrides)
            alert = Alert(**fields)
            session.add(alert)
            await session.commit()
            return alert

    return _make_alert


@pytest.fixture
def load_alert(session_factory):
    async def _load_alert(alert_id):
        async with session_factory() as session:
            return await session.get(Alert, alert_id)

    return _load_alert


@pytest.fixture(scope="function")
async def client(session_factory, scheduler, notifier):
    """
    Async test client with the database, scheduler and notifier overridden.
    """
    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
