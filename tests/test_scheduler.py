"""Tests for sweeps and per-alert checks."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from alertframe.models import Change, Snapshot
from alertframe.services.extraction import ExtractionFailure, ExtractionResult
from alertframe.services.scheduler import SchedulerService

T0 = datetime(2026, 3, 1, 12, 0, 0)

URL = "https://shop.example.com/item"


def page(text, item_count=None):
    return ExtractionResult(html_content=f"<span>{text}</span>", text_content=text, item_count=item_count)


async def count(session_factory, model, alert_id):
    async with session_factory() as session:
        result = await session.execute(select(func.count(model.id)).where(model.alert_id == alert_id))
        return result.scalar_one()


async def changes_for(session_factory, alert_id):
    async with session_factory() as session:
        result = await session.execute(select(Change).where(Change.alert_id == alert_id))
        return result.scalars().all()


class TestBaseline:
    async def test_first_check_records_snapshot_only(self, scheduler, extraction, notifier,
                                                     make_alert, load_alert, session_factory):
        alert = await make_alert()
        extraction.pages[URL] = page("$19.99")

        sweep = await scheduler.run_sweep(now=T0)

        assert (sweep.checked, sweep.changed, sweep.errors) == (1, 0, 0)
        assert await count(session_factory, Snapshot, alert.id) == 1
        assert await count(session_factory, Change, alert.id) == 0
        notifier.notify_change.assert_not_awaited()

        stored = await load_alert(alert.id)
        assert stored.status == "active"
        assert stored.last_checked_at == T0
        assert stored.next_check_at == T0 + timedelta(minutes=10)

    async def test_unchanged_page_creates_no_change(self, scheduler, extraction, make_alert, session_factory):
        alert = await make_alert()
        extraction.pages[URL] = page("$19.99")

        await scheduler.run_sweep(now=T0)
        sweep = await scheduler.run_sweep(now=T0 + timedelta(minutes=10))

        assert (sweep.checked, sweep.changed) == (1, 0)
        assert await count(session_factory, Snapshot, alert.id) == 2
        assert await count(session_factory, Change, alert.id) == 0

    async def test_reformatted_text_creates_no_change(self, scheduler, extraction, make_alert, session_factory):
        alert = await make_alert()
        extraction.pages[URL] = page("Price:\n    $19.99")
        await scheduler.run_sweep(now=T0)

        extraction.pages[URL] = page("Price: $19.99")
        sweep = await scheduler.run_sweep(now=T0 + timedelta(minutes=10))

        assert (sweep.checked, sweep.changed) == (1, 0)
        assert await count(session_factory, Change, alert.id) == 0


class TestChangeDetection:
    async def test_change_is_recorded_and_dispatched(self, scheduler, extraction, notifier,
                                                     make_alert, session_factory):
        alert = await make_alert()
        extraction.pages[URL] = page("$19.99")
        await scheduler.run_sweep(now=T0)

        extraction.pages[URL] = page("$17.49")
        later = T0 + timedelta(minutes=10)
        sweep = await scheduler.run_sweep(now=later)

        assert (sweep.checked, sweep.changed, sweep.errors) == (1, 1, 0)
        assert sweep.details[0].change_detected is True
        assert sweep.details[0].title == "Price tracker"

        [change] = await changes_for(session_factory, alert.id)
        assert change.change_type == "modified"
        assert change.detected_at == later
        assert change.diff_data["type"] == "text"
        assert change.notified is False

        notifier.notify_change.assert_awaited_once()
        _, notified_alert, notified_change, verdict = notifier.notify_change.await_args.args
        assert notified_alert.id == alert.id
        assert notified_change.id == change.id
        assert verdict.has_changed is True

    async def test_item_count_change(self, scheduler, extraction, make_alert, session_factory):
        alert = await make_alert(element_type="list")
        extraction.pages[URL] = page("a b c d e", item_count=5)
        await scheduler.run_sweep(now=T0)

        extraction.pages[URL] = page("a b c d e f g h", item_count=8)
        await scheduler.run_sweep(now=T0 + timedelta(minutes=10))

        [change] = await changes_for(session_factory, alert.id)
        assert change.change_type == "added"
        assert change.diff_data == {"type": "itemCount", "before": 5, "after": 8}

    async def test_notification_failure_keeps_change(self, scheduler, extraction, notifier,
                                                     make_alert, session_factory):
        alert = await make_alert()
        notifier.notify_change.side_effect = RuntimeError("smtp down")
        extraction.pages[URL] = page("v1")
        await scheduler.run_sweep(now=T0)

        extraction.pages[URL] = page("v2")
        sweep = await scheduler.run_sweep(now=T0 + timedelta(minutes=10))

        assert (sweep.changed, sweep.errors) == (1, 0)
        assert len(await changes_for(session_factory, alert.id)) == 1


class TestFailures:
    async def test_extraction_failure_sets_error_state(self, scheduler, extraction, make_alert, load_alert):
        alert = await make_alert()
        extraction.pages[URL] = ExtractionFailure("Element not found with selector: #price")

        sweep = await scheduler.run_sweep(now=T0)

        assert (sweep.checked, sweep.errors) == (0, 1)
        assert sweep.details[0].error == "Element not found with selector: #price"

        stored = await load_alert(alert.id)
        assert stored.status == "error"
        assert stored.error_message == "Element not found with selector: #price"
        assert stored.last_checked_at == T0
        assert stored.next_check_at == T0 + timedelta(minutes=10)
        assert stored.consecutive_failures == 1

    async def test_failure_without_frequency_retries_hourly(self, scheduler, extraction, make_alert, load_alert):
        alert = await make_alert(frequency_minutes=None)
        extraction.pages[URL] = RuntimeError("boom")

        await scheduler.run_sweep(now=T0)

        stored = await load_alert(alert.id)
        assert stored.status == "error"
        assert stored.error_message == "boom"
        assert stored.next_check_at == T0 + timedelta(minutes=60)

    async def test_error_alert_is_retried_and_recovers(self, scheduler, extraction, make_alert, load_alert):
        alert = await make_alert()
        extraction.pages[URL] = ExtractionFailure("Request timeout")
        await scheduler.run_sweep(now=T0)

        extraction.pages[URL] = page("$19.99")
        later = T0 + timedelta(minutes=10)
        sweep = await scheduler.run_sweep(now=later)

        assert (sweep.checked, sweep.errors) == (1, 0)
        stored = await load_alert(alert.id)
        assert stored.status == "active"
        assert stored.error_message is None
        assert stored.consecutive_failures == 0
        assert stored.next_check_at == later + timedelta(minutes=10)

    async def test_one_failing_alert_does_not_stop_others(self, scheduler, extraction, make_alert, session_factory):
        broken = await make_alert(url="https://broken.example.com", created_at=T0 - timedelta(days=1))
        healthy = await make_alert()
        extraction.pages["https://broken.example.com"] = RuntimeError("unexpected")
        extraction.pages[URL] = page("fine")

        sweep = await scheduler.run_sweep(now=T0)

        assert (sweep.checked, sweep.errors) == (1, 1)
        assert {d.alert_id for d in sweep.details} == {broken.id, healthy.id}
        assert await count(session_factory, Snapshot, healthy.id) == 1
        assert await count(session_factory, Snapshot, broken.id) == 0

    async def test_database_error_leaves_alert_untouched(self, scheduler, extraction, make_alert,
                                                         load_alert, session_factory, monkeypatch):
        alert = await make_alert()
        extraction.pages[URL] = page("$19.99")
        monkeypatch.setattr(
            scheduler, "_latest_snapshot",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("disk I/O error"))),
        )

        sweep = await scheduler.run_sweep(now=T0)

        assert sweep.errors == 1
        assert sweep.details[0].error.startswith("Database error")
        stored = await load_alert(alert.id)
        assert stored.status == "active"
        assert stored.next_check_at is None
        assert stored.last_checked_at is None
        assert await count(session_factory, Snapshot, alert.id) == 0

    async def test_failure_hook_gets_consecutive_count(self, session_factory, extraction, notifier,
                                                       make_alert):
        hook = AsyncMock()
        scheduler = SchedulerService(
            session_factory=session_factory,
            extraction=extraction,
            notifier=notifier,
            failure_hook=hook,
        )
        alert = await make_alert()
        extraction.pages[URL] = ExtractionFailure("Request timeout")

        await scheduler.run_sweep(now=T0)
        await scheduler.run_sweep(now=T0 + timedelta(minutes=10))

        assert hook.await_count == 2
        hooked_alert, failures = hook.await_args.args
        assert hooked_alert.id == alert.id
        assert failures == 2

    async def test_due_query_failure_fails_sweep(self, scheduler, monkeypatch):
        monkeypatch.setattr(
            scheduler, "_due_alerts",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("no such table"))),
        )

        with pytest.raises(OperationalError):
            await scheduler.run_sweep(now=T0)


class TestDueSelection:
    async def test_paused_alert_is_skipped(self, scheduler, extraction, make_alert):
        await make_alert(status="paused")

        sweep = await scheduler.run_sweep(now=T0)

        assert (sweep.checked, sweep.errors, sweep.details) == (0, 0, [])
        assert extraction.calls == []

    async def test_future_alert_is_skipped(self, scheduler, extraction, make_alert):
        await make_alert(next_check_at=T0 + timedelta(minutes=1))

        sweep = await scheduler.run_sweep(now=T0)

        assert sweep.checked == 0
        assert extraction.calls == []

    async def test_check_skips_alert_that_is_no_longer_due(self, scheduler, extraction, make_alert):
        alert = await make_alert(next_check_at=T0 + timedelta(minutes=5))

        outcome = await scheduler.check_alert(alert.id, T0)

        assert outcome.skipped is True
        assert extraction.calls == []

    async def test_deleted_alert_is_skipped(self, scheduler):
        outcome = await scheduler.check_alert("does-not-exist", T0)

        assert outcome.skipped is True


class TestSnapshotRetention:
    async def test_keeps_newest_snapshots(self, session_factory, extraction, notifier, make_alert):
        scheduler = SchedulerService(
            session_factory=session_factory,
            extraction=extraction,
            notifier=notifier,
            snapshot_retention=2,
        )
        alert = await make_alert()
        async with session_factory() as session:
            for minute in range(4):
                session.add(Snapshot(
                    alert_id=alert.id,
                    html_content=str(minute),
                    text_content=str(minute),
                    captured_at=T0 + timedelta(minutes=minute),
                ))
            await session.commit()

        await scheduler._cleanup_old_snapshots()

        async with session_factory() as session:
            result = await session.execute(
                select(Snapshot.text_content).where(Snapshot.alert_id == alert.id).order_by(Snapshot.captured_at)
            )
            assert result.scalars().all() == ["2", "3"]


def test_sweep_result_ignores_skipped_checks():
    from alertframe.services.scheduler import AlertCheckOutcome, SweepResult

    sweep = SweepResult(timestamp=datetime(2026, 1, 1))
    sweep.record(AlertCheckOutcome(alert_id="a", change_detected=True))
    sweep.record(AlertCheckOutcome(alert_id="b", error="boom"))
    sweep.record(AlertCheckOutcome(alert_id="c", skipped=True))

    assert (sweep.checked, sweep.changed, sweep.errors) == (1, 1, 1)
    assert [d.alert_id for d in sweep.details] == ["a", "b"]
