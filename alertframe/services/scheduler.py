"""Scheduler service - sweeps due alerts and checks them for changes.

Each sweep:
- selects alerts that are due (active or error, next_check_at unset or passed)
- checks each alert independently; one alert failing never affects another
- returns counters and a per-alert detail list

Each alert check is strictly sequential (extract, detect, persist,
reschedule) and writes its snapshot, optional change and schedule update
in one transaction. Notifications go out after that transaction commits.

Failure handling per alert:
- extraction or unexpected errors: the alert moves to ``error`` and is
  retried on its normal cadence
- database errors: the transaction rolls back and the alert is left
  untouched, so it stays due for the next sweep
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from ..config import settings
from ..database import async_session
from ..models import Alert, Change, Snapshot
from ..models.alert import STATUS_ACTIVE, STATUS_ERROR
from ..utils.db_utils import retry_on_lock
from .differ import NO_CHANGE, ChangeVerdict, detect_changes
from .extraction import ExtractionFailure, ExtractionService, extraction_service
from .notifier import NotificationService, notification_service
from .scheduling import (
    SCHEDULED_STATUSES,
    is_due,
    next_check_after_failure,
    next_check_after_success,
)

logger = logging.getLogger(__name__)

# Maximum alerts checked at the same time within one sweep
MAX_CONCURRENT_CHECKS = 5

# Called after an alert is put in the error state, with its consecutive failure count
FailureHook = Callable[[Alert, int], Awaitable[None]]


@dataclass
class AlertCheckOutcome:
    """Result of checking one alert."""
    alert_id: str
    title: Optional[str] = None
    change_detected: bool = False
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class SweepResult:
    """Aggregate result of one sweep."""
    timestamp: datetime
    checked: int = 0
    changed: int = 0
    errors: int = 0
    details: List[AlertCheckOutcome] = field(default_factory=list)
    duration_ms: int = 0

    def record(self, outcome: AlertCheckOutcome):
        if outcome.skipped:
            return
        if outcome.error is not None:
            self.errors += 1
        else:
            self.checked += 1
            if outcome.change_detected:
                self.changed += 1
        self.details.append(outcome)


class SchedulerService:
    """Runs sweeps on a timer and checks individual alerts."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        extraction: Optional[ExtractionService] = None,
        notifier: Optional[NotificationService] = None,
        failure_hook: Optional[FailureHook] = None,
        max_concurrent_checks: int = MAX_CONCURRENT_CHECKS,
        snapshot_retention: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session
        self.extraction = extraction or extraction_service
        self.notifier = notifier or notification_service
        self.failure_hook = failure_hook
        self.max_concurrent_checks = max_concurrent_checks
        # Never drop the snapshot the next comparison needs
        self.snapshot_retention = max(snapshot_retention or settings.snapshot_retention, 1)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        """Start the periodic sweep."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        # One sweep at a time; a late tick is merged into the next one
        self.scheduler.add_job(
            self._scheduled_sweep,
            trigger=IntervalTrigger(seconds=settings.sweep_interval_seconds),
            id="sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.sweep_interval_seconds,
        )

        self.scheduler.add_job(
            self._cleanup_old_snapshots,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_snapshots",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (sweep every {settings.sweep_interval_seconds}s)")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _scheduled_sweep(self):
        try:
            await self.run_sweep()
        except Exception as e:
            logger.error(f"Sweep failed: {e}")

    async def _due_alerts(self, now: datetime) -> List[tuple]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Alert.id, Alert.title)
                .where(
                    Alert.status.in_(SCHEDULED_STATUSES),
                    or_(Alert.next_check_at.is_(None), Alert.next_check_at <= now),
                )
                .order_by(Alert.created_at)
            )
            return list(result.all())

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Check every due alert once.

        Raises only when the due alerts cannot be listed at all.
        """
        started = time.monotonic()
        now = now or datetime.utcnow()
        logger.info(f"Sweep started at {now.isoformat()}Z")

        due = await self._due_alerts(now)
        sweep = SweepResult(timestamp=now)

        if due:
            logger.info(f"Found {len(due)} alerts due for checking")

            semaphore = asyncio.Semaphore(self.max_concurrent_checks)

            async def check_with_limit(alert_id: str, title: Optional[str]) -> AlertCheckOutcome:
                async with semaphore:
                    try:
                        return await self.check_alert(alert_id, now)
                    except Exception as e:
                        # check_alert handles its own errors; this guards the sweep
                        logger.error(f"Unhandled error checking alert {alert_id}: {e}")
                        return AlertCheckOutcome(alert_id=alert_id, title=title, error=str(e))

            outcomes = await asyncio.gather(*[check_with_limit(aid, title) for aid, title in due])
            for outcome in outcomes:
                sweep.record(outcome)

        sweep.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Sweep finished: checked={sweep.checked} changes={sweep.changed} "
            f"errors={sweep.errors} duration={sweep.duration_ms}ms"
        )
        return sweep

    async def _load_alert(self, session: AsyncSession, alert_id: str) -> Optional[Alert]:
        result = await session.execute(
            select(Alert).options(selectinload(Alert.user)).where(Alert.id == alert_id)
        )
        return result.scalar_one_or_none()

    async def _latest_snapshot(self, session: AsyncSession, alert_id: str) -> Optional[Snapshot]:
        result = await session.execute(
            select(Snapshot)
            .where(Snapshot.alert_id == alert_id)
            .order_by(Snapshot.captured_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def check_alert(self, alert_id: str, now: Optional[datetime] = None) -> AlertCheckOutcome:
        """Check one alert: extract, compare, persist, reschedule, notify."""
        now = now or datetime.utcnow()
        title = None

        async with self.session_factory() as session:
            try:
                alert = await self._load_alert(session, alert_id)
                if alert is None:
                    logger.debug(f"Alert {alert_id} no longer exists")
                    return AlertCheckOutcome(alert_id=alert_id, skipped=True)

                title = alert.title
                # Safety check: verify still due (overlapping sweeps)
                if not is_due(alert, now):
                    logger.debug(f"Alert {alert_id} is no longer due, skipping")
                    return AlertCheckOutcome(alert_id=alert_id, title=title, skipped=True)

                logger.info(f"Checking alert {title or alert_id}: {alert.url} [{alert.css_selector}]")
                extracted = await self.extraction.extract(alert.url, alert.css_selector, alert.user)

                previous = await self._latest_snapshot(session, alert.id)
                session.add(Snapshot(
                    alert_id=alert.id,
                    html_content=extracted.html_content,
                    text_content=extracted.text_content,
                    item_count=extracted.item_count,
                    captured_at=now,
                ))

                # First check is the baseline and never produces a change
                verdict: ChangeVerdict = NO_CHANGE
                if previous is not None:
                    # Off the event loop; long texts take a while to diff
                    verdict = await asyncio.to_thread(detect_changes, previous, extracted)
                else:
                    logger.info(f"Baseline snapshot created for alert {alert_id}")

                change = None
                if verdict.has_changed:
                    change = Change(
                        alert_id=alert.id,
                        change_type=verdict.change_type,
                        summary=verdict.summary or "Changes detected",
                        diff_data=verdict.diff_data,
                        detected_at=now,
                    )
                    session.add(change)

                alert.last_checked_at = now
                alert.next_check_at = next_check_after_success(now, alert.frequency_minutes)
                alert.status = STATUS_ACTIVE
                alert.error_message = None
                alert.consecutive_failures = 0

                await retry_on_lock(session.commit)

            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error checking alert {alert_id}, state left unchanged: {e}")
                return AlertCheckOutcome(alert_id=alert_id, title=title, error=f"Database error: {e}")
            except ExtractionFailure as e:
                await session.rollback()
                logger.warning(f"Extraction failed for alert {alert_id}: {e.reason}")
                return await self._record_failure(alert_id, title, now, e.reason)
            except Exception as e:
                await session.rollback()
                logger.error(f"Error checking alert {alert_id}: {type(e).__name__}: {e}")
                return await self._record_failure(alert_id, title, now, str(e) or type(e).__name__)

            if change is None:
                logger.debug(f"No changes for alert {alert_id}")
                return AlertCheckOutcome(alert_id=alert_id, title=title)

            logger.info(f"Change detected for alert {alert_id}: {verdict.summary}")
            try:
                await self.notifier.notify_change(session, alert, change, verdict)
            except Exception as e:
                logger.error(f"Notification dispatch failed for alert {alert_id}: {e}")

            return AlertCheckOutcome(alert_id=alert_id, title=title, change_detected=True)

    async def _record_failure(
        self,
        alert_id: str,
        title: Optional[str],
        now: datetime,
        message: str,
    ) -> AlertCheckOutcome:
        """Put the alert in the error state and reschedule it on its normal cadence."""
        outcome = AlertCheckOutcome(alert_id=alert_id, title=title, error=message)
        try:
            async with self.session_factory() as session:
                alert = await session.get(Alert, alert_id)
                if alert is None:
                    return outcome
                alert.status = STATUS_ERROR
                alert.error_message = message
                alert.last_checked_at = now
                alert.next_check_at = next_check_after_failure(now, alert.frequency_minutes)
                alert.consecutive_failures = (alert.consecutive_failures or 0) + 1
                await retry_on_lock(session.commit)
        except SQLAlchemyError as e:
            logger.error(f"Could not record error state for alert {alert_id}: {e}")
            return outcome

        if self.failure_hook is not None:
            try:
                await self.failure_hook(alert, alert.consecutive_failures)
            except Exception as e:
                logger.error(f"Failure hook raised for alert {alert_id}: {e}")

        return outcome

    async def _cleanup_old_snapshots(self):
        """Keep only the newest snapshots of each alert."""
        try:
            async with self.session_factory() as session:
                alert_ids = (await session.execute(select(Alert.id))).scalars().all()
                removed = 0
                for alert_id in alert_ids:
                    stale = (await session.execute(
                        select(Snapshot.id)
                        .where(Snapshot.alert_id == alert_id)
                        .order_by(Snapshot.captured_at.desc())
                        .offset(self.snapshot_retention)
                    )).scalars().all()
                    if stale:
                        await session.execute(delete(Snapshot).where(Snapshot.id.in_(stale)))
                        removed += len(stale)
                await retry_on_lock(session.commit)
                if removed:
                    logger.info(f"Cleaned up {removed} old snapshots")
        except Exception as e:
            logger.error(f"Error cleaning up snapshots: {e}")


# Global instance
scheduler_service = SchedulerService()
