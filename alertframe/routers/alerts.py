"""Alert CRUD API endpoints."""
import logging
from datetime import datetime
from typing import List
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Alert, Change, Snapshot, User
from ..schemas.alert import (
    AlertCreate,
    AlertUpdate,
    AlertResponse,
    AlertWithCounts,
    SnapshotResponse,
    ChangeResponse,
)
from ..services.differ import diff_from_dict, render_diff_html
from ..services.notifier import NotificationService, notification_service
from ..services.scheduling import apply_alert_update, clamp_frequency
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

# Owner used when no email is given (no sign-in in this service)
DEFAULT_OWNER_EMAIL = "demo@alertframe.com"


def get_notifier() -> NotificationService:
    return notification_service


async def _get_alert_or_404(db: AsyncSession, alert_id: str) -> Alert:
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    alert = result.scalar_one_or_none()
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


async def _get_or_create_user(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(email=email, name=email.split("@")[0])
        db.add(user)
        await db.flush()
    return user


async def _count(db: AsyncSession, model, alert_id: str) -> int:
    result = await db.execute(select(func.count(model.id)).where(model.alert_id == alert_id))
    return result.scalar_one()


@router.get("", response_model=List[AlertWithCounts])
async def list_alerts(db: AsyncSession = Depends(get_db)):
    """List all alerts, newest first, with their change counts."""
    change_counts = (
        select(Change.alert_id, func.count(Change.id).label("change_count"))
        .group_by(Change.alert_id)
        .subquery()
    )
    result = await db.execute(
        select(Alert, func.coalesce(change_counts.c.change_count, 0))
        .outerjoin(change_counts, change_counts.c.alert_id == Alert.id)
        .order_by(Alert.created_at.desc())
    )

    response = []
    for alert, change_count in result.all():
        data = AlertWithCounts.model_validate(alert)
        data.change_count = change_count
        response.append(data)
    return response


@router.post("", response_model=AlertResponse, status_code=201)
async def create_alert(
    data: AlertCreate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Create a new alert. The first sweep after creation records the baseline."""
    frequency = clamp_frequency(data.frequency_minutes)
    user = await _get_or_create_user(db, data.email or DEFAULT_OWNER_EMAIL)

    alert = Alert(
        user_id=user.id,
        url=data.url,
        css_selector=data.css_selector,
        element_type=data.element_type,
        title=data.title or f"Monitor {urlparse(data.url).hostname}",
        frequency_minutes=frequency,
        frequency_label=data.frequency_label or f"Every {frequency} minutes",
        next_check_at=None,
        notify_email=data.notify_email,
        slack_webhook=data.slack_webhook,
        discord_webhook=data.discord_webhook,
    )
    db.add(alert)
    await retry_on_lock(db.commit)
    await db.refresh(alert)
    logger.info(f"Alert {alert.id} created for {alert.url}")

    try:
        await notifier.send_alert_created(db, alert, user)
    except Exception as e:
        # The alert exists either way
        logger.error(f"Failed to send confirmation for alert {alert.id}: {e}")

    return AlertResponse.model_validate(alert)


@router.get("/{alert_id}", response_model=AlertWithCounts)
async def get_alert(alert_id: str, db: AsyncSession = Depends(get_db)):
    """Get one alert with its change and snapshot counts."""
    alert = await _get_alert_or_404(db, alert_id)
    data = AlertWithCounts.model_validate(alert)
    data.change_count = await _count(db, Change, alert_id)
    data.snapshot_count = await _count(db, Snapshot, alert_id)
    return data


@router.patch("/{alert_id}", response_model=AlertResponse)
async def update_alert(alert_id: str, update: AlertUpdate, db: AsyncSession = Depends(get_db)):
    """Pause, resume, reschedule or edit notification settings of an alert."""
    alert = await _get_alert_or_404(db, alert_id)

    apply_alert_update(alert, update.model_dump(exclude_unset=True), datetime.utcnow())
    await retry_on_lock(db.commit)
    await db.refresh(alert)

    return AlertResponse.model_validate(alert)


@router.delete("/{alert_id}")
async def delete_alert(alert_id: str, db: AsyncSession = Depends(get_db)):
    """Delete an alert together with its snapshots and changes."""
    alert = await _get_alert_or_404(db, alert_id)

    await db.execute(delete(Change).where(Change.alert_id == alert_id))
    await db.execute(delete(Snapshot).where(Snapshot.alert_id == alert_id))
    await db.delete(alert)
    await retry_on_lock(db.commit)

    return {"success": True}


@router.get("/{alert_id}/changes", response_model=List[ChangeResponse])
async def list_changes(
    alert_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Changes of an alert, most recent first, with rendered diffs."""
    await _get_alert_or_404(db, alert_id)

    result = await db.execute(
        select(Change)
        .where(Change.alert_id == alert_id)
        .order_by(Change.detected_at.desc())
        .limit(limit)
    )
    return [
        ChangeResponse(
            id=change.id,
            change_type=change.change_type,
            summary=change.summary,
            diff_data=change.diff_data,
            diff_html=render_diff_html(diff_from_dict(change.diff_data)),
            detected_at=change.detected_at,
            notified=change.notified,
            notified_at=change.notified_at,
        )
        for change in result.scalars().all()
    ]


@router.get("/{alert_id}/snapshots", response_model=List[SnapshotResponse])
async def list_snapshots(
    alert_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Most recent snapshots of an alert."""
    await _get_alert_or_404(db, alert_id)

    result = await db.execute(
        select(Snapshot)
        .where(Snapshot.alert_id == alert_id)
        .order_by(Snapshot.captured_at.desc())
        .limit(limit)
    )
    return [SnapshotResponse.model_validate(s) for s in result.scalars().all()]
