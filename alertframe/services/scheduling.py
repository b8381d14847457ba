"""Check timing rules shared by the scheduler and the alert API.

Alert states:

    active  -- due when next_check_at is unset or has passed
    error   -- last check failed; advisory only, still due on the same cadence
    paused  -- never due; next_check_at is frozen until resumed

Every completed check (success or failure) and every schedule change
recomputes next_check_at.
"""
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from ..models import Alert
from ..models.alert import STATUS_ACTIVE, STATUS_ERROR

# Statuses picked up by the sweep
SCHEDULED_STATUSES = (STATUS_ACTIVE, STATUS_ERROR)

DEFAULT_FREQUENCY_MINUTES = 60
MIN_FREQUENCY_MINUTES = 1


def clamp_frequency(minutes: Optional[int]) -> int:
    """Effective check frequency: unset means the default, below the minimum is raised to it."""
    if minutes is None:
        return DEFAULT_FREQUENCY_MINUTES
    return max(int(minutes), MIN_FREQUENCY_MINUTES)


def next_check_after_success(now: datetime, minutes: Optional[int]) -> datetime:
    return now + timedelta(minutes=clamp_frequency(minutes))


def next_check_after_failure(now: datetime, minutes: Optional[int]) -> datetime:
    """Failed checks retry on the alert's own cadence, or hourly if it has none."""
    if not minutes or minutes < MIN_FREQUENCY_MINUTES:
        minutes = DEFAULT_FREQUENCY_MINUTES
    return now + timedelta(minutes=minutes)


def is_due(alert: Alert, now: datetime) -> bool:
    """Whether a sweep at ``now`` should check this alert."""
    if alert.status not in SCHEDULED_STATUSES:
        return False
    return alert.next_check_at is None or alert.next_check_at <= now


def apply_alert_update(alert: Alert, changes: Mapping[str, Any], now: datetime) -> Alert:
    """Apply a partial update from the alert API.

    Only keys present in ``changes`` are touched. Resuming (status set to
    active from another state) and changing the frequency both reschedule
    from ``now``. A frequency change never resumes a paused alert.
    """
    resumed = False
    if "status" in changes and changes["status"] is not None:
        new_status = changes["status"]
        resumed = new_status == STATUS_ACTIVE and alert.status != STATUS_ACTIVE
        alert.status = new_status
        if resumed:
            alert.error_message = None
            alert.consecutive_failures = 0

    frequency_changed = "frequency_minutes" in changes and changes["frequency_minutes"] is not None
    if frequency_changed:
        alert.frequency_minutes = clamp_frequency(changes["frequency_minutes"])

    if resumed or frequency_changed:
        alert.next_check_at = next_check_after_success(now, alert.frequency_minutes)

    for field in ("frequency_label", "title", "notify_email", "slack_webhook", "discord_webhook"):
        if field in changes:
            value = changes[field]
            # Empty webhook strings clear the channel
            if field in ("slack_webhook", "discord_webhook") and value == "":
                value = None
            if field == "notify_email" and value is None:
                continue
            setattr(alert, field, value)

    return alert
