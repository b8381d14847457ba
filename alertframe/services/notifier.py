"""Notifier service - decides where a detected change is sent and sends it.

Delivery is best-effort: each channel is attempted independently, failures
are logged, and nothing here can undo the already persisted change. A change
is marked notified once its primary channel succeeds; failed deliveries are
not retried.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, settings
from ..models import Alert, Change, User
from ..utils.db_utils import retry_on_lock
from .differ import ChangeVerdict, render_diff_html, render_diff_text
from .email_sender import EmailMessage, MessageSender, select_sender
from .email_templates import alert_created_email_html, change_email_html, change_email_text
from .secret_store import SecretStore, secret_store
from .webhooks import ChangeNotice, send_discord_notification, send_slack_notification

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_SLACK = "slack"
CHANNEL_DISCORD = "discord"


@dataclass
class DispatchResult:
    """Outcome of dispatching one change."""
    skipped: bool = False
    channels: Dict[str, bool] = field(default_factory=dict)
    notified: bool = False


def alert_title(alert: Alert) -> str:
    return alert.title or f"Monitor {urlparse(alert.url).hostname}"


class NotificationService:
    """Dispatch gate for change notifications."""

    def __init__(
        self,
        config: Settings = settings,
        secrets: SecretStore = secret_store,
        sender_factory: Callable[..., Optional[MessageSender]] = select_sender,
    ):
        self.config = config
        self.secrets = secrets
        self.sender_factory = sender_factory

    def _email_enabled(self, alert: Alert, user: Optional[User]) -> bool:
        return bool(alert.notify_email and user is not None and user.email)

    def should_notify(self, alert: Alert, user: Optional[User]) -> bool:
        """Whether any channel is configured for this alert."""
        return self._email_enabled(alert, user) or bool(alert.slack_webhook) or bool(alert.discord_webhook)

    def _dashboard_url(self, alert: Alert) -> Optional[str]:
        if not self.config.app_url:
            return None
        return f"{self.config.app_url.rstrip('/')}/dashboard?alert={alert.id}"

    async def _send_email(self, user: User, message: EmailMessage) -> bool:
        sender = self.sender_factory(user, self.config, self.secrets)
        if sender is None:
            logger.warning("Email notification skipped - no email sender configured")
            return False
        try:
            await sender.send(message)
            return True
        except Exception as e:
            logger.error(f"Email via {sender.name} to {message.to} failed: {e}")
            return False

    async def _send_webhook(self, channel: str, send, url: str, notice: ChangeNotice) -> bool:
        try:
            return await send(url, notice)
        except Exception as e:
            logger.error(f"{channel} notification failed: {e}")
            return False

    async def notify_change(
        self,
        session: AsyncSession,
        alert: Alert,
        change: Change,
        verdict: ChangeVerdict,
    ) -> DispatchResult:
        """Send a change to every configured channel and record delivery."""
        user = alert.user
        if not verdict.has_changed:
            return DispatchResult(skipped=True)
        if not self.should_notify(alert, user):
            logger.debug(f"Notifications disabled for alert {alert.id}")
            return DispatchResult(skipped=True)

        title = alert_title(alert)
        summary = verdict.summary or "Changes detected"
        notice = ChangeNotice(
            alert_title=title,
            alert_url=alert.url,
            change_type=verdict.change_type,
            summary=summary,
            diff_text=render_diff_text(verdict.diff),
            dashboard_url=self._dashboard_url(alert),
        )

        result = DispatchResult()
        email_enabled = self._email_enabled(alert, user)

        if email_enabled:
            message = EmailMessage(
                to=user.email,
                subject=f"Change Detected: {title}",
                html=change_email_html(
                    title, alert.url, verdict.change_type, summary,
                    render_diff_html(verdict.diff), notice.dashboard_url,
                ),
                text=change_email_text(title, alert.url, verdict.change_type, summary),
            )
            result.channels[CHANNEL_EMAIL] = await self._send_email(user, message)

        if alert.slack_webhook:
            result.channels[CHANNEL_SLACK] = await self._send_webhook(
                "Slack", send_slack_notification, alert.slack_webhook, notice
            )
        if alert.discord_webhook:
            result.channels[CHANNEL_DISCORD] = await self._send_webhook(
                "Discord", send_discord_notification, alert.discord_webhook, notice
            )

        # Email is the primary channel when enabled; otherwise any webhook counts
        if email_enabled:
            result.notified = result.channels[CHANNEL_EMAIL]
        else:
            result.notified = any(result.channels.values())

        if result.notified:
            change.notified = True
            change.notified_at = datetime.utcnow()

        try:
            await retry_on_lock(session.commit)
        except SQLAlchemyError as e:
            # The change itself is already committed; only the notified flag is lost
            logger.error(f"Failed to record notification state for change {change.id}: {e}")
            await session.rollback()

        logger.info(f"Notification dispatch for alert {alert.id}: {result.channels} (notified={result.notified})")
        return result

    async def send_alert_created(self, session: AsyncSession, alert: Alert, user: User) -> bool:
        """Best-effort confirmation email for a newly created alert."""
        if not self._email_enabled(alert, user):
            return False

        title = alert_title(alert)
        message = EmailMessage(
            to=user.email,
            subject=f"Alert Created: {title}",
            html=alert_created_email_html(
                title, alert.url, alert.css_selector,
                alert.frequency_label or f"Every {alert.frequency_minutes} minutes",
            ),
        )
        sent = await self._send_email(user, message)
        if sent:
            # Persist refreshed OAuth tokens, if any
            try:
                await retry_on_lock(session.commit)
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist user {user.id} after confirmation email: {e}")
                await session.rollback()
        return sent


# Global instance
notification_service = NotificationService()
