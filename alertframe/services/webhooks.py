"""Slack and Discord webhook notifications."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10

DISCORD_COLORS = {
    "added": 0x00FF00,
    "removed": 0xFF0000,
    "modified": 0xFFA500,
}
DISCORD_DEFAULT_COLOR = 0x0099FF


@dataclass
class ChangeNotice:
    """Channel-independent description of a detected change."""
    alert_title: str
    alert_url: str
    change_type: str
    summary: str
    diff_text: Optional[str] = None
    dashboard_url: Optional[str] = None


def build_slack_payload(notice: ChangeNotice, now: Optional[datetime] = None) -> dict:
    """Slack Block Kit message."""
    now = now or datetime.now(timezone.utc)
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "🔔 Change Detected", "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Alert:*\n{notice.alert_title}"},
                {"type": "mrkdwn", "text": f"*Change Type:*\n{notice.change_type}"},
            ],
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Summary:*\n{notice.summary}"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Monitored Page:*\n<{notice.alert_url}|View Page>"},
        },
    ]
    if notice.diff_text:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"```{notice.diff_text[:2900]}```"},
        })
    if notice.dashboard_url:
        blocks.append({
            "type": "actions",
            "elements": [{
                "type": "button",
                "text": {"type": "plain_text", "text": "View in Dashboard", "emoji": True},
                "url": notice.dashboard_url,
                "style": "primary",
            }],
        })
    blocks.append({
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": f"<!date^{int(now.timestamp())}^Detected {{date_short_pretty}} at {{time}}|{now.isoformat()}>",
        }],
    })
    return {"text": f"🔔 Change Detected: {notice.alert_title}", "blocks": blocks}


def build_discord_payload(notice: ChangeNotice, now: Optional[datetime] = None) -> dict:
    """Discord embed, coloured by change type."""
    now = now or datetime.now(timezone.utc)
    fields = [
        {"name": "📊 Change Type", "value": notice.change_type, "inline": True},
        {"name": "🔗 Monitored Page", "value": f"[View Page]({notice.alert_url})", "inline": True},
    ]
    if notice.dashboard_url:
        fields.append({
            "name": "📱 Dashboard",
            "value": f"[View in Dashboard]({notice.dashboard_url})",
            "inline": True,
        })
    if notice.diff_text:
        fields.append({"name": "Diff", "value": notice.diff_text[:1000], "inline": False})

    return {
        "content": "🔔 **Change Detected**",
        "embeds": [{
            "title": notice.alert_title,
            "url": notice.alert_url,
            "description": notice.summary,
            "color": DISCORD_COLORS.get(notice.change_type.lower(), DISCORD_DEFAULT_COLOR),
            "fields": fields,
            "timestamp": now.isoformat(),
            "footer": {"text": "AlertFrame"},
        }],
    }


async def post_webhook(url: str, payload: dict) -> bool:
    """POST a JSON payload to a webhook. Returns True on a 2xx/3xx response."""
    try:
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            if response.status_code < 400:
                return True
            logger.warning(f"Webhook returned {response.status_code}")
            return False
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook: {e}")
        return False


async def send_slack_notification(webhook_url: str, notice: ChangeNotice) -> bool:
    success = await post_webhook(webhook_url, build_slack_payload(notice))
    if success:
        logger.info(f"Slack notification sent for {notice.alert_title}")
    return success


async def send_discord_notification(webhook_url: str, notice: ChangeNotice) -> bool:
    success = await post_webhook(webhook_url, build_discord_payload(notice))
    if success:
        logger.info(f"Discord notification sent for {notice.alert_title}")
    return success
