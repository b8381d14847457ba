"""Email sender service - delivers notification emails.

Three interchangeable senders share the ``MessageSender`` interface:

- ``OAuthSender``: sends from the alert owner's own Gmail account
- ``ApiKeySender``: sends through the Resend HTTP API with a service key
- ``SmtpSender``: sends through a configured SMTP relay

``select_sender`` picks one by capability, in that order.
"""
import asyncio
import base64
import logging
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parseaddr
from typing import Optional

import httpx

from ..config import Settings, settings
from ..models import User
from .secret_store import SecretStore, SecretStoreError, secret_store

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
RESEND_API_URL = "https://api.resend.com/emails"

# Refresh OAuth tokens this long before they expire
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class NotificationError(Exception):
    """A notification could not be delivered."""


@dataclass
class EmailMessage:
    """A rendered email."""
    to: str
    subject: str
    html: str
    text: Optional[str] = None


def build_mime(message: EmailMessage, from_address: str) -> MIMEMultipart:
    """Build a multipart (plain + HTML) MIME message."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = message.subject
    msg["From"] = from_address
    msg["To"] = message.to
    if message.text:
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
    msg.attach(MIMEText(message.html, "html", "utf-8"))
    return msg


class MessageSender:
    """Delivers one email. Raises NotificationError on failure."""

    name = "base"

    async def send(self, message: EmailMessage) -> None:
        raise NotImplementedError


class OAuthSender(MessageSender):
    """Send via the Gmail API using the user's OAuth tokens.

    Refreshed access tokens are written back (encrypted) onto ``user``;
    the caller's session persists them.
    """

    name = "gmail_oauth"

    def __init__(self, user: User, client_id: str, client_secret: str, secrets: SecretStore):
        self.user = user
        self.client_id = client_id
        self.client_secret = client_secret
        self.secrets = secrets

    @staticmethod
    def available(user: Optional[User], config: Settings) -> bool:
        return bool(
            user is not None
            and user.gmail_connected
            and user.gmail_access_token
            and user.gmail_refresh_token
            and user.gmail_email
            and config.google_client_id
            and config.google_client_secret
        )

    def _needs_refresh(self) -> bool:
        expiry = self.user.gmail_token_expiry
        return expiry is None or expiry <= datetime.utcnow() + TOKEN_REFRESH_MARGIN

    async def _refresh(self, client: httpx.AsyncClient, refresh_token: str) -> str:
        logger.info(f"Refreshing Gmail access token for user {self.user.id}")
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code >= 400:
            raise NotificationError(f"Failed to refresh Gmail access token: HTTP {response.status_code}")

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise NotificationError("Failed to refresh Gmail access token: no token returned")

        self.user.gmail_access_token = self.secrets.encrypt(access_token)
        expires_in = payload.get("expires_in")
        self.user.gmail_token_expiry = (
            datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        return access_token

    async def send(self, message: EmailMessage) -> None:
        try:
            access_token = self.secrets.decrypt(self.user.gmail_access_token)
            refresh_token = self.secrets.decrypt(self.user.gmail_refresh_token)
        except SecretStoreError as e:
            raise NotificationError(f"Gmail tokens unreadable: {e}") from e

        mime = build_mime(message, self.user.gmail_email)
        raw = base64.urlsafe_b64encode(mime.as_bytes()).decode().rstrip("=")

        try:
            async with httpx.AsyncClient(timeout=30) as client:
                if self._needs_refresh():
                    access_token = await self._refresh(client, refresh_token)
                response = await client.post(
                    GMAIL_SEND_URL,
                    json={"raw": raw},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"Gmail API request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(f"Gmail API returned {response.status_code}: {response.text[:200]}")

        logger.info(f"Email sent via Gmail to {message.to}: {message.subject}")


class ApiKeySender(MessageSender):
    """Send via the Resend HTTP API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str):
        self.api_key = api_key
        self.from_address = from_address

    @staticmethod
    def available(config: Settings) -> bool:
        return bool(config.resend_api_key)

    async def send(self, message: EmailMessage) -> None:
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        try:
            async with httpx.AsyncClient(timeout=30) as client:
                response = await client.post(
                    RESEND_API_URL,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise NotificationError(f"Resend request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(f"Resend returned {response.status_code}: {response.text[:200]}")

        email_id = response.json().get("id") if response.content else None
        logger.info(f"Email sent via Resend to {message.to} (id={email_id}): {message.subject}")


class SmtpSender(MessageSender):
    """Send via SMTP, with optional STARTTLS and login."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        from_address: str,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address

    @staticmethod
    def available(config: Settings) -> bool:
        return bool(config.smtp_host)

    def _send_sync(self, message: EmailMessage) -> None:
        from_addr = parseaddr(self.from_address)[1] or self.username
        msg = build_mime(message, self.from_address)

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(from_addr, [message.to], msg.as_string())

    async def send(self, message: EmailMessage) -> None:
        logger.info(f"Connecting to {self.host}:{self.port} (tls={self.use_tls})")
        try:
            # smtplib is blocking
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_sync, message)
        except smtplib.SMTPAuthenticationError as e:
            raise NotificationError(f"SMTP authentication failed for user '{self.username}': {e}") from e
        except smtplib.SMTPException as e:
            raise NotificationError(f"SMTP error: {type(e).__name__}: {e}") from e
        except OSError as e:
            raise NotificationError(f"Cannot reach SMTP server {self.host}:{self.port}: {e}") from e

        logger.info(f"Email sent via SMTP to {message.to}: {message.subject}")


def select_sender(
    user: Optional[User],
    config: Settings = settings,
    secrets: SecretStore = secret_store,
) -> Optional[MessageSender]:
    """Pick the email sender for a user.

    Order: the user's Gmail (OAuth), then the Resend API key, then SMTP.
    Returns None when no sender is configured.
    """
    if OAuthSender.available(user, config):
        return OAuthSender(user, config.google_client_id, config.google_client_secret, secrets)
    if ApiKeySender.available(config):
        return ApiKeySender(config.resend_api_key, config.email_from)
    if SmtpSender.available(config):
        return SmtpSender(
            host=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_username,
            password=config.smtp_password,
            use_tls=config.smtp_use_tls,
            from_address=config.email_from,
        )
    return None
