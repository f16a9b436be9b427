"""Delivery channels for a finalized digest."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Callable, Protocol, Sequence

import requests

from .config import Settings
from .errors import ChannelError, ConfigError
from .formatting import format_digest_plain_text, split_message
from .models import Digest

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class Channel(Protocol):
    """Anything that can hand a digest to its recipients; raises on failure."""

    name: str

    def send(self, digest: Digest) -> None: ...


class EmailChannel:
    name = "email"

    def __init__(
        self,
        *,
        username: str,
        password: str,
        recipients: Sequence[str],
        subject: str,
        host: str = "smtp.mail.me.com",
        port: int = 587,
        timeout: float = 20.0,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self.username = username
        self.password = password
        self.recipients = list(recipients)
        self.subject = subject
        self.host = host
        self.port = port
        self.timeout = timeout
        self._smtp_factory = smtp_factory

    def _message(self, recipient: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.username
        message["To"] = recipient
        message["Subject"] = f"{self.subject} news summary"
        message.set_content(body)
        return message

    def send(self, digest: Digest) -> None:
        if not self.recipients:
            return
        body = format_digest_plain_text(digest)
        try:
            with self._smtp_factory(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.username, self.password)
                for recipient in self.recipients:
                    smtp.send_message(self._message(recipient, body))
                    logger.debug("Emailed digest for fetch %s to %s", digest.fetch_id, recipient)
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelError(f"Email delivery failed: {exc}") from exc


class TelegramChannel:
    name = "telegram"

    def __init__(
        self,
        *,
        bot_token: str,
        chat_ids: Sequence[str],
        session: requests.Session | None = None,
        timeout: float = 20.0,
    ):
        self.bot_token = bot_token
        self.chat_ids = list(chat_ids)
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, chat_id: str, text: str) -> None:
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        try:
            response = self.session.post(
                url,
                json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ChannelError(f"Telegram request to chat {chat_id} failed: {exc}") from exc
        if response.status_code != 200:
            raise ChannelError(
                f"Telegram rejected message for chat {chat_id}: "
                f"{response.status_code} {response.text[:200]}"
            )

    def send(self, digest: Digest) -> None:
        text = format_digest_plain_text(digest)
        for chat_id in self.chat_ids:
            for chunk in split_message(text):
                self._post(chat_id, chunk)
            logger.debug("Sent digest for fetch %s to chat %s", digest.fetch_id, chat_id)


def build_channels(
    settings: Settings, *, no_email: bool = False, no_telegram: bool = False
) -> list[Channel]:
    """
    Build the enabled channels from settings.

    Raises ConfigError when an enabled channel lacks credentials, so a run
    never opens a fetch it cannot deliver.
    """
    channels: list[Channel] = []
    if not no_email:
        if not settings.email_username or not settings.email_app_password:
            raise ConfigError(
                "Email settings are missing but email delivery is enabled. "
                "Use --no-email or set EMAIL_USERNAME and EMAIL_APP_PASSWORD."
            )
        channels.append(
            EmailChannel(
                username=settings.email_username,
                password=settings.email_app_password,
                recipients=settings.email_recipients,
                subject=settings.subject,
                host=settings.smtp_host,
                port=settings.smtp_port,
            )
        )
    if not no_telegram:
        if not settings.telegram_bot_token:
            raise ConfigError(
                "Telegram bot token is missing but Telegram delivery is enabled. "
                "Use --no-telegram or set TELEGRAM_BOT_TOKEN."
            )
        channels.append(
            TelegramChannel(
                bot_token=settings.telegram_bot_token, chat_ids=settings.telegram_chat_ids
            )
        )
    return channels
