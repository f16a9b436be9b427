import smtplib
from datetime import datetime, timezone

import pytest
import requests

from news_digest.channels import EmailChannel, TelegramChannel, build_channels
from news_digest.config import Settings
from news_digest.errors import ChannelError, ConfigError
from news_digest.models import Digest


def _digest(bullets=("Salah scores", "Van Dijk fit")):
    return Digest(
        fetch_id=7,
        generated_at=datetime(2024, 8, 18, tzinfo=timezone.utc),
        mood_text="Positive.",
        bullets=list(bullets),
    )


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username, password))

    def send_message(self, message):
        self.messages.append(message)


class FailingLoginSMTP(FakeSMTP):
    def login(self, username, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


@pytest.fixture(autouse=True)
def _reset_fake_smtp():
    FakeSMTP.instances.clear()


def _email(factory=FakeSMTP, recipients=("a@example.com", "b@example.com")):
    return EmailChannel(
        username="me@example.com",
        password="secret",
        recipients=recipients,
        subject="Liverpool FC",
        smtp_factory=factory,
    )


def test_email_sends_one_message_per_recipient():
    _email().send(_digest())

    (smtp,) = FakeSMTP.instances
    assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.mail.me.com", 587, 20.0)
    assert smtp.calls == ["starttls", ("login", "me@example.com", "secret")]
    assert [m["To"] for m in smtp.messages] == ["a@example.com", "b@example.com"]
    message = smtp.messages[0]
    assert message["Subject"] == "Liverpool FC news summary"
    assert "- Salah scores" in message.get_content()


def test_email_failure_becomes_channel_error():
    with pytest.raises(ChannelError, match="Email delivery failed"):
        _email(factory=FailingLoginSMTP).send(_digest())


def test_email_without_recipients_does_nothing():
    _email(recipients=()).send(_digest())
    assert FakeSMTP.instances == []


class FakeResponse:
    def __init__(self, status_code=200, text="{}"):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error:
            raise self.error
        return self.responses.pop(0) if self.responses else FakeResponse()


def test_telegram_posts_to_every_chat():
    session = FakeSession()
    channel = TelegramChannel(bot_token="123:abc", chat_ids=["1", "2"], session=session)

    channel.send(_digest())

    assert [post[1]["chat_id"] for post in session.posts] == ["1", "2"]
    url, body, timeout = session.posts[0]
    assert url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert body["text"].startswith("Positive.")
    assert body["disable_web_page_preview"] is True
    assert timeout == 20.0


def test_telegram_splits_long_digests():
    session = FakeSession()
    channel = TelegramChannel(bot_token="t", chat_ids=["1"], session=session)

    channel.send(_digest(bullets=["x" * 3000, "y" * 3000]))

    assert len(session.posts) == 2
    assert all(len(post[1]["text"]) <= 4000 for post in session.posts)


def test_telegram_error_status_raises():
    session = FakeSession(responses=[FakeResponse(403, "Forbidden: bot was blocked")])
    channel = TelegramChannel(bot_token="t", chat_ids=["1"], session=session)
    with pytest.raises(ChannelError, match="403"):
        channel.send(_digest())


def test_telegram_network_error_raises():
    session = FakeSession(error=requests.ConnectionError("offline"))
    channel = TelegramChannel(bot_token="t", chat_ids=["1"], session=session)
    with pytest.raises(ChannelError, match="offline"):
        channel.send(_digest())


def _settings(**overrides):
    values = {"_env_file": None}
    values.update(overrides)
    return Settings(**values)


def test_build_channels_requires_credentials(monkeypatch):
    for name in ("EMAIL_USERNAME", "EMAIL_APP_PASSWORD", "TELEGRAM_BOT_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ConfigError, match="--no-email"):
        build_channels(_settings())
    with pytest.raises(ConfigError, match="--no-telegram"):
        build_channels(_settings(), no_email=True)
    assert build_channels(_settings(), no_email=True, no_telegram=True) == []


def test_build_channels_from_settings():
    settings = _settings(
        email_username="me@example.com",
        email_app_password="pw",
        email_recipients=["you@example.com"],
        telegram_bot_token="t",
        telegram_chat_ids=["1"],
    )
    channels = build_channels(settings)
    assert [channel.name for channel in channels] == ["email", "telegram"]
    assert channels[0].recipients == ["you@example.com"]
