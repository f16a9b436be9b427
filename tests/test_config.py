import json
from pathlib import Path

from news_digest.config import ENV_TEMPLATE, Settings, write_env_template


def test_list_settings_are_read_as_json(monkeypatch):
    monkeypatch.setenv(
        "SOURCES",
        json.dumps(
            [
                {
                    "name": "f365",
                    "listing_url": "https://www.football365.com/liverpool/news",
                    "link_prefix": "https://www.football365.com/news/",
                    "exclude": ["-mailbox"],
                }
            ]
        ),
    )
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", '["1", "2"]')
    monkeypatch.setenv("SMTP_PORT", "2525")

    settings = Settings(_env_file=None)

    (source,) = settings.sources
    assert source.name == "f365"
    assert source.exclude == ["-mailbox"]
    assert source.body_selector == "article"
    assert settings.telegram_chat_ids == ["1", "2"]
    assert settings.smtp_port == 2525


def test_dotenv_file_is_read(tmp_path, monkeypatch):
    monkeypatch.delenv("SUBJECT", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("SUBJECT=Everton\nDEDUP_MODEL=gpt-4o-mini\n", encoding="utf-8")

    settings = Settings(_env_file=env_file)

    assert settings.subject == "Everton"
    assert settings.filter_model == "gpt-4o-mini"


def test_write_env_template_does_not_overwrite(tmp_path):
    target = tmp_path / "nested" / ".env"

    assert write_env_template(target) is True
    target.write_text("KEEP=1\n", encoding="utf-8")
    assert write_env_template(target) is False
    assert target.read_text(encoding="utf-8") == "KEEP=1\n"


def test_template_lists_every_channel_setting():
    for key in ("OPENAI_API_KEY", "SOURCES", "EMAIL_USERNAME", "TELEGRAM_BOT_TOKEN"):
        assert f"{key}=" in ENV_TEMPLATE


def test_default_log_dir_is_under_home(monkeypatch):
    monkeypatch.delenv("LOG_DIR", raising=False)
    assert Settings(_env_file=None).log_dir == Path.home() / ".logs" / "news-digest"
