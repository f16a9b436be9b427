"""Configuration helpers for the news digest pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SiteSource(BaseModel):
    """A news site to poll for new article links."""

    name: str
    listing_url: str = Field(..., description="Section page or news sitemap to scan.")
    link_prefix: str = Field(
        ..., description="Only links starting with this prefix are treated as articles."
    )
    exclude: List[str] = Field(
        default_factory=list,
        description="Substrings that disqualify a link (author pages, mailbags, ...).",
    )
    body_selector: str = Field(
        "article", description="CSS selector of the element holding the article body."
    )
    sitemap: bool = Field(False, description="Parse listing_url as an XML sitemap.")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    model: str = Field(
        "gpt-4o-2024-08-06", description="Model that extracts bullets and the mood line."
    )
    dedup_model: str | None = Field(
        None, description="Model for the filtering step; defaults to `model`."
    )
    max_tokens: int = Field(1000, description="Max output tokens for the extraction call.")
    max_input_tokens: int = Field(
        100_000, description="Token budget for article titles and bodies sent to the model."
    )
    request_timeout: float = Field(60.0, description="Seconds before an API call is abandoned.")
    subject: str = Field("Liverpool FC", description="Subject the digest is about.")

    database_url: str = Field(
        "sqlite:///news_digest.sqlite3", description="SQLAlchemy URL of the state database."
    )
    sources: List[SiteSource] = Field(
        default_factory=list, description="JSON list of SiteSource objects."
    )

    email_recipients: List[str] = Field(default_factory=list)
    email_username: str | None = None
    email_app_password: str | None = None
    smtp_host: str = "smtp.mail.me.com"
    smtp_port: int = 587

    telegram_bot_token: str | None = None
    telegram_chat_ids: List[str] = Field(default_factory=list)

    log_dir: Path = Field(
        Path.home() / ".logs" / "news-digest", description="Directory for the run log file."
    )
    log_level: str = "INFO"

    @property
    def filter_model(self) -> str:
        return self.dedup_model or self.model


def get_settings() -> Settings:
    """Return a settings instance built from the current environment."""
    return Settings()


ENV_TEMPLATE = """\
# news-digest settings. Values here are read on every run.

OPENAI_API_KEY=<your OpenAI API key>
MODEL=gpt-4o-2024-08-06
DATABASE_URL=sqlite:///news_digest.sqlite3
SUBJECT=Liverpool FC

# Sites to poll, as a JSON list.
SOURCES=[{"name": "football365", "listing_url": "https://www.football365.com/liverpool/news", "link_prefix": "https://www.football365.com/news/", "exclude": ["/news/author/", "-mediawatch", "-mailbox"], "body_selector": "div.ciam-article-f365"}]

# Optional email delivery (omit and run with --no-email to skip).
EMAIL_RECIPIENTS=["you@example.com"]
EMAIL_USERNAME=you@example.com
EMAIL_APP_PASSWORD=<app password>

# Optional Telegram delivery (omit and run with --no-telegram to skip).
TELEGRAM_BOT_TOKEN=<bot token>
TELEGRAM_CHAT_IDS=["123456789"]
"""


def write_env_template(path: Path) -> bool:
    """Write a commented .env template; return False when the file already exists."""
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(ENV_TEMPLATE, encoding="utf-8")
    return True
