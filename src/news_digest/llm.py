"""OpenAI-backed extraction and filtering steps.

Both steps use the Responses API with a strict JSON schema and validate the
decoded output again with :mod:`news_digest.schema`. Callers pass the client
so tests can inject a stand-in with a ``responses.create`` method.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Protocol, Sequence

import tiktoken
from openai import OpenAI

from .config import Settings, get_settings
from .errors import ConfigError, DecisionMismatch
from .models import Extraction
from .schema import response_schema, validate_payload

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
MIN_BODY_TOKENS = 40  # never trim a body below this
SEP_TOKENS_PER_ARTICLE = 6  # rough allowance for the blank-line joins


class _HasTitleAndText(Protocol):
    og_title: str
    text: str


class Encoding(Protocol):
    def encode(self, text: str, **kwargs) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


# --- Helpers --------------------------------------------------------------

def build_client(api_key: Optional[str] = None, timeout: float | None = None) -> OpenAI:
    """Create an OpenAI client; separated for easier testing."""
    if timeout is None:
        return OpenAI(api_key=api_key)
    return OpenAI(api_key=api_key, timeout=timeout)


def _require_api_key(settings: Settings) -> str:
    if not settings.openai_api_key:
        raise ConfigError(
            "OPENAI_API_KEY is required. Set it in the environment or .env file."
        )
    return settings.openai_api_key


def client_from_settings(settings: Settings) -> OpenAI:
    """Client for the configured key; raises ConfigError when none is set."""
    return build_client(_require_api_key(settings), settings.request_timeout)


def _load_prompt_file(filename: str) -> str:
    return (PROMPTS_DIR / filename).read_text(encoding="utf-8")


def _response_text_or_raise(response: object, *, step: str) -> str:
    """Extract response text or raise a clear error when output is missing."""
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text

    status = getattr(response, "status", None)
    if status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details else None
        hint = ""
        if reason == "max_output_tokens":
            hint = " Raise MAX_TOKENS or reduce the number of articles."
        raise RuntimeError(f"{step} response incomplete (reason={reason}).{hint}")

    err = getattr(response, "error", None)
    if err:
        raise RuntimeError(f"{step} response error: {err}")

    raise RuntimeError(f"{step} response missing output text.")


def _decode_json(text: str, *, step: str, schema_name: str) -> dict:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{step} returned invalid JSON: {exc}") from exc
    return validate_payload(payload, schema_name)


def _json_format(name: str, schema_name: str) -> dict:
    return {
        "format": {
            "type": "json_schema",
            "name": name,
            "schema": response_schema(schema_name),
            "strict": True,
        }
    }


def default_encoding() -> Encoding:
    return tiktoken.get_encoding("o200k_base")


def truncate_content(
    articles: Sequence[_HasTitleAndText],
    max_tokens: int,
    *,
    encoding: Encoding | None = None,
) -> str:
    """
    Join titles and bodies, trimming bodies until the token estimate fits.

    Titles are never trimmed. The longest body is shaved down towards the
    second longest, repeatedly, and no body goes below MIN_BODY_TOKENS; if
    everything is at that floor the text may still exceed `max_tokens`.
    """
    enc = encoding or default_encoding()
    title_counts = [len(enc.encode(a.og_title, disallowed_special=())) for a in articles]
    body_tokens = [enc.encode(a.text, disallowed_special=()) for a in articles]
    keep = [len(tokens) for tokens in body_tokens]
    total = sum(title_counts) + sum(keep) + SEP_TOKENS_PER_ARTICLE * len(articles)

    if total <= max_tokens:
        return "\n\n".join(f"{a.og_title}\n\n{a.text}" for a in articles)

    logger.debug("Articles need %d tokens, budget is %d; trimming", total, max_tokens)
    while total > max_tokens:
        needed = total - max_tokens
        trimmable = sorted(
            (i for i, count in enumerate(keep) if count > MIN_BODY_TOKENS),
            key=lambda i: keep[i],
            reverse=True,
        )
        if not trimmable:
            break
        longest = trimmable[0]
        runner_up = trimmable[1] if len(trimmable) > 1 else longest
        diff = keep[longest] - max(keep[runner_up], MIN_BODY_TOKENS)
        if diff <= 0:
            # Bodies are level; shave at least one token off the longest.
            diff = max(min(keep[longest] - MIN_BODY_TOKENS, needed), 1)
        shave = min(diff, needed)
        keep[longest] -= shave
        total -= shave

    return "\n\n".join(
        f"{a.og_title}\n\n{enc.decode(tokens[:count])}"
        for a, tokens, count in zip(articles, body_tokens, keep)
    )


# --- Steps ----------------------------------------------------------------

def extract_highlights(
    articles: Sequence[_HasTitleAndText],
    client: OpenAI,
    *,
    settings: Settings | None = None,
    today: date | None = None,
    encoding: Encoding | None = None,
) -> Extraction:
    """Ask the model for a mood sentence and candidate bullets."""
    settings = settings or get_settings()
    system_prompt = _load_prompt_file("extract.txt").format(
        subject=settings.subject,
        today=(today or date.today()).isoformat(),
    )
    combined = truncate_content(articles, settings.max_input_tokens, encoding=encoding)
    logger.info("Extracting highlights from %d articles", len(articles))

    request_kwargs = {
        "model": settings.model,
        "input": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": combined},
        ],
        "text": _json_format("digest_extraction", "extraction"),
    }
    if settings.max_tokens and settings.max_tokens > 0:
        request_kwargs["max_output_tokens"] = settings.max_tokens

    response = client.responses.create(**request_kwargs)
    payload = _decode_json(
        _response_text_or_raise(response, step="Extraction"),
        step="Extraction",
        schema_name="extraction",
    )
    items = [item.strip() for item in payload["items"] if item.strip()]
    logger.info("Extraction produced %d candidate bullets", len(items))
    return Extraction(mood=payload["mood"].strip(), items=items)


def filter_candidates(
    previous: Sequence[str],
    candidates: Sequence[str],
    client: OpenAI,
    *,
    settings: Settings | None = None,
) -> list[bool]:
    """
    Decide, per candidate, whether it adds something over `previous`.

    Returns one boolean per candidate in order; a response of any other length
    raises DecisionMismatch.
    """
    if not candidates:
        return []
    settings = settings or get_settings()
    system_prompt = _load_prompt_file("filter.txt").format(subject=settings.subject)
    user_prompt = (
        "PREVIOUS BULLETS:\n"
        + "\n".join(f"- {text}" for text in previous)
        + "\n\nCANDIDATE BULLETS:\n"
        + "\n".join(f"- {text}" for text in candidates)
    )
    response = client.responses.create(
        model=settings.filter_model,
        input=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        text=_json_format("dedup_filter", "decisions"),
        max_output_tokens=500,
    )
    payload = _decode_json(
        _response_text_or_raise(response, step="Filter"),
        step="Filter",
        schema_name="decisions",
    )
    results = payload["results"]
    if len(results) != len(candidates):
        raise DecisionMismatch(
            f"Filter returned {len(results)} results, expected {len(candidates)}."
        )
    logger.info(
        "Filter accepted %d of %d candidate bullets", sum(results), len(candidates)
    )
    return list(results)
