"""Read-only FastAPI status service over the digest database."""

from __future__ import annotations

import os
from typing import Any, Dict, Iterator, List

from fastapi import Depends, FastAPI, HTTPException, status

from .config import get_settings
from .db import Store
from .models import FetchStatus

app = FastAPI(title="News Digest Status")


def get_store() -> Iterator[Store]:
    """Open the configured database for one request; overridden in tests."""
    store = Store.open(get_settings().database_url)
    try:
        yield store
    finally:
        store.close()


def _status_body(fetch: FetchStatus) -> Dict[str, Any]:
    return {
        "fetch_id": fetch.fetch_id,
        "fetched_at": fetch.fetched_at.isoformat(),
        "articles": fetch.articles,
        "bullets": {
            "pending": fetch.pending,
            "accepted": fetch.accepted,
            "rejected": fetch.rejected,
        },
        "summary_state": fetch.summary_state.value,
    }


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/fetches/latest")
def latest_fetch(store: Store = Depends(get_store)) -> Dict[str, Any]:
    fetch_id = store.latest_fetch_id()
    fetch = store.fetch_status(fetch_id) if fetch_id is not None else None
    if fetch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No fetches yet.")
    return _status_body(fetch)


@app.get("/fetches/{fetch_id}")
def fetch_detail(fetch_id: int, store: Store = Depends(get_store)) -> Dict[str, Any]:
    fetch = store.fetch_status(fetch_id)
    if fetch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Fetch {fetch_id} not found."
        )
    body = _status_body(fetch)
    summary = store.summary_for_fetch(fetch_id)
    if summary is not None:
        body["summary"] = {
            "id": summary.id,
            "generated_at": summary.generated_at.isoformat(),
            "mood_text": summary.mood_text,
            "sent": summary.sent,
        }
    return body


@app.get("/bullets/rejected/latest")
def rejected_bullets(store: Store = Depends(get_store)) -> List[Dict[str, Any]]:
    """Rejected bullets of the latest fetch, for checking the filter by hand."""
    return [
        {"id": row.id, "text": row.text, "fetched_at": row.fetched_at.isoformat()}
        for row in store.latest_rejected_bullets()
    ]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "news_digest.server:app",
        host=os.getenv("STATUS_HOST", "127.0.0.1"),
        port=int(os.getenv("STATUS_PORT", "8000")),
    )
