"""Article discovery and extraction for configured news sites."""

from __future__ import annotations

import html
import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence
from urllib.parse import urldefrag, urljoin

import requests
from bs4 import BeautifulSoup

from .config import SiteSource
from .models import Article

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13.5; rv:116.0) Gecko/20100101 Firefox/116.0"
)
EXCLUSION_PHRASES = (
    "READ:",
    "READ NOW:",
    "READ MORE:",
    "Start the conversation",
    "Go Below The Line",
    "Be the First to Comment",
)

_INCOMPLETE_TAG = re.compile(r"<[^>]*$")
_TAG = re.compile(r"</?[^>]*>")
_SHORTCODE = re.compile(r"\[/?[^\]]*\]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ScrapeResult:
    articles: list[Article] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


class Scraper(Protocol):
    def discover(self, known_urls: set[str]) -> list[str]: ...

    def fetch(self, urls: Sequence[str]) -> ScrapeResult: ...


def clean_text(text: str) -> str:
    """Strip stray HTML tags, CMS shortcodes and entities; collapse whitespace."""
    cleaned = _INCOMPLETE_TAG.sub("", text)
    cleaned = _TAG.sub("", cleaned)
    cleaned = _SHORTCODE.sub("", cleaned)
    cleaned = html.unescape(cleaned).replace("\xa0", " ")
    return _WHITESPACE.sub(" ", cleaned).strip()


def _accepts(url: str, source: SiteSource) -> bool:
    if not url.startswith(source.link_prefix):
        return False
    return not any(fragment in url for fragment in source.exclude)


def parse_links(page: str, source: SiteSource) -> set[str]:
    """Article links found on a listing page or news sitemap."""
    soup = BeautifulSoup(page, "html.parser")
    if source.sitemap:
        candidates: Iterable[str] = (loc.get_text(strip=True) for loc in soup.find_all("loc"))
    else:
        candidates = (
            urljoin(source.listing_url, anchor["href"])
            for anchor in soup.find_all("a", href=True)
        )
    links = set()
    for candidate in candidates:
        url, _ = urldefrag(candidate)
        if _accepts(url, source):
            links.add(url)
    return links


def _meta(soup: BeautifulSoup) -> dict[str, str]:
    values: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("property") or tag.get("name")
        content = tag.get("content")
        if key and content and key not in values:
            values[key] = content.strip()
    return values


def parse_article(page: str, url: str, source: SiteSource) -> Article:
    """
    Build an Article from OpenGraph metadata and the body paragraphs.

    Raises ValueError when the page has no og:title or no usable body text.
    """
    soup = BeautifulSoup(page, "html.parser")
    meta = _meta(soup)
    title = meta.get("og:title")
    if not title:
        raise ValueError("Missing og:title")

    body = soup.select_one(source.body_selector)
    paragraphs: list[str] = []
    if body is not None:
        for tag in body.find_all(["p", "blockquote"]):
            if tag.get("style") == "text-align: center;":
                continue
            text = clean_text(tag.get_text(" "))
            if not text or any(phrase in text for phrase in EXCLUSION_PHRASES):
                continue
            paragraphs.append(text)
    if not paragraphs:
        raise ValueError(f"No article text under {source.body_selector!r}")

    return Article(
        url=url,
        og_title=clean_text(title),
        published_time=meta.get("article:published_time"),
        og_image=meta.get("og:image"),
        author=meta.get("author"),
        text="\n\n".join(paragraphs),
        source=source.name,
    )


class WebScraper:
    """Polls every configured site and extracts the articles it has not seen."""

    def __init__(
        self,
        sources: Sequence[SiteSource],
        *,
        session: requests.Session | None = None,
        max_workers: int = 8,
        timeout: float = 20.0,
    ):
        self.sources = list(sources)
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.max_workers = max_workers
        self.timeout = timeout
        self._origin: dict[str, SiteSource] = {}

    def _get(self, url: str) -> str:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text

    def discover(self, known_urls: set[str]) -> list[str]:
        found: set[str] = set()
        for source in self.sources:
            try:
                links = parse_links(self._get(source.listing_url), source)
            except requests.RequestException as exc:
                logger.error("Could not list %s: %s", source.name, exc)
                continue
            logger.debug("Discovered %d links on %s", len(links), source.name)
            for link in links:
                self._origin.setdefault(link, source)
            found.update(links)
        fresh = sorted(found - set(known_urls))
        logger.info("Discovered %d links, %d not seen before", len(found), len(fresh))
        return fresh

    def _source_for(self, url: str) -> SiteSource:
        source = self._origin.get(url)
        if source is not None:
            return source
        for candidate in self.sources:
            if url.startswith(candidate.link_prefix):
                return candidate
        raise ValueError(f"No configured source matches {url}")

    def _fetch_one(self, url: str) -> Article:
        return parse_article(self._get(url), url, self._source_for(url))

    def fetch(self, urls: Sequence[str]) -> ScrapeResult:
        result = ScrapeResult()
        if not urls:
            return result
        worker_count = min(self.max_workers, len(urls))
        with ThreadPoolExecutor(max_workers=worker_count) as executor:
            future_map = {executor.submit(self._fetch_one, url): url for url in urls}
            for future in as_completed(future_map):
                url = future_map[future]
                try:
                    result.articles.append(future.result())
                except (requests.RequestException, ValueError) as exc:
                    logger.error("Failed to scrape %s: %s", url, exc)
                    result.failures[url] = str(exc)
        result.articles.sort(key=lambda article: article.url)
        return result
