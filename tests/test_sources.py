import pytest
import requests

from news_digest.config import SiteSource
from news_digest.sources import WebScraper, clean_text, parse_article, parse_links

SOURCE = SiteSource(
    name="example",
    listing_url="https://news.example.com/liverpool",
    link_prefix="https://news.example.com/news/",
    exclude=["/news/author/"],
)

LISTING = """
<html><body>
  <a href="/news/salah-new-deal">Salah</a>
  <a href="https://news.example.com/news/slot-presser#comments">Slot</a>
  <a href="https://news.example.com/news/author/jane">Jane</a>
  <a href="https://elsewhere.example.org/news/other">Other</a>
  <a name="no-href">Anchor</a>
</body></html>
"""

ARTICLE = """
<html><head>
  <meta property="og:title" content=" Salah signs new deal " />
  <meta property="article:published_time" content="2024-08-18T10:00:00+00:00" />
  <meta property="og:image" content="https://img.example.com/salah.jpg" />
  <meta name="author" content="Jane Reporter" />
</head><body>
  <nav><p>Menu</p></nav>
  <article>
    <p>Mohamed Salah has signed a new contract.</p>
    <p style="text-align: center;">Photo caption</p>
    <p>READ MORE: Another story</p>
    <blockquote>He is staying, the club said.</blockquote>
    <p>Fans &amp; pundits approve.</p>
  </article>
</body></html>
"""


def test_clean_text_strips_markup_and_shortcodes():
    raw = "<b>Hi</b> [caption]there[/caption]&nbsp; now <span"
    assert clean_text(raw) == "Hi there now"


def test_parse_links_filters_by_prefix_and_exclusions():
    links = parse_links(LISTING, SOURCE)
    assert links == {
        "https://news.example.com/news/salah-new-deal",
        "https://news.example.com/news/slot-presser",
    }


def test_parse_links_reads_sitemaps():
    sitemap_source = SOURCE.model_copy(update={"sitemap": True})
    sitemap = """<?xml version="1.0"?>
    <urlset>
      <url><loc>https://news.example.com/news/one</loc></url>
      <url><loc>https://news.example.com/video/two</loc></url>
    </urlset>"""
    assert parse_links(sitemap, sitemap_source) == {"https://news.example.com/news/one"}


def test_parse_article_reads_metadata_and_body():
    article = parse_article(ARTICLE, "https://news.example.com/news/salah-new-deal", SOURCE)

    assert article.og_title == "Salah signs new deal"
    assert article.published_time == "2024-08-18T10:00:00+00:00"
    assert article.og_image == "https://img.example.com/salah.jpg"
    assert article.author == "Jane Reporter"
    assert article.source == "example"
    assert article.text == (
        "Mohamed Salah has signed a new contract.\n\n"
        "He is staying, the club said.\n\n"
        "Fans & pundits approve."
    )


def test_parse_article_requires_title():
    page = "<html><body><article><p>Text</p></article></body></html>"
    with pytest.raises(ValueError, match="og:title"):
        parse_article(page, "https://news.example.com/news/x", SOURCE)


def test_parse_article_requires_body():
    page = '<html><head><meta property="og:title" content="T"/></head><body></body></html>'
    with pytest.raises(ValueError, match="No article text"):
        parse_article(page, "https://news.example.com/news/x", SOURCE)


class FakeResponse:
    def __init__(self, text, status_code=200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, pages):
        self.pages = pages
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        page = self.pages.get(url)
        if page is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(page, FakeResponse):
            return page
        return FakeResponse(page)


def test_discover_skips_known_urls_and_broken_sources():
    broken = SiteSource(
        name="broken",
        listing_url="https://down.example.com/",
        link_prefix="https://down.example.com/news/",
    )
    session = FakeSession({SOURCE.listing_url: LISTING})
    scraper = WebScraper([SOURCE, broken], session=session)

    fresh = scraper.discover({"https://news.example.com/news/slot-presser"})

    assert fresh == ["https://news.example.com/news/salah-new-deal"]
    assert "User-Agent" in session.headers


def test_fetch_collects_articles_and_failures():
    good = "https://news.example.com/news/salah-new-deal"
    missing = "https://news.example.com/news/gone"
    empty = "https://news.example.com/news/empty"
    session = FakeSession(
        {
            good: ARTICLE,
            missing: FakeResponse("", status_code=404),
            empty: "<html><head></head><body></body></html>",
        }
    )
    scraper = WebScraper([SOURCE], session=session, max_workers=2)

    result = scraper.fetch([good, missing, empty])

    assert [article.url for article in result.articles] == [good]
    assert set(result.failures) == {missing, empty}
    assert "404" in result.failures[missing]
