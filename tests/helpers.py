from typing import List

from news_digest.errors import ChannelError
from news_digest.models import Article, Digest


def make_article(slug: str, **overrides) -> Article:
    data = {
        "url": f"https://news.example.com/news/{slug}",
        "og_title": f"Headline {slug}",
        "source": "example",
        "text": f"Body of {slug}.",
    }
    data.update(overrides)
    return Article(**data)


class RecordingChannel:
    """Channel stand-in that remembers what it was sent and can be told to fail."""

    def __init__(self, name: str, fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent: List[Digest] = []

    def send(self, digest: Digest) -> None:
        if self.fail:
            raise ChannelError(f"{self.name} is down")
        self.sent.append(digest)
