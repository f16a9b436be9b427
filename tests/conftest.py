import pytest

from news_digest.db import Store


@pytest.fixture
def store():
    store = Store.open("sqlite://")
    yield store
    store.close()
