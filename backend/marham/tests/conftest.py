from typing import Callable

import httpx
import pytest

from marham.connectors.fetch import Fetcher
from marham.core.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(
        retry_backoff_seconds=0,
        max_retries=1,
        sitemap_urls=["https://www.marham.pk/sitemap.xml"],
        database_url="sqlite:///:memory:",
    )


@pytest.fixture
def make_fetcher(settings) -> Callable[[Callable[[httpx.Request], httpx.Response]], Fetcher]:
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> Fetcher:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return Fetcher(settings, client=client)

    return factory
