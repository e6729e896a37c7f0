import logging
import re
from collections import deque
from html import unescape
from typing import Deque, Iterator, List, Optional, Set
from urllib.parse import unquote, urlsplit

from marham.connectors.fetch import Fetcher
from marham.core.config import Settings
from marham.core.errors import TransientFetchError
from marham.schemas.doctor import PageResult, PageToken, SearchQuery
from marham.services.extraction import canonical_url
from marham.services.slugs import normalize_slug

logger = logging.getLogger(__name__)

LOC_PATTERN = re.compile(r"<loc>\s*(?:<!\[CDATA\[)?\s*([^<\]\s]+)\s*(?:\]\]>)?\s*</loc>", re.I)
SITEMAP_INDEX_PATTERN = re.compile(r"<sitemapindex[\s>]", re.I)
PROFILE_PATH_PATTERNS = (
    re.compile(r"^/doctors/(?P<city>[^/]+)/(?P<specialty>[^/]+)/(?P<slug>[^/]+)/?$"),
    re.compile(r"^/online-consultation/(?P<specialty>[^/]+)/(?P<city>[^/]+)/(?P<slug>[^/]+)/?$"),
)


def extract_locations(xml: str) -> List[str]:
    return [unescape(match.strip()) for match in LOC_PATTERN.findall(xml or "")]


def is_sitemap_index(xml: str) -> bool:
    return bool(SITEMAP_INDEX_PATTERN.search(xml or ""))


def _segment_matches(segment: str, wanted: str) -> bool:
    return not wanted or normalize_slug(unquote(segment)) == wanted


def match_profile_url(url: str, query: SearchQuery) -> bool:
    """True when ``url`` is a doctor profile for the query's city and specialty.

    Empty query fields match any segment.
    """
    path = urlsplit(url).path
    city = normalize_slug(query.city)
    specialty = normalize_slug(query.specialty)
    for pattern in PROFILE_PATH_PATTERNS:
        match = pattern.match(path)
        if match:
            return _segment_matches(match["city"], city) and _segment_matches(match["specialty"], specialty)
    return False


class SitemapConnector:
    """Discovers profile URLs from the sitemap. Each page token is one sitemap document.

    Sitemap indexes are followed: their child documents are queued and handed
    out as later page tokens.
    """

    name = "sitemap"

    def __init__(self, fetcher: Fetcher, settings: Settings) -> None:
        self.fetcher = fetcher
        self.sitemap_urls = list(settings.sitemap_urls)
        self._pending: Deque[str] = deque()
        self._queued: Set[str] = set()

    def _queue(self, url: str) -> None:
        if url not in self._queued:
            self._queued.add(url)
            self._pending.append(url)

    def _next_document(self) -> Optional[str]:
        return self._pending.popleft() if self._pending else None

    def fetch_page(self, query: SearchQuery, page_token: Optional[PageToken] = None) -> PageResult:
        if page_token is None:
            self._pending.clear()
            self._queued.clear()
            for url in self.sitemap_urls:
                self._queue(url)
            page_token = self._next_document()
            if page_token is None:
                return PageResult(ok=False)

        document_url = str(page_token)
        try:
            response = self.fetcher.get(document_url)
        except TransientFetchError as exc:
            logger.warning("[sitemap] %s failed: %s", document_url, exc)
            return PageResult(next_token=self._next_document(), ok=False)

        xml = response.body if isinstance(response.body, str) else ""
        locations = extract_locations(xml)
        urls: List[str] = []
        if is_sitemap_index(xml):
            for location in locations:
                self._queue(location)
        else:
            urls = [location for location in locations if match_profile_url(location, query)]
        logger.info("[sitemap] %s: %s locations, %s matching", document_url, len(locations), len(urls))
        return PageResult(urls=urls, next_token=self._next_document(), ok=bool(locations))

    def discover(self, query: SearchQuery, limit: Optional[int] = None) -> Iterator[str]:
        """Stream matching profile URLs, stopping once ``limit`` distinct URLs were found."""
        if limit is not None and limit <= 0:
            return
        seen: Set[str] = set()
        result = self.fetch_page(query)
        while True:
            for url in result.urls:
                key = canonical_url(url)
                if key in seen:
                    continue
                seen.add(key)
                yield url
                if limit is not None and len(seen) >= limit:
                    return
            if result.next_token is None:
                return
            result = self.fetch_page(query, result.next_token)
