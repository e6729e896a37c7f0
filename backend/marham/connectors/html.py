import logging
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import Tag

from marham.connectors.fetch import Fetcher
from marham.core.config import Settings
from marham.core.errors import MalformedPayloadError, TransientFetchError
from marham.schemas.doctor import PageResult, PageToken, PartialRecord, SearchQuery
from marham.services.extraction import (
    DocumentKind,
    canonical_url,
    extract_markup,
    extract_structured,
    find_cards,
    index_structured_by_url,
    parse_document,
)
from marham.services.slugs import build_start_url

logger = logging.getLogger(__name__)


def next_page_url(url: str) -> str:
    """``url`` with its ``page`` query parameter incremented (absent counts as 1)."""
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    current = 1
    for key, value in params:
        if key == "page":
            try:
                current = int(value)
            except ValueError:
                current = 1
    params = [(key, value) for key, value in params if key != "page"]
    params.append(("page", str(current + 1)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


def parse_listing(doc: Tag, base_url: str) -> List[PartialRecord]:
    """One listing record per card, each followed by its structured-data record when the page has one."""
    structured = index_structured_by_url(doc, base_url)
    records: List[PartialRecord] = []
    for card in find_cards(doc):
        record = extract_markup(card, DocumentKind.LISTING_CARD, base_url=base_url)
        records.append(record)
        paired = structured.get(canonical_url(record.url) or "")
        if paired is not None:
            records.append(paired)
    return records


def parse_detail(doc: Tag, url: str, base_url: str) -> List[PartialRecord]:
    records = [extract_markup(doc, DocumentKind.DETAIL_PAGE, url=url, base_url=base_url)]
    structured = extract_structured(doc, target_url=url, base_url=base_url)
    if structured is not None:
        records.insert(0, structured)
    return records


class HtmlConnector:
    """Rendered listing and profile pages.

    ``fetch_page`` walks listing pages (the page token is the listing URL);
    ``fetch_detail`` reads a single profile page.
    """

    name = "html"

    def __init__(self, fetcher: Fetcher, settings: Settings) -> None:
        self.fetcher = fetcher
        self.base_url = settings.base_url

    def _fetch_document(self, url: str) -> Optional[Tag]:
        try:
            response = self.fetcher.get(url, headers={"Referer": url})
            if not isinstance(response.body, str):
                raise MalformedPayloadError(f"non-HTML body from {url}")
            return parse_document(response.body)
        except (TransientFetchError, MalformedPayloadError) as exc:
            logger.warning("[html] %s failed: %s", url, exc)
            return None

    def fetch_page(self, query: SearchQuery, page_token: Optional[PageToken] = None) -> PageResult:
        url = str(page_token) if page_token else build_start_url(self.base_url, query)
        doc = self._fetch_document(url)
        if doc is None:
            return PageResult(ok=False)
        records = parse_listing(doc, self.base_url)
        if not records:
            logger.warning("[html] no doctor cards on %s", url)
            return PageResult(ok=False)
        urls = list(dict.fromkeys(record.url for record in records if record.url))
        return PageResult(records=records, urls=urls, next_token=next_page_url(url), ok=True)

    def fetch_detail(self, url: str) -> PageResult:
        doc = self._fetch_document(url)
        if doc is None:
            return PageResult(ok=False)
        return PageResult(records=parse_detail(doc, url, self.base_url), urls=[url], ok=True)
