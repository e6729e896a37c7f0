"""Acquisition orchestrator.

Stages::

    SELECT_API --quota met--> DONE
    SELECT_API --failure / short--> SITEMAP_DISCOVER -> DETAIL_FETCH -> DONE
    LIST_TRAVERSE (explicit start URLs) -> DONE

The API is only tried for the query-derived start point. Listing traversal
fetches profile pages in parallel, one listing page at a time.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from marham.connectors.api import ApiConnector
from marham.connectors.base import SourceAdapter
from marham.connectors.fetch import Fetcher
from marham.connectors.html import HtmlConnector
from marham.connectors.sitemap import SitemapConnector
from marham.core.config import RunInput, Settings, get_settings
from marham.schemas.doctor import NormalizedRecord, PartialRecord
from marham.services.extraction import canonical_url
from marham.services.merging import group_by_identity, merge_by_identity, merge_records, query_fallback
from marham.services.sinks import Sink

logger = logging.getLogger(__name__)

MAX_DETAIL_CONCURRENCY = 10


class Stage(str, Enum):
    SELECT_API = "select_api"
    SITEMAP_DISCOVER = "sitemap_discover"
    DETAIL_FETCH = "detail_fetch"
    LIST_TRAVERSE = "list_traverse"
    DONE = "done"


class RunSummary(BaseModel):
    stages: List[Stage] = []
    saved: int = 0
    pages_fetched: int = 0
    detail_failures: int = 0
    dropped: int = 0


class TraversalState:
    """Run-wide progress shared with detail workers.

    ``save`` checks the quota, pushes and counts as one step under a lock, so
    concurrent workers can never push past ``results_wanted``.
    """

    def __init__(self, results_wanted: Optional[int], max_pages: int) -> None:
        self.results_wanted = results_wanted
        self.max_pages = max_pages
        self.page = 1
        self.saved = 0
        self._saved_urls: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def quota_met(self) -> bool:
        return self.results_wanted is not None and self.saved >= self.results_wanted

    @property
    def remaining(self) -> Optional[int]:
        if self.results_wanted is None:
            return None
        return max(0, self.results_wanted - self.saved)

    @property
    def saved_url_count(self) -> int:
        return len(self._saved_urls)

    def is_saved(self, url: Optional[str]) -> bool:
        key = canonical_url(url)
        return bool(key) and key in self._saved_urls

    def save(self, url: Optional[str], push: Callable[[], None]) -> bool:
        key = canonical_url(url)
        with self._lock:
            if self.quota_met or (key and key in self._saved_urls):
                return False
            push()
            if key:
                self._saved_urls.add(key)
            self.saved += 1
            return True


def _take(items: Sequence, remaining: Optional[int]) -> list:
    return list(items) if remaining is None else list(items)[:remaining]


class AcquisitionOrchestrator:
    def __init__(
        self,
        run_input: RunInput,
        sink: Sink,
        settings: Optional[Settings] = None,
        fetcher: Optional[Fetcher] = None,
        api: Optional[SourceAdapter] = None,
        sitemap: Optional[SitemapConnector] = None,
        html: Optional[HtmlConnector] = None,
    ) -> None:
        self.run_input = run_input
        self.sink = sink
        self.settings = settings or get_settings()
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or Fetcher(self.settings, proxy_url=run_input.proxy_url)
        self.api = api or ApiConnector(self.fetcher, self.settings)
        self.sitemap = sitemap or SitemapConnector(self.fetcher, self.settings)
        self.html = html or HtmlConnector(self.fetcher, self.settings)

        self.query = run_input.query
        self.fallback = query_fallback(self.query)
        self.state = TraversalState(run_input.results_wanted, run_input.max_pages)
        self.summary = RunSummary()
        self._detail_urls: List[str] = []
        self._queued: Set[str] = set()
        self._summary_lock = threading.Lock()
        self._handlers: Dict[Stage, Callable[[], Stage]] = {
            Stage.SELECT_API: self._select_api,
            Stage.SITEMAP_DISCOVER: self._sitemap_discover,
            Stage.DETAIL_FETCH: self._detail_fetch,
            Stage.LIST_TRAVERSE: self._list_traverse,
        }

    @property
    def concurrency(self) -> int:
        if self.settings.max_concurrency:
            return max(1, self.settings.max_concurrency)
        wanted = self.run_input.results_wanted
        if wanted is None:
            return MAX_DETAIL_CONCURRENCY
        return min(MAX_DETAIL_CONCURRENCY, max(2, math.ceil(wanted / 25)))

    def run(self) -> RunSummary:
        if self.run_input.start_urls:
            logger.info("[orchestrator] Skipping API because custom start URLs were supplied")
            stage = Stage.LIST_TRAVERSE
        else:
            stage = Stage.SELECT_API
        try:
            while stage is not Stage.DONE:
                self.summary.stages.append(stage)
                stage = self._handlers[stage]()
        finally:
            if self._owns_fetcher:
                self.fetcher.close()
        self.summary.saved = self.state.saved
        logger.info("[orchestrator] Finished. Saved %s doctors", self.state.saved)
        return self.summary

    def _emit(self, record: NormalizedRecord) -> bool:
        return self.state.save(record.url, lambda: self.sink.push(record))

    def _count(self, field: str, amount: int = 1) -> None:
        with self._summary_lock:
            setattr(self.summary, field, getattr(self.summary, field) + amount)

    # -- API fast path ----------------------------------------------------------

    def _select_api(self) -> Stage:
        logger.info("[orchestrator] Attempting JSON API approach")
        page: Optional[int] = 1
        while page is not None and page <= self.state.max_pages and not self.state.quota_met:
            self.state.page = page
            result = self.api.fetch_page(self.query, page)
            self._count("pages_fetched")
            if not result.ok:
                logger.warning("[orchestrator] JSON API returned no data on page %s", page)
                break
            records = _take(merge_by_identity(result.records, self.fallback), self.state.remaining)
            saved = sum(1 for record in records if self._emit(record))
            logger.info("[api] Page %s: saved %s doctors (total %s)", page, saved, self.state.saved)
            page = result.next_token

        if self.state.quota_met:
            logger.info("[orchestrator] Finished via JSON API")
            return Stage.DONE
        logger.info("[orchestrator] JSON API fell short, falling back to sitemap discovery")
        return Stage.SITEMAP_DISCOVER

    # -- sitemap + details ------------------------------------------------------

    def _sitemap_discover(self) -> Stage:
        remaining = self.state.remaining
        # URLs already saved from the API still count toward the sitemap's own limit
        limit = None if remaining is None else remaining + self.state.saved_url_count
        urls: List[str] = []
        for url in self.sitemap.discover(self.query, limit=limit):
            if self.state.is_saved(url):
                continue
            urls.append(url)
            if remaining is not None and len(urls) >= remaining:
                break
        logger.info("[sitemap] Discovered %s profile URLs", len(urls))
        self._detail_urls = urls
        return Stage.DETAIL_FETCH

    def _detail_fetch(self) -> Stage:
        self._fetch_details([(url, []) for url in self._detail_urls])
        return Stage.DONE

    def _fetch_details(self, tasks: Sequence[Tuple[str, List[PartialRecord]]]) -> None:
        if not tasks:
            return
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(tasks))) as pool:
            futures = [pool.submit(self._detail_task, url, listing) for url, listing in tasks]
            for future in futures:
                future.result()

    def _detail_task(self, url: str, listing: List[PartialRecord]) -> None:
        if self.state.quota_met:
            return
        result = self.html.fetch_detail(url)
        if not result.ok:
            logger.warning("[orchestrator] Skipping %s: detail fetch failed", url)
            self._count("detail_failures")
            return
        record = merge_records([*result.records, *listing, self.fallback])
        if record is None:
            self._count("dropped")
            return
        if self._emit(record):
            logger.info("[html] Saved doctor details (%s/%s)", self.state.saved, self.state.results_wanted or "all")

    # -- listing traversal ------------------------------------------------------

    def _list_traverse(self) -> Stage:
        for start_url in self.run_input.start_urls:
            if self.state.quota_met:
                break
            self._traverse(start_url)
        return Stage.DONE

    def _traverse(self, url: str) -> None:
        page_no = 1
        next_url: Optional[str] = url
        while next_url and not self.state.quota_met:
            self.state.page = page_no
            logger.info("[html] Processing LIST page %s: %s", page_no, next_url)
            result = self.html.fetch_page(self.query, next_url)
            self._count("pages_fetched")
            if not result.ok:
                break

            detail_tasks: List[Tuple[str, List[PartialRecord]]] = []
            quick: List[NormalizedRecord] = []
            new_entities = 0
            for group in group_by_identity(result.records):
                profile_url = next((partial.url for partial in group if partial.url), None)
                key = canonical_url(profile_url)
                if key and (key in self._queued or self.state.is_saved(profile_url)):
                    continue
                new_entities += 1
                if key and self.run_input.collect_details:
                    detail_tasks.append((profile_url, group))
                    continue
                record = merge_records([*group, self.fallback])
                if record is None:
                    self._count("dropped")
                else:
                    quick.append(record)

            if not new_entities:
                logger.info("[html] No new doctors on page %s, stopping traversal", page_no)
                break

            saved = sum(1 for record in _take(quick, self.state.remaining) if self._emit(record))
            if saved:
                logger.info("[html] Saved %s doctors without details (total %s)", saved, self.state.saved)
            self._fetch_page_details(detail_tasks)

            if self.state.quota_met or page_no >= self.state.max_pages:
                break
            next_url = str(result.next_token) if result.next_token else None
            page_no += 1

    def _fetch_page_details(self, tasks: Sequence[Tuple[str, List[PartialRecord]]]) -> None:
        """Fetch in batches no larger than the remaining quota, until it is met or the page's profiles run out."""
        pending = list(tasks)
        while pending and not self.state.quota_met:
            batch = _take(pending, self.state.remaining)
            pending = pending[len(batch):]
            self._queued.update(canonical_url(url) for url, _ in batch)
            self._fetch_details(batch)
