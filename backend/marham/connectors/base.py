from typing import Optional, Protocol, runtime_checkable

from marham.schemas.doctor import PageResult, PageToken, SearchQuery


@runtime_checkable
class SourceAdapter(Protocol):
    """One acquisition strategy.

    ``fetch_page`` never raises for network or payload trouble: it returns
    ``ok=False`` and the orchestrator decides whether to fall back.
    """

    name: str

    def fetch_page(self, query: SearchQuery, page_token: Optional[PageToken] = None) -> PageResult:  # pragma: no cover - interface
        ...
