import logging
from typing import Dict, Iterable, List, Optional, Sequence

from marham.core.errors import MissingIdentityError
from marham.schemas.doctor import NormalizedRecord, Origin, PartialRecord, SearchQuery
from marham.services.extraction import canonical_url

logger = logging.getLogger(__name__)

# Lower wins. A detail page is more specific than the listing card it came from.
ORIGIN_PRECEDENCE = {
    Origin.STRUCTURED: 0,
    Origin.DETAIL: 1,
    Origin.API: 2,
    Origin.LISTING: 3,
    Origin.QUERY: 4,
}
SCALAR_FIELDS = (
    "name",
    "specialty",
    "qualifications",
    "experience",
    "reviews_count",
    "satisfaction",
    "fee",
    "city",
    "available_days",
    "about",
    "url",
)
LIST_FIELDS = ("hospitals", "services")
FLAG_FIELDS = ("pmdc_verified", "video_consultation")


def query_fallback(query: SearchQuery) -> PartialRecord:
    """Lowest-precedence record carrying the values the run was asked for."""
    return PartialRecord(origin=Origin.QUERY, specialty=query.specialty, city=query.city or None)


def _first_non_empty(partials: Sequence[PartialRecord], field: str) -> Optional[str]:
    for partial in partials:
        value = getattr(partial, field)
        if value:
            return value
    return None


def _union(partials: Sequence[PartialRecord], field: str) -> Optional[List[str]]:
    seen: Dict[str, None] = {}
    for partial in partials:
        for value in getattr(partial, field) or []:
            if value:
                seen.setdefault(value, None)
    return list(seen) or None


def merge_records(partials: Iterable[Optional[PartialRecord]], strict: bool = False) -> Optional[NormalizedRecord]:
    """Merge partial records that describe one doctor.

    Scalars take the first non-empty value by origin precedence, lists are
    unioned in discovery order, flags are OR-ed. A result without a name is
    dropped (``None``), or raises ``MissingIdentityError`` when ``strict``.
    """
    discovered = [partial for partial in partials if partial is not None]
    ranked = sorted(discovered, key=lambda partial: ORIGIN_PRECEDENCE[partial.origin])

    merged = {field: _first_non_empty(ranked, field) for field in SCALAR_FIELDS}
    merged.update({field: _union(discovered, field) for field in LIST_FIELDS})
    merged.update({field: any(getattr(partial, field) for partial in discovered) for field in FLAG_FIELDS})

    if not merged["name"]:
        if strict:
            raise MissingIdentityError(f"no name for {merged['url'] or 'record without url'}")
        logger.debug("Dropping nameless record %s", merged["url"])
        return None
    return NormalizedRecord(**merged)


def group_by_identity(partials: Iterable[PartialRecord]) -> List[List[PartialRecord]]:
    """Partials grouped by canonical URL in first-seen order. URL-less partials stand alone."""
    groups: Dict[object, List[PartialRecord]] = {}
    for index, partial in enumerate(partials):
        key = canonical_url(partial.url) or ("anonymous", index)
        groups.setdefault(key, []).append(partial)
    return list(groups.values())


def merge_by_identity(
    partials: Iterable[PartialRecord], fallback: Optional[PartialRecord] = None
) -> List[NormalizedRecord]:
    records = []
    for group in group_by_identity(partials):
        record = merge_records([*group, fallback])
        if record is not None:
            records.append(record)
    return records
