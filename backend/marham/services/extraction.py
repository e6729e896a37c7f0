"""Field extraction from Marham pages.

Two passes run over a parsed page:

* structured data: ``application/ld+json`` blocks typed as a physician,
  medical business or person;
* markup heuristics: per field, an ordered tuple of strategies
  ``node -> Optional[str]``; the first non-empty value wins.

Neither pass fails on a missing field. Only a document that cannot be parsed
raises ``MalformedPayloadError``.
"""

import json
import logging
import re
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Tag

from marham.core.errors import MalformedPayloadError
from marham.schemas.doctor import Origin, PartialRecord

logger = logging.getLogger(__name__)

BASE_URL = "https://www.marham.pk"
STRUCTURED_TYPES = {"Physician", "MedicalBusiness", "Person"}
DIGITS_PATTERN = re.compile(r"\d+")

Strategy = Callable[[Tag], Optional[str]]
Flag = Callable[[Tag], bool]


class DocumentKind(str, Enum):
    LISTING_CARD = "listing-card"
    DETAIL_PAGE = "detail-page"


def parse_document(markup: str | bytes) -> BeautifulSoup:
    if not isinstance(markup, (str, bytes)):
        raise MalformedPayloadError(f"expected markup, got {type(markup).__name__}")
    try:
        return BeautifulSoup(markup, "html.parser")
    except Exception as exc:  # html.parser raises assorted errors on broken input
        raise MalformedPayloadError(str(exc)) from exc


def resolve_url(href: Optional[str], base_url: str = BASE_URL) -> Optional[str]:
    if not href or not isinstance(href, str):
        return None
    try:
        absolute = urljoin(base_url, href.strip())
    except ValueError:
        return None
    return absolute if urlsplit(absolute).scheme in {"http", "https"} else None


def canonical_url(url: Optional[str]) -> Optional[str]:
    """Identity form of a profile URL: lowercase host, no fragment, no trailing slash."""
    if not url:
        return None
    parts = urlsplit(url)
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((parts.scheme, parts.netloc.lower(), path, parts.query, ""))


def _clean(value: object) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    text = " ".join(node.get_text(" ", strip=True).split())
    return text or None


def _flatten_names(value: object, delimiter: Optional[str]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if delimiter is None:
            return [text] if text else []
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        return [part.strip() for part in text.split(delimiter) if part.strip()]
    if isinstance(value, Mapping):
        return _flatten_names(value.get("name"), delimiter)
    if isinstance(value, (list, tuple)):
        return [name for item in value for name in _flatten_names(item, delimiter)]
    return []


def normalize_name_list(value: object, delimiter: Optional[str] = ",") -> List[str]:
    """Uniform, de-duplicated name list from the shapes a payload may use.

    Accepted shapes: a string (split on ``delimiter`` and optionally wrapped in
    brackets), a mapping with a ``name`` key, or a list of any of these.
    """
    return list(dict.fromkeys(_flatten_names(value, delimiter)))


def unique(values: Iterable[Optional[str]]) -> List[str]:
    return list(dict.fromkeys(value for value in values if value))


def first_match(node: Tag, strategies: Sequence[Strategy]) -> Optional[str]:
    for strategy in strategies:
        value = strategy(node)
        if value:
            return value
    return None


def any_flag(node: Tag, flags: Sequence[Flag]) -> bool:
    return any(flag(node) for flag in flags)


# -- strategy builders --------------------------------------------------------


def select_text(selector: str) -> Strategy:
    def strategy(node: Tag) -> Optional[str]:
        for element in node.select(selector):
            text = _text(element)
            if text:
                return text
        return None

    return strategy


def select_attr(selector: str, attr: str) -> Strategy:
    def strategy(node: Tag) -> Optional[str]:
        for element in node.select(selector):
            value = _clean(element.get(attr))
            if value:
                return value
        return None

    return strategy


def select_number(selector: str, template: str = "{}") -> Strategy:
    """First run of digits in the first matching element that has one."""

    def strategy(node: Tag) -> Optional[str]:
        for element in node.select(selector):
            match = DIGITS_PATTERN.search(element.get_text(" ", strip=True))
            if match:
                return template.format(match.group(0))
        return None

    return strategy


def number_from(strategy: Strategy, template: str = "{}") -> Strategy:
    def wrapped(node: Tag) -> Optional[str]:
        match = DIGITS_PATTERN.search(strategy(node) or "")
        return template.format(match.group(0)) if match else None

    return wrapped


def stat_value(label: str) -> Strategy:
    """Value paragraph following a ``p.mb-0.text-sm`` label on a listing card."""

    def strategy(node: Tag) -> Optional[str]:
        for label_el in node.select("p.mb-0.text-sm"):
            if (_text(label_el) or "").lower() != label:
                continue
            value = _text(label_el.find_next_sibling("p"))
            if value:
                return value
        return None

    return strategy


def has_element(selector: str) -> Flag:
    return lambda node: node.select_one(selector) is not None


def element_text_contains(selector: str, *needles: str) -> Flag:
    def flag(node: Tag) -> bool:
        return any(
            needle in element.get_text(" ", strip=True).lower()
            for element in node.select(selector)
            for needle in needles
        )

    return flag


def text_contains(*needles: str) -> Flag:
    def flag(node: Tag) -> bool:
        text = node.get_text(" ", strip=True).lower()
        return any(needle in text for needle in needles)

    return flag


def leaf_texts(node: Tag, selector: str, min_length: int = 0) -> List[str]:
    """Texts of matching elements that contain no further match, in document order."""
    texts = []
    for element in node.select(selector):
        if element.select_one(selector) is not None:
            continue
        text = _text(element)
        if text and len(text) > min_length:
            texts.append(text)
    return unique(texts)


# -- listing cards ------------------------------------------------------------

CARD_SELECTORS: Tuple[str, ...] = (
    "#doctor-listing1 .row.shadow-card",
    ".row.shadow-card",
    'div[class*="doctor-card"]',
    'article[class*="doctor"]',
    "[data-doctor-id]",
)
PROFILE_LINK_SELECTORS: Tuple[str, ...] = (
    "a.dr_profile_open_frm_listing_btn_vprofile",
    "a.dr_profile_opened_from_listing",
    'a[href*="/doctors/"]',
)


def _card_qualifications(card: Tag) -> Optional[str]:
    for element in card.select("p.text-sm"):
        if "mb-0" in (element.get("class") or []):
            continue
        text = _text(element)
        if text:
            return text
    return None


def _card_fee(card: Tag) -> Optional[str]:
    amount = select_attr(".product-card[data-amount]", "data-amount")(card)
    return f"Rs. {amount}" if amount else None


CARD_STRATEGIES: Dict[str, Sequence[Strategy]] = {
    "name": (select_text("h3"),),
    "specialty": (select_text("p.mb-0.mt-10.text-sm"),),
    "qualifications": (_card_qualifications,),
    "experience": (number_from(stat_value("experience"), "{} years"),),
    "reviews_count": (number_from(stat_value("reviews")),),
    "satisfaction": (number_from(stat_value("satisfaction"), "{}%"),),
    "fee": (_card_fee, select_text("p.price")),
    "available_days": (select_attr("[data-displaydayname]", "data-displaydayname"),),
    "city": (select_attr("[data-hospitalcity]", "data-hospitalcity"),),
}
CARD_FLAGS: Dict[str, Sequence[Flag]] = {
    "pmdc_verified": (element_text_contains("span.text-green", "pmdc verified"), text_contains("pmdc verified")),
    "video_consultation": (
        has_element(".dr_profile_opened_from_listing_btn_vcall"),
        text_contains("video consultation", "video call"),
    ),
}


def find_cards(doc: Tag) -> List[Tag]:
    for selector in CARD_SELECTORS:
        cards = [card for card in doc.select(selector) if card.select_one('a[href*="/doctors/"]')]
        if cards:
            return cards
    return []


def card_profile_url(card: Tag, base_url: str = BASE_URL) -> Optional[str]:
    for selector in PROFILE_LINK_SELECTORS:
        for link in card.select(selector):
            href = link.get("href")
            if isinstance(href, str) and "/doctors/" in href:
                return resolve_url(href, base_url)
    return None


def extract_listing_card(card: Tag, base_url: str = BASE_URL) -> PartialRecord:
    fields = {field: first_match(card, strategies) for field, strategies in CARD_STRATEGIES.items()}
    flags = {field: any_flag(card, checks) for field, checks in CARD_FLAGS.items()}
    hospitals = unique(_clean(el.get("data-hospitalname")) for el in card.select("[data-hospitalname]"))
    services = leaf_texts(card, ".chips-highlight")
    return PartialRecord(
        origin=Origin.LISTING,
        hospitals=hospitals or None,
        services=services or None,
        url=card_profile_url(card, base_url),
        **fields,
        **flags,
    )


# -- detail pages -------------------------------------------------------------

HOSPITAL_SELECTOR = '[class*="hospital"], [class*="clinic"], [class*="location"]'
SERVICE_SELECTOR = '[class*="service"], [class*="treatment"]'

DETAIL_STRATEGIES: Dict[str, Sequence[Strategy]] = {
    "name": (select_text("h1"), select_text('[class*="doctor-name"]')),
    "specialty": (select_text('[class*="specialty"]'), select_text('[class*="speciality"]')),
    "qualifications": (select_text('[class*="qualification"]'), select_text('[class*="degree"]')),
    "experience": (select_number('[class*="experience"]', "{} years"),),
    "reviews_count": (select_number('[class*="review"]'),),
    "satisfaction": (select_number('[class*="satisfaction"]', "{}%"),),
    "fee": (select_text('[class*="fee"]'), select_text('[class*="price"]')),
    "available_days": (
        select_text('[class*="available"]'),
        select_text('[class*="timing"]'),
        select_text('[class*="schedule"]'),
    ),
    "about": (select_text('[class*="about"]'), select_text('[class*="bio"]'), select_text('[class*="description"]')),
}
DETAIL_FLAGS: Dict[str, Sequence[Flag]] = {
    "pmdc_verified": (has_element('[class*="verified"]'), text_contains("pmdc verified")),
    "video_consultation": (
        has_element('.dr_profile_opened_from_listing_btn_vcall, [class*="video-consult"]'),
        text_contains("video consultation", "video call"),
    ),
}


def extract_detail_page(doc: Tag, url: Optional[str] = None) -> PartialRecord:
    fields = {field: first_match(doc, strategies) for field, strategies in DETAIL_STRATEGIES.items()}
    flags = {field: any_flag(doc, checks) for field, checks in DETAIL_FLAGS.items()}
    hospitals = leaf_texts(doc, HOSPITAL_SELECTOR, min_length=5)
    services = leaf_texts(doc, SERVICE_SELECTOR, min_length=2)
    return PartialRecord(
        origin=Origin.DETAIL,
        hospitals=hospitals or None,
        services=services or None,
        url=url,
        **fields,
        **flags,
    )


def extract_markup(node: Tag, kind: DocumentKind, url: Optional[str] = None, base_url: str = BASE_URL) -> PartialRecord:
    if kind is DocumentKind.LISTING_CARD:
        return extract_listing_card(node, base_url)
    return extract_detail_page(node, url)


# -- structured data ----------------------------------------------------------


def _entry_types(entry: Mapping) -> set:
    declared = entry.get("@type") or entry.get("type")
    if isinstance(declared, str):
        return {declared}
    if isinstance(declared, list):
        return {item for item in declared if isinstance(item, str)}
    return set()


def collect_structured_entries(doc: Tag) -> List[Mapping]:
    entries: List[Mapping] = []
    for script in doc.find_all("script", attrs={"type": "application/ld+json"}):
        payload = script.string or script.get_text()
        if not payload or not payload.strip():
            continue
        try:
            parsed = json.loads(payload)
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        candidates = parsed if isinstance(parsed, list) else [parsed]
        for candidate in list(candidates):
            if isinstance(candidate, Mapping) and isinstance(candidate.get("@graph"), list):
                candidates.extend(candidate["@graph"])
        entries.extend(
            entry for entry in candidates if isinstance(entry, Mapping) and _entry_types(entry) & STRUCTURED_TYPES
        )
    return entries


def structured_entry_url(entry: Mapping, base_url: str = BASE_URL) -> Optional[str]:
    href = entry.get("url") or entry.get("@id")
    return resolve_url(href, base_url) if isinstance(href, str) else None


def _specialty_name(value: object) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, Mapping):
        value = value.get("name")
    return _clean(value)


def record_from_structured(entry: Mapping, base_url: str = BASE_URL) -> PartialRecord:
    address = entry.get("address")
    city = _clean(address.get("addressLocality")) if isinstance(address, Mapping) else None
    hospitals = normalize_name_list(entry.get("hospitalAffiliation"), delimiter=None)
    services = normalize_name_list(entry.get("AvailableService") or entry.get("availableService"))
    return PartialRecord(
        origin=Origin.STRUCTURED,
        name=_clean(entry.get("name")),
        specialty=_specialty_name(entry.get("medicalSpecialty")),
        about=_clean(entry.get("description")),
        hospitals=hospitals or None,
        services=services or None,
        fee=_clean(entry.get("priceRange")),
        city=city,
        url=structured_entry_url(entry, base_url),
    )


def extract_structured(doc: Tag, target_url: Optional[str] = None, base_url: str = BASE_URL) -> Optional[PartialRecord]:
    """Structured record for ``target_url``, or the first well-typed entry when no target is given."""
    target = canonical_url(target_url)
    for entry in collect_structured_entries(doc):
        if target and canonical_url(structured_entry_url(entry, base_url)) != target:
            continue
        return record_from_structured(entry, base_url)
    return None


def index_structured_by_url(doc: Tag, base_url: str = BASE_URL) -> Dict[str, PartialRecord]:
    index: Dict[str, PartialRecord] = {}
    for entry in collect_structured_entries(doc):
        url = canonical_url(structured_entry_url(entry, base_url))
        if url:
            index.setdefault(url, record_from_structured(entry, base_url))
    return index
