import json
import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from marham.connectors.fetch import Fetcher
from marham.core.config import Settings
from marham.core.errors import MalformedPayloadError, TransientFetchError
from marham.schemas.doctor import Origin, PageResult, PageToken, PartialRecord, SearchQuery
from marham.services.extraction import normalize_name_list, resolve_url
from marham.services.slugs import build_start_url

logger = logging.getLogger(__name__)

NON_DIGIT_PATTERN = re.compile(r"\D")
TRUE_STRINGS = {"1", "true", "yes", "y"}


class ApiSchema(BaseModel):
    """Field names the search endpoint has been seen to use.

    The endpoint is undocumented and its payload drifts, so every lookup goes
    through an alias tuple tried in order.
    """

    envelope_keys: Tuple[str, ...] = ("data",)
    list_keys: Tuple[str, ...] = ("doctors", "results", "items")
    total_page_keys: Tuple[str, ...] = ("totalPages", "lastPage", "last_page")
    fields: Dict[str, Tuple[str, ...]] = {
        "name": ("name",),
        "specialty": ("speciality", "specialty"),
        "qualifications": ("qualifications",),
        "experience": ("experience",),
        "satisfaction": ("satisfaction",),
        "reviews_count": ("reviews", "reviews_count"),
        "fee": ("fee",),
        "city": ("city",),
        "available_days": ("availableDays", "availability"),
        "about": ("description", "about"),
        "url": ("profileUrl", "url"),
    }
    hospital_keys: Tuple[str, ...] = ("hospitals", "hospital")
    service_keys: Tuple[str, ...] = ("services",)
    flags: Dict[str, Tuple[str, ...]] = {
        "pmdc_verified": ("pmdcVerified", "pmdc_verified"),
        "video_consultation": ("videoConsultation", "video_consultation"),
    }


def _lookup(payload: Mapping, keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, "", []):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def _as_json(body: Any) -> Any:
    if isinstance(body, (Mapping, list)):
        return body
    if isinstance(body, str):
        try:
            return json.loads(body)
        except ValueError as exc:
            raise MalformedPayloadError("search endpoint returned non-JSON body") from exc
    raise MalformedPayloadError(f"unexpected body type {type(body).__name__}")


def unwrap_payload(body: Any, schema: ApiSchema) -> Any:
    if isinstance(body, Mapping):
        envelope = _lookup(body, schema.envelope_keys)
        if envelope is not None:
            return envelope
    return body


def doctor_list(payload: Any, schema: ApiSchema) -> List[Mapping]:
    if isinstance(payload, list):
        doctors = payload
    elif isinstance(payload, Mapping):
        doctors = _lookup(payload, schema.list_keys) or []
    else:
        doctors = []
    if not isinstance(doctors, list):
        return []
    return [doctor for doctor in doctors if isinstance(doctor, Mapping)]


def total_pages(payload: Any, schema: ApiSchema) -> int:
    if not isinstance(payload, Mapping):
        return 1
    for key in schema.total_page_keys:
        try:
            value = float(payload.get(key))
        except (TypeError, ValueError):
            continue
        if math.isfinite(value):
            return max(1, int(value))
    return 1


def record_from_api(doctor: Mapping, base_url: str, schema: Optional[ApiSchema] = None) -> PartialRecord:
    schema = schema or ApiSchema()
    fields = {field: _as_text(_lookup(doctor, keys)) for field, keys in schema.fields.items()}
    if fields.get("reviews_count"):
        fields["reviews_count"] = NON_DIGIT_PATTERN.sub("", fields["reviews_count"]) or None
    fields["url"] = resolve_url(fields.get("url"), base_url)
    hospitals = normalize_name_list(_lookup(doctor, schema.hospital_keys), delimiter=None)
    services = normalize_name_list(_lookup(doctor, schema.service_keys))
    flags = {field: _truthy(_lookup(doctor, keys)) for field, keys in schema.flags.items()}
    return PartialRecord(
        origin=Origin.API,
        hospitals=hospitals or None,
        services=services or None,
        **fields,
        **flags,
    )


class ApiConnector:
    """Structured search endpoint, paginated by 1-based page number."""

    name = "api"

    def __init__(self, fetcher: Fetcher, settings: Settings, schema: Optional[ApiSchema] = None) -> None:
        self.fetcher = fetcher
        self.base_url = settings.base_url
        self.api_url = settings.api_url
        self.page_limit = settings.api_page_limit
        self.schema = schema or ApiSchema()

    def _request_body(self, query: SearchQuery, page: int) -> Dict[str, Any]:
        # the endpoint has accepted both spellings over time
        return {
            "specialty": query.specialty,
            "speciality": query.specialty,
            "city": query.city,
            "page": page,
            "limit": self.page_limit,
        }

    def fetch_page(self, query: SearchQuery, page_token: Optional[PageToken] = None) -> PageResult:
        page = int(page_token or 1)
        headers = {
            "Referer": build_start_url(self.base_url, query),
            "X-Requested-With": "XMLHttpRequest",
        }
        try:
            response = self.fetcher.get(self.api_url, headers=headers, body=self._request_body(query, page))
            payload = unwrap_payload(_as_json(response.body), self.schema)
        except (TransientFetchError, MalformedPayloadError) as exc:
            logger.warning("[api] page %s failed: %s", page, exc)
            return PageResult(ok=False)

        records = [record_from_api(doctor, self.base_url, self.schema) for doctor in doctor_list(payload, self.schema)]
        if not records:
            logger.info("[api] page %s returned no doctors", page)
            return PageResult(ok=False)
        last_page = total_pages(payload, self.schema)
        logger.info("[api] page %s/%s returned %s doctors", page, last_page, len(records))
        return PageResult(records=records, next_token=page + 1 if last_page > page else None, ok=True)
