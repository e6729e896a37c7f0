from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, field_validator

DEFAULT_SPECIALTY = "dermatologist"
SOURCE = "marham.pk"


class Origin(str, Enum):
    """Which extraction pass produced a partial record."""

    STRUCTURED = "structured"
    DETAIL = "detail"
    API = "api"
    LISTING = "listing"
    QUERY = "query"


class SearchQuery(BaseModel):
    specialty: str = DEFAULT_SPECIALTY
    city: str = ""

    @field_validator("specialty", mode="before")
    @classmethod
    def _default_specialty(cls, value: Optional[str]) -> str:
        return (value or "").strip() or DEFAULT_SPECIALTY

    @field_validator("city", mode="before")
    @classmethod
    def _strip_city(cls, value: Optional[str]) -> str:
        return (value or "").strip()


class PartialRecord(BaseModel):
    origin: Origin
    name: Optional[str] = None
    specialty: Optional[str] = None
    qualifications: Optional[str] = None
    experience: Optional[str] = None
    reviews_count: Optional[str] = None
    satisfaction: Optional[str] = None
    fee: Optional[str] = None
    city: Optional[str] = None
    hospitals: Optional[List[str]] = None
    available_days: Optional[str] = None
    services: Optional[List[str]] = None
    about: Optional[str] = None
    url: Optional[str] = None
    pmdc_verified: Optional[bool] = None
    video_consultation: Optional[bool] = None


class NormalizedRecord(BaseModel):
    name: str
    specialty: Optional[str] = None
    qualifications: Optional[str] = None
    experience: Optional[str] = None
    reviews_count: Optional[str] = None
    satisfaction: Optional[str] = None
    fee: Optional[str] = None
    city: Optional[str] = None
    hospitals: Optional[List[str]] = None
    available_days: Optional[str] = None
    services: Optional[List[str]] = None
    about: Optional[str] = None
    url: Optional[str] = None
    pmdc_verified: bool = False
    video_consultation: bool = False
    source: Literal["marham.pk"] = SOURCE


PageToken = Union[int, str]


class PageResult(BaseModel):
    """One ``fetch_page`` call. ``next_token`` of ``None`` means the adapter is exhausted."""

    records: List[PartialRecord] = []
    urls: List[str] = []
    next_token: Optional[PageToken] = None
    ok: bool = False
