import math
from functools import lru_cache
from typing import Any, List, Mapping, Optional
from urllib.parse import urljoin, urlparse

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from marham.core.errors import ConfigurationError
from marham.schemas.doctor import DEFAULT_SPECIALTY, SearchQuery

DEFAULT_RESULTS_WANTED = 100
DEFAULT_MAX_PAGES = 20
START_URL_ALIASES = ("startUrls", "startUrl", "url")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MARHAM_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "marham-doctors"
    base_url: str = "https://www.marham.pk"
    api_path: str = "/api/doctors/search"
    api_page_limit: int = 20
    sitemap_urls: List[str] = ["https://www.marham.pk/sitemap.xml"]

    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    max_concurrency: Optional[int] = None

    database_url: str = "sqlite:///marham.db"
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "marham"
    output_path: str = "doctors.jsonl"
    log_level: str = "INFO"

    @property
    def api_url(self) -> str:
        return urljoin(self.base_url, self.api_path)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def _finite_number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class RunInput(BaseModel):
    """Input for one acquisition run."""

    model_config = ConfigDict(extra="ignore")

    specialty: str = DEFAULT_SPECIALTY
    city: str = ""
    results_wanted: Optional[int] = DEFAULT_RESULTS_WANTED
    max_pages: int = DEFAULT_MAX_PAGES
    collect_details: bool = True
    start_urls: List[str] = []
    proxy_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_start_url_aliases(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        start_urls = data.get("start_urls")
        urls = [start_urls] if isinstance(start_urls, str) else list(start_urls or [])
        for alias in START_URL_ALIASES:
            value = data.pop(alias, None)
            if isinstance(value, str):
                urls.append(value)
            elif isinstance(value, (list, tuple)):
                urls.extend(value)
        data["start_urls"] = urls
        return data

    @field_validator("specialty", mode="before")
    @classmethod
    def _default_specialty(cls, value: Any) -> str:
        return str(value or "").strip() or DEFAULT_SPECIALTY

    @field_validator("city", mode="before")
    @classmethod
    def _strip_city(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("results_wanted", mode="before")
    @classmethod
    def _clamp_results_wanted(cls, value: Any) -> Optional[int]:
        number = _finite_number(value)
        if number is None:
            return None
        return max(1, int(number))

    @field_validator("max_pages", mode="before")
    @classmethod
    def _clamp_max_pages(cls, value: Any) -> int:
        number = _finite_number(value)
        if number is None:
            return DEFAULT_MAX_PAGES
        return max(1, int(number))

    @field_validator("start_urls", mode="before")
    @classmethod
    def _check_start_urls(cls, value: Any) -> List[str]:
        urls: List[str] = []
        for item in value or []:
            if isinstance(item, Mapping):
                item = item.get("url")
            if not item or not str(item).strip():
                continue
            url = str(item).strip()
            if urlparse(url).scheme not in {"http", "https"}:
                raise ValueError(f"start URL must be http(s): {url}")
            urls.append(url)
        return urls

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RunInput":
        try:
            return cls.model_validate(dict(data or {}))
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @property
    def query(self) -> SearchQuery:
        return SearchQuery(specialty=self.specialty, city=self.city)

    @property
    def unbounded(self) -> bool:
        return self.results_wanted is None
