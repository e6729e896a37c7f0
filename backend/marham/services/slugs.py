import re

from marham.schemas.doctor import SearchQuery

SEPARATOR_PATTERN = re.compile(r"[\s_]+")
DISALLOWED_PATTERN = re.compile(r"[^a-z0-9-]")
HYPHEN_RUN_PATTERN = re.compile(r"-{2,}")


def normalize_slug(text: str | None) -> str:
    """Canonical URL token for a specialty or city name: ``"Skin & Hair"`` -> ``"skin-and-hair"``."""
    if not text:
        return ""
    slug = text.lower().replace("&", " and ")
    slug = SEPARATOR_PATTERN.sub("-", slug.strip())
    slug = DISALLOWED_PATTERN.sub("", slug)
    slug = HYPHEN_RUN_PATTERN.sub("-", slug)
    return slug.strip("-")


def build_start_url(base_url: str, query: SearchQuery) -> str:
    parts = [base_url.rstrip("/"), "doctors"]
    city_slug = normalize_slug(query.city)
    if city_slug:
        parts.append(city_slug)
    parts.append(normalize_slug(query.specialty))
    return "/".join(parts)
