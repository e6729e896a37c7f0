import pytest

from marham.schemas.doctor import SearchQuery
from marham.services.slugs import build_start_url, normalize_slug


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Dermatologist", "dermatologist"),
        ("  Skin & Hair  ", "skin-and-hair"),
        ("Ear_Nose Throat", "ear-nose-throat"),
        ("Gynecologist -- Obstetrician", "gynecologist-obstetrician"),
        ("Dera Ghazi Khan!", "dera-ghazi-khan"),
        ("-lahore-", "lahore"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_slug(raw, expected):
    assert normalize_slug(raw) == expected


@pytest.mark.parametrize("raw", ["Skin & Hair", "dermatologist", "a--b", " Child  Specialist_", "ÉNT & co", "--"])
def test_normalize_slug_is_idempotent(raw):
    once = normalize_slug(raw)
    assert normalize_slug(once) == once


def test_build_start_url_with_and_without_city():
    base = "https://www.marham.pk"
    assert build_start_url(base, SearchQuery(specialty="Skin Specialist", city="Lahore")) == (
        "https://www.marham.pk/doctors/lahore/skin-specialist"
    )
    assert build_start_url(base + "/", SearchQuery(specialty="Dermatologist")) == (
        "https://www.marham.pk/doctors/dermatologist"
    )


def test_search_query_defaults_blank_specialty():
    query = SearchQuery(specialty="  ", city=" Karachi ")
    assert query.specialty == "dermatologist"
    assert query.city == "Karachi"
