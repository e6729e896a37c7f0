from pathlib import Path

import pytest

from marham.core.errors import MalformedPayloadError
from marham.schemas.doctor import Origin
from marham.services.extraction import (
    DocumentKind,
    canonical_url,
    collect_structured_entries,
    extract_markup,
    extract_structured,
    find_cards,
    first_match,
    index_structured_by_url,
    normalize_name_list,
    parse_document,
    select_text,
)

FIXTURES = Path(__file__).parent / "fixtures"
AYESHA_URL = "https://www.marham.pk/doctors/lahore/dermatologist/dr-ayesha-khan"
BILAL_URL = "https://www.marham.pk/doctors/lahore/dermatologist/dr-bilal-ahmed"


def _read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def test_listing_cards_extract_markup_fields():
    doc = parse_document(_read_fixture("marham_listing.html"))
    cards = find_cards(doc)
    assert len(cards) == 2

    first = extract_markup(cards[0], DocumentKind.LISTING_CARD)
    assert first.origin is Origin.LISTING
    assert first.name == "Dr. Ayesha Khan"
    assert first.specialty == "Skin Specialist"
    assert first.qualifications == "MBBS, FCPS (Dermatology)"
    assert first.experience == "12 years"
    assert first.reviews_count == "245"
    assert first.satisfaction == "98%"
    assert first.fee == "Rs. 2000"
    assert first.available_days == "Mon, Wed, Fri"
    assert first.city == "Lahore"
    assert first.hospitals == ["Hameed Latif Hospital", "Doctors Hospital"]
    assert first.services == ["Acne Treatment", "Botox"]
    assert first.url == AYESHA_URL
    assert first.pmdc_verified is True
    assert first.video_consultation is True

    second = extract_markup(cards[1], DocumentKind.LISTING_CARD)
    assert second.name == "Dr. Bilal Ahmed"
    assert second.fee == "Rs. 1,500"
    assert second.experience == "7 years"
    assert second.reviews_count is None
    assert second.hospitals is None
    assert second.url == BILAL_URL
    assert second.pmdc_verified is False
    assert second.video_consultation is False


def test_find_cards_falls_through_selector_strategies():
    html = """
    <div class="doctor-card-wrapper"><h3>No link here</h3></div>
    <article class="doctor-tile"><h3>Dr. Zara</h3><a href="/doctors/karachi/ent/dr-zara">Profile</a></article>
    """
    cards = find_cards(parse_document(html))
    assert len(cards) == 1
    assert cards[0].name == "article"


def test_find_cards_returns_empty_without_profile_links():
    assert find_cards(parse_document("<div class='row shadow-card'><h3>Dr. X</h3></div>")) == []


def test_detail_page_markup_fields():
    doc = parse_document(_read_fixture("marham_detail.html"))
    record = extract_markup(doc, DocumentKind.DETAIL_PAGE, url=AYESHA_URL)
    assert record.origin is Origin.DETAIL
    assert record.name == "Dr. Ayesha Khan"
    assert record.specialty == "Dermatologist"
    assert record.qualifications == "MBBS, FCPS (Dermatology)"
    assert record.experience == "12 years"
    assert record.reviews_count == "245"
    assert record.satisfaction == "98%"
    assert record.fee == "Rs. 2,000"
    assert record.hospitals == ["Hameed Latif Hospital", "Doctors Hospital, Lahore"]
    assert record.services == ["Acne Treatment", "Chemical Peel"]
    assert record.available_days == "Mon, Wed, Fri 5:00 PM - 9:00 PM"
    assert record.about == "Dermatologist with a focus on acne and scarring."
    assert record.url == AYESHA_URL
    assert record.pmdc_verified is True
    assert record.video_consultation is True


def test_detail_page_missing_fields_default_to_absent():
    record = extract_markup(parse_document(_read_fixture("marham_detail_b.html")), DocumentKind.DETAIL_PAGE)
    assert record.name == "Dr. Bilal Ahmed"
    assert record.fee == "Rs. 1,500"
    assert record.experience is None
    assert record.hospitals is None
    assert record.services is None
    assert record.pmdc_verified is False
    assert record.video_consultation is False


def test_flags_fall_back_to_document_text():
    doc = parse_document("<h1>Dr. Noor</h1><p>PMDC verified doctor offering video call appointments</p>")
    record = extract_markup(doc, DocumentKind.DETAIL_PAGE)
    assert record.pmdc_verified is True
    assert record.video_consultation is True


def test_structured_extraction_skips_malformed_blocks():
    doc = parse_document(_read_fixture("marham_detail.html"))
    assert len(collect_structured_entries(doc)) == 1

    record = extract_structured(doc, target_url=AYESHA_URL + "/")
    assert record is not None
    assert record.origin is Origin.STRUCTURED
    assert record.name == "Dr. Ayesha Khan"
    assert record.specialty == "Dermatologist"
    assert record.hospitals == ["Hameed Latif Hospital", "Doctors Hospital"]
    assert record.services == ["Acne Treatment", "Laser Hair Removal", "Botox"]
    assert record.fee == "Rs. 2000"
    assert record.city == "Lahore"
    assert record.about.startswith("Dr. Ayesha Khan is a consultant")


def test_structured_extraction_requires_matching_url_when_targeted():
    doc = parse_document(_read_fixture("marham_detail.html"))
    assert extract_structured(doc, target_url=BILAL_URL) is None
    assert extract_structured(doc).name == "Dr. Ayesha Khan"


def test_structured_extraction_reads_graph_and_ignores_other_types():
    html = """
    <script type="application/ld+json">
    {"@graph": [{"@type": "WebPage", "name": "Page"},
                {"@type": "MedicalBusiness", "name": "Skin Clinic", "@id": "/doctors/lahore/skin-clinic"}]}
    </script>
    """
    index = index_structured_by_url(parse_document(html))
    assert list(index) == ["https://www.marham.pk/doctors/lahore/skin-clinic"]
    assert index["https://www.marham.pk/doctors/lahore/skin-clinic"].name == "Skin Clinic"


def test_listing_structured_index_keys_by_canonical_url():
    index = index_structured_by_url(parse_document(_read_fixture("marham_listing.html")))
    record = index[AYESHA_URL]
    assert record.specialty == "Dermatologist"
    assert record.services == ["Acne Treatment", "Laser Hair Removal"]


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, []),
        ("Botox", ["Botox"]),
        ("Botox, Fillers ,Botox", ["Botox", "Fillers"]),
        ("[Acne Treatment, Peel]", ["Acne Treatment", "Peel"]),
        ({"name": "Botox"}, ["Botox"]),
        ([{"name": "Botox"}, "Fillers, Peel", {"@type": "Service"}, 42], ["Botox", "Fillers", "Peel"]),
    ],
)
def test_normalize_name_list_shapes(value, expected):
    assert normalize_name_list(value) == expected


def test_normalize_name_list_without_delimiter_keeps_commas():
    assert normalize_name_list(["Doctors Hospital, Lahore"], delimiter=None) == ["Doctors Hospital, Lahore"]


def test_first_match_takes_first_non_empty_strategy():
    doc = parse_document("<h1> </h1><div class='doctor-name'>Dr. Omar</div>")
    strategies = (select_text("h1"), select_text('[class*="doctor-name"]'))
    assert first_match(doc, strategies) == "Dr. Omar"
    assert first_match(doc, (select_text("h2"),)) is None


def test_parse_document_rejects_non_markup():
    with pytest.raises(MalformedPayloadError):
        parse_document({"not": "html"})


def test_canonical_url_normalizes_identity():
    assert canonical_url("https://WWW.marham.pk/doctors/x/#reviews") == "https://www.marham.pk/doctors/x"
    assert canonical_url(None) is None
