import json

from sqlalchemy import select

from marham.db.session import get_session_factory
from marham.models.doctor import DoctorProfile
from marham.schemas.doctor import NormalizedRecord
from marham.services.sinks import DatabaseSink, JsonLinesSink

URL = "https://www.marham.pk/doctors/lahore/dermatologist/dr-ayesha-khan"


def _record(**fields) -> NormalizedRecord:
    values = {"name": "Dr. Ayesha Khan", "url": URL, "hospitals": ["Hameed Latif Hospital"]}
    values.update(fields)
    return NormalizedRecord(**values)


def test_json_lines_sink_appends_records(tmp_path):
    path = tmp_path / "doctors.jsonl"
    sink = JsonLinesSink(path)
    sink.push(_record())
    sink.push(_record(name="Dr. Bilal Ahmed", url=None, hospitals=None))

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["name"] for line in lines] == ["Dr. Ayesha Khan", "Dr. Bilal Ahmed"]
    assert lines[0]["source"] == "marham.pk"
    assert lines[0]["pmdc_verified"] is False
    assert lines[1]["hospitals"] is None


def test_database_sink_upserts_by_url(tmp_path):
    session_factory = get_session_factory(f"sqlite:///{tmp_path / 'doctors.db'}")
    sink = DatabaseSink(session_factory)

    sink.push(_record(fee="Rs. 1500"))
    sink.push(_record(fee="Rs. 2000", pmdc_verified=True))
    sink.push(_record(name="Dr. Bilal Ahmed", url=None))

    with session_factory() as db:
        rows = db.execute(select(DoctorProfile).order_by(DoctorProfile.id)).scalars().all()
    assert [row.name for row in rows] == ["Dr. Ayesha Khan", "Dr. Bilal Ahmed"]
    assert rows[0].fee == "Rs. 2000"
    assert rows[0].pmdc_verified is True
    assert rows[0].hospitals == ["Hameed Latif Hospital"]
    assert rows[0].source == "marham.pk"
