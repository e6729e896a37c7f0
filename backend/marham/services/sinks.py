import json
import logging
import threading
from pathlib import Path
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from marham.models.doctor import DoctorProfile
from marham.schemas.doctor import NormalizedRecord

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def push(self, record: NormalizedRecord) -> None:  # pragma: no cover - interface
        """Persist one record. Raise rather than drop silently."""


class JsonLinesSink:
    """Appends one JSON object per record."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def push(self, record: NormalizedRecord) -> None:
        line = json.dumps(record.model_dump(), ensure_ascii=False)
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class DatabaseSink:
    """Upserts records into ``doctor_profiles``, keyed by profile URL when there is one."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def push(self, record: NormalizedRecord) -> None:
        data = record.model_dump()
        with self.session_factory() as db:
            existing = None
            if record.url:
                existing = db.execute(select(DoctorProfile).where(DoctorProfile.url == record.url)).scalars().first()
            if existing:
                for field, value in data.items():
                    setattr(existing, field, value)
            else:
                db.add(DoctorProfile(**data))
            db.commit()
        logger.debug("Stored doctor %s", record.url or record.name)
