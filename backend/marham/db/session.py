from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from marham.core.config import get_settings
from marham.db.base import Base


@lru_cache
def get_session_factory(database_url: Optional[str] = None) -> sessionmaker:
    import marham.models  # noqa: F401  registers tables on Base

    engine = create_engine(database_url or get_settings().database_url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
