import datetime as dt

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from marham.db.base import Base


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True)
    url = Column(String, unique=True)
    name = Column(String, nullable=False)
    specialty = Column(String)
    qualifications = Column(String)
    experience = Column(String)
    reviews_count = Column(String)
    satisfaction = Column(String)
    fee = Column(String)
    city = Column(String)
    hospitals = Column(JSON)
    available_days = Column(String)
    services = Column(JSON)
    about = Column(Text)
    pmdc_verified = Column(Boolean, default=False, nullable=False)
    video_consultation = Column(Boolean, default=False, nullable=False)
    source = Column(String, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)
