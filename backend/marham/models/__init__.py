from .doctor import DoctorProfile

__all__ = ["DoctorProfile"]
