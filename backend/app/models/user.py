# backend/app/models/user.py
"""
User model for the TutorDesk platform.

Students, tutors and admins share one table, differentiated by ``role``.
Authentication lives outside this service; the engine only needs identity,
role and the tutor's time zone (availability rules are expressed in it).
"""

import logging

from sqlalchemy import Boolean, CheckConstraint, Column, String
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import RoleName
from ..database import Base
from .types import UTCDateTime, utc_now

logger = logging.getLogger(__name__)


class User(Base):
    """
    Platform user.

    Attributes:
        id: ULID primary key
        email: Unique contact email
        full_name: Display name
        role: admin, tutor or student
        timezone: IANA zone name; tutors' rules are interpreted in it
        is_active: Whether the account is active
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(120), nullable=False)
    role = Column(String(20), nullable=False, default=RoleName.STUDENT.value)
    timezone = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    availability_rules = relationship(
        "TutorAvailabilityRule", back_populates="tutor", cascade="all, delete-orphan"
    )
    availability_blocks = relationship(
        "TutorAvailabilityBlock", back_populates="tutor", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'tutor', 'student')", name="ck_users_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN.value

    @property
    def is_tutor(self) -> bool:
        return self.role == RoleName.TUTOR.value

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
