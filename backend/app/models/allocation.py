import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class AllocationStatus(str, Enum):
    active = "active"
    completed = "completed"


ACTIVE_ONLY = text("status = 'active'")


class Allocation(Base):
    __tablename__ = "faculty_allocations"
    __table_args__ = (
        UniqueConstraint("faculty_id", "student_id", name="uq_faculty_allocations_pair"),
        # A student may hold at most one active mentor at a time.
        Index(
            "uq_faculty_allocations_active_student",
            "student_id",
            unique=True,
            sqlite_where=ACTIVE_ONLY,
            postgresql_where=ACTIVE_ONLY,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    faculty_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    status: Mapped[AllocationStatus] = mapped_column(
        SAEnum(AllocationStatus, name="allocation_status"),
        nullable=False,
        default=AllocationStatus.active,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class FacultyLoad(Base):
    """Per-faculty count of active allocations, written with every allocation change."""

    __tablename__ = "faculty_loads"
    __table_args__ = (
        CheckConstraint(
            "active_count >= 0 AND active_count <= capacity",
            name="ck_faculty_loads_within_capacity",
        ),
    )

    faculty_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), primary_key=True)
    active_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
