from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from app.models.allocation import Allocation, AllocationStatus
from app.models.user import User, UserRole


@dataclass(frozen=True)
class CapacityPolicy:
    limit: int

    def has_room(self, active_count: int) -> bool:
        return active_count < self.limit


@dataclass(frozen=True)
class FacultyWorkload:
    faculty_id: str
    name: str
    student_count: int
    capacity: int

    @property
    def utilization_percent(self) -> float:
        if self.capacity <= 0:
            return 100.0
        ratio = self.student_count / self.capacity * 100
        return round(min(100.0, max(0.0, ratio)), 1)


def faculty_workloads(db: Session, policy: CapacityPolicy) -> list[FacultyWorkload]:
    """Active mentee counts for every faculty member, zero-load faculty included.

    All counts come from one grouped query so they share a snapshot.
    """
    rows = db.execute(
        select(User.id, User.name, func.count(Allocation.id))
        .select_from(User)
        .outerjoin(
            Allocation,
            and_(Allocation.faculty_id == User.id, Allocation.status == AllocationStatus.active),
        )
        .where(User.role == UserRole.faculty, User.is_active.is_(True))
        .group_by(User.id, User.name)
        .order_by(User.id.asc())
    ).all()
    return [
        FacultyWorkload(faculty_id=faculty_id, name=name, student_count=count, capacity=policy.limit)
        for faculty_id, name, count in rows
    ]


def least_loaded(
    workloads: list[FacultyWorkload],
    policy: CapacityPolicy,
    exclude: frozenset[str] = frozenset(),
) -> FacultyWorkload | None:
    """Pick the faculty member with room and the fewest mentees, skipping ``exclude``."""
    candidates = [
        item
        for item in workloads
        if item.faculty_id not in exclude and policy.has_room(item.student_count)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda item: (item.student_count, item.faculty_id))
