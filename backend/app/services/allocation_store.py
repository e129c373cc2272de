from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateAllocationError,
    FacultyAtCapacityError,
    InvalidAllocationStateError,
    StudentAlreadyMentoredError,
)
from app.models.allocation import Allocation, AllocationStatus, FacultyLoad

logger = logging.getLogger(__name__)


class AllocationStore:
    """Row-level access to allocations and the per-faculty load counters.

    Mutating methods run inside the caller's transaction; the caller commits.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, allocation_id: str) -> Allocation | None:
        return self.db.get(Allocation, allocation_id)

    def list_allocations(
        self,
        *,
        faculty_id: str | None = None,
        student_id: str | None = None,
        status: AllocationStatus | None = None,
    ) -> list[Allocation]:
        stmt = select(Allocation)
        if faculty_id is not None:
            stmt = stmt.where(Allocation.faculty_id == faculty_id)
        if student_id is not None:
            stmt = stmt.where(Allocation.student_id == student_id)
        if status is not None:
            stmt = stmt.where(Allocation.status == status)
        stmt = stmt.order_by(Allocation.created_at.asc(), Allocation.id.asc())
        return list(self.db.execute(stmt).scalars())

    def count_active(self, faculty_id: str) -> int:
        return self.db.execute(
            select(func.count(Allocation.id)).where(
                Allocation.faculty_id == faculty_id,
                Allocation.status == AllocationStatus.active,
            )
        ).scalar_one()

    def active_allocation_for_student(self, student_id: str) -> Allocation | None:
        return self.db.execute(
            select(Allocation).where(
                Allocation.student_id == student_id,
                Allocation.status == AllocationStatus.active,
            )
        ).scalar_one_or_none()

    def find_pair(self, faculty_id: str, student_id: str) -> Allocation | None:
        return self.db.execute(
            select(Allocation).where(
                Allocation.faculty_id == faculty_id,
                Allocation.student_id == student_id,
            )
        ).scalar_one_or_none()

    def _ensure_load_row(self, faculty_id: str, capacity: int) -> None:
        active_count = (
            select(func.count(Allocation.id))
            .where(
                Allocation.faculty_id == faculty_id,
                Allocation.status == AllocationStatus.active,
            )
            .scalar_subquery()
        )
        values = {"faculty_id": faculty_id, "active_count": active_count, "capacity": capacity}
        # Supported backends are PostgreSQL and SQLite; both take ON CONFLICT DO NOTHING.
        insert = postgresql_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        self.db.execute(
            insert(FacultyLoad).values(**values).on_conflict_do_nothing(index_elements=["faculty_id"])
        )

    def reserve_slot(self, faculty_id: str, capacity: int) -> bool:
        """Take one mentoring slot if the faculty member is below ``capacity``.

        The count check and the increment are a single conditional UPDATE, so
        concurrent writers for the same faculty serialize on its load row.
        """
        self._ensure_load_row(faculty_id, capacity)
        result = self.db.execute(
            update(FacultyLoad)
            .where(FacultyLoad.faculty_id == faculty_id, FacultyLoad.active_count < capacity)
            .values(active_count=FacultyLoad.active_count + 1, capacity=capacity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_slot(self, faculty_id: str) -> None:
        self.db.execute(
            update(FacultyLoad)
            .where(FacultyLoad.faculty_id == faculty_id, FacultyLoad.active_count > 0)
            .values(active_count=FacultyLoad.active_count - 1)
            .execution_options(synchronize_session=False)
        )

    def create_allocation(self, faculty_id: str, student_id: str, *, capacity: int) -> Allocation:
        try:
            if not self.reserve_slot(faculty_id, capacity):
                raise FacultyAtCapacityError(faculty_id, capacity)
            allocation = Allocation(
                faculty_id=faculty_id,
                student_id=student_id,
                status=AllocationStatus.active,
            )
            self.db.add(allocation)
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning(
                "Allocation write for faculty %s / student %s hit a constraint: %s",
                faculty_id,
                student_id,
                exc.orig,
            )
            raise self._classify_conflict(faculty_id, student_id) from exc
        return allocation

    def _classify_conflict(self, faculty_id: str, student_id: str) -> Exception:
        # Runs after rollback, so it sees the rows committed by the competing writer.
        if self.find_pair(faculty_id, student_id) is not None:
            return DuplicateAllocationError(faculty_id, student_id)
        existing = self.active_allocation_for_student(student_id)
        if existing is not None:
            return StudentAlreadyMentoredError(student_id, existing.faculty_id)
        return ConcurrencyConflictError(
            "Allocation lost a concurrent write; retry against fresh data",
            details={"faculty_id": faculty_id, "student_id": student_id},
        )

    def complete_allocation(self, allocation: Allocation) -> None:
        result = self.db.execute(
            update(Allocation)
            .where(Allocation.id == allocation.id, Allocation.status == AllocationStatus.active)
            .values(status=AllocationStatus.completed, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidAllocationStateError(allocation.id, AllocationStatus.completed.value)
        self.release_slot(allocation.faculty_id)
