from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.exceptions import (
    AppError,
    ConcurrencyConflictError,
    DuplicateAllocationError,
    FacultyAtCapacityError,
    NoCapacityAvailableError,
    ResourceNotFoundError,
    StorageFailureError,
    StudentAlreadyMentoredError,
)
from app.models.allocation import Allocation, AllocationStatus
from app.models.user import User
from app.services.allocation_store import AllocationStore
from app.services.roster import RosterProvider
from app.services.workload import CapacityPolicy, FacultyWorkload, faculty_workloads, least_loaded

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (FacultyAtCapacityError, ConcurrencyConflictError)


@dataclass(frozen=True)
class AutoAllocationResult:
    allocation: Allocation
    chosen_faculty_id: str


@dataclass(frozen=True)
class BulkAllocationItem:
    student_id: str
    outcome: str
    faculty_id: str | None = None
    message: str | None = None


@dataclass
class BulkAllocationResult:
    details: list[BulkAllocationItem] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.details if item.outcome == "allocated")

    @property
    def failed_count(self) -> int:
        return len(self.details) - self.success_count


class AllocationService:
    """Assigns students to faculty mentors under a per-faculty capacity ceiling.

    ``allocate`` is the only path that writes allocation rows; the auto and
    bulk paths choose a faculty member and delegate to it. Each allocation
    attempt commits or rolls back its own transaction.
    """

    def __init__(self, db: Session, settings: Settings) -> None:
        self.db = db
        self.store = AllocationStore(db)
        self.roster = RosterProvider(db)
        self.policy = CapacityPolicy(settings.allocation_capacity_limit)
        self.max_attempts = settings.allocation_max_attempts

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Allocation storage operation failed")
            raise StorageFailureError() from exc

    @contextmanager
    def _reading(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Allocation storage read failed")
            raise StorageFailureError() from exc

    def list_allocations(
        self,
        *,
        faculty_id: str | None = None,
        student_id: str | None = None,
        status: AllocationStatus | None = None,
    ) -> list[Allocation]:
        with self._reading():
            return self.store.list_allocations(faculty_id=faculty_id, student_id=student_id, status=status)

    def unallocated_students(self) -> list[User]:
        with self._reading():
            return self.roster.unallocated_students()

    def workloads(self) -> list[FacultyWorkload]:
        with self._reading():
            return faculty_workloads(self.db, self.policy)

    def users_by_id(self, user_ids: Iterable[str]) -> dict[str, User]:
        with self._reading():
            return self.roster.users_by_id(user_ids)

    def count_active(self, faculty_id: str) -> int:
        with self._reading():
            return self.store.count_active(faculty_id)

    def mentor_for_student(self, student_id: str) -> User | None:
        with self._reading():
            self.roster.get_student(student_id)
            allocation = self.store.active_allocation_for_student(student_id)
            if allocation is None:
                return None
            return self.db.get(User, allocation.faculty_id)

    def allocate(self, faculty_id: str, student_id: str) -> Allocation:
        with self._transaction():
            faculty = self.roster.get_faculty(faculty_id)
            student = self.roster.get_student(student_id)

            existing = self.store.active_allocation_for_student(student.id)
            if existing is not None:
                raise StudentAlreadyMentoredError(student.id, existing.faculty_id)
            if self.store.find_pair(faculty.id, student.id) is not None:
                raise DuplicateAllocationError(faculty.id, student.id)
            if not self.policy.has_room(self.store.count_active(faculty.id)):
                raise FacultyAtCapacityError(faculty.id, self.policy.limit)

            allocation = self.store.create_allocation(faculty.id, student.id, capacity=self.policy.limit)

        with self._reading():
            self.db.refresh(allocation)
        logger.info("Allocated student %s to faculty %s", allocation.student_id, allocation.faculty_id)
        return allocation

    def auto_allocate(self, student_id: str) -> AutoAllocationResult:
        with self._reading():
            student = self.roster.get_student(student_id)
            existing = self.store.active_allocation_for_student(student.id)
            if existing is not None:
                raise StudentAlreadyMentoredError(student.id, existing.faculty_id)
            student_id = student.id
            # A faculty/student pair is unique, so former mentors are not candidates.
            former_mentors = frozenset(
                item.faculty_id for item in self.store.list_allocations(student_id=student_id)
            )

        last_error: AppError | None = None
        for attempt in range(1, self.max_attempts + 1):
            candidate = least_loaded(self.workloads(), self.policy, exclude=former_mentors)
            if candidate is None:
                raise NoCapacityAvailableError(student_id)
            try:
                allocation = self.allocate(candidate.faculty_id, student_id)
            except RETRYABLE_ERRORS as exc:
                logger.warning(
                    "Auto-allocation attempt %d/%d for student %s lost faculty %s: %s",
                    attempt,
                    self.max_attempts,
                    student_id,
                    candidate.faculty_id,
                    exc.message,
                )
                last_error = exc
                continue
            return AutoAllocationResult(allocation=allocation, chosen_faculty_id=candidate.faculty_id)

        if least_loaded(self.workloads(), self.policy, exclude=former_mentors) is None:
            raise NoCapacityAvailableError(student_id)
        raise last_error

    def bulk_allocate(self) -> BulkAllocationResult:
        """Auto-allocate every student without an active mentor.

        Each student is committed independently; a failure is recorded and the
        loop moves on without undoing earlier allocations.
        """
        with self._reading():
            student_ids = [student.id for student in self.roster.unallocated_students()]

        result = BulkAllocationResult()
        for student_id in student_ids:
            try:
                outcome = self.auto_allocate(student_id)
            except AppError as exc:
                result.details.append(
                    BulkAllocationItem(student_id=student_id, outcome=exc.code, message=exc.message)
                )
                continue
            result.details.append(
                BulkAllocationItem(
                    student_id=student_id,
                    outcome="allocated",
                    faculty_id=outcome.chosen_faculty_id,
                )
            )

        logger.info(
            "Bulk allocation finished: %d allocated, %d failed",
            result.success_count,
            result.failed_count,
        )
        return result

    def complete_allocation(self, allocation_id: str) -> Allocation:
        with self._transaction():
            allocation = self.store.get(allocation_id)
            if allocation is None:
                raise ResourceNotFoundError("Allocation", allocation_id)
            self.store.complete_allocation(allocation)

        with self._reading():
            self.db.refresh(allocation)
        logger.info("Completed allocation %s for faculty %s", allocation.id, allocation.faculty_id)
        return allocation
