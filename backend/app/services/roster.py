from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError
from app.models.allocation import Allocation, AllocationStatus
from app.models.user import User, UserRole


class RosterProvider:
    """Read-only view over student and faculty accounts."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _get_with_role(self, user_id: str, role: UserRole) -> User | None:
        return self.db.execute(
            select(User).where(User.id == user_id, User.role == role, User.is_active.is_(True))
        ).scalar_one_or_none()

    def get_student(self, student_id: str) -> User:
        student = self._get_with_role(student_id, UserRole.student)
        if student is None:
            raise ResourceNotFoundError("Student", student_id)
        return student

    def get_faculty(self, faculty_id: str) -> User:
        faculty = self._get_with_role(faculty_id, UserRole.faculty)
        if faculty is None:
            raise ResourceNotFoundError("Faculty", faculty_id)
        return faculty

    def users_by_id(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        users = self.db.execute(select(User).where(User.id.in_(ids))).scalars()
        return {user.id: user for user in users}

    def unallocated_students(self) -> list[User]:
        has_active_mentor = exists().where(
            Allocation.student_id == User.id,
            Allocation.status == AllocationStatus.active,
        )
        return list(
            self.db.execute(
                select(User)
                .where(User.role == UserRole.student, User.is_active.is_(True), ~has_active_mentor)
                .order_by(User.name.asc(), User.id.asc())
            ).scalars()
        )
