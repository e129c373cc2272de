import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    DuplicateAllocationError,
    FacultyAtCapacityError,
    InvalidAllocationStateError,
    NoCapacityAvailableError,
    ResourceNotFoundError,
    StorageFailureError,
    StudentAlreadyMentoredError,
)
from app.models.allocation import Allocation, AllocationStatus, FacultyLoad
from app.models.user import UserRole


def fill_faculty(service, make_user, faculty_id, count):
    for _ in range(count):
        service.allocate(faculty_id, make_user(UserRole.student))


def active_counts(service):
    return {item.faculty_id: item.student_count for item in service.workloads()}


def test_manual_allocation_creates_active_row(service, make_user):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)

    allocation = service.allocate(faculty, student)

    assert allocation.faculty_id == faculty
    assert allocation.student_id == student
    assert allocation.status == AllocationStatus.active
    assert allocation.created_at is not None
    assert service.count_active(faculty) == 1


def test_manual_allocation_rejects_full_faculty(service, make_user):
    faculty = make_user(UserRole.faculty)
    fill_faculty(service, make_user, faculty, 10)

    with pytest.raises(FacultyAtCapacityError):
        service.allocate(faculty, make_user(UserRole.student))
    assert service.count_active(faculty) == 10


def test_manual_allocation_requires_matching_roles(service, make_user):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)

    with pytest.raises(ResourceNotFoundError) as missing_faculty:
        service.allocate(student, student)
    assert missing_faculty.value.details["resource_type"] == "Faculty"

    with pytest.raises(ResourceNotFoundError) as missing_student:
        service.allocate(faculty, faculty)
    assert missing_student.value.details["resource_type"] == "Student"

    with pytest.raises(ResourceNotFoundError):
        service.allocate(faculty, "no-such-student")


def test_student_cannot_have_two_active_mentors(service, make_user):
    first = make_user(UserRole.faculty)
    second = make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    service.allocate(first, student)

    with pytest.raises(StudentAlreadyMentoredError) as exc_info:
        service.allocate(second, student)
    assert exc_info.value.details["faculty_id"] == first
    assert service.count_active(second) == 0


def test_repeated_manual_allocation_is_rejected(service, make_user):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)

    service.allocate(faculty, student)
    with pytest.raises(StudentAlreadyMentoredError):
        service.allocate(faculty, student)
    assert len(service.list_allocations(student_id=student)) == 1


def test_completed_pair_cannot_be_recreated(service, make_user):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    allocation = service.allocate(faculty, student)
    service.complete_allocation(allocation.id)

    with pytest.raises(DuplicateAllocationError):
        service.allocate(faculty, student)


def test_completion_releases_capacity(service_factory, make_user):
    service = service_factory(allocation_capacity_limit=1)
    faculty = make_user(UserRole.faculty)
    first = make_user(UserRole.student)
    allocation = service.allocate(faculty, first)

    with pytest.raises(FacultyAtCapacityError):
        service.allocate(faculty, make_user(UserRole.student))

    completed = service.complete_allocation(allocation.id)
    assert completed.status == AllocationStatus.completed
    assert completed.updated_at is not None

    service.allocate(faculty, make_user(UserRole.student))
    assert service.count_active(faculty) == 1


def test_complete_rejects_unknown_and_finished_allocations(service, make_user):
    allocation = service.allocate(make_user(UserRole.faculty), make_user(UserRole.student))
    service.complete_allocation(allocation.id)

    with pytest.raises(InvalidAllocationStateError):
        service.complete_allocation(allocation.id)
    with pytest.raises(ResourceNotFoundError):
        service.complete_allocation("missing")


def test_auto_allocation_picks_least_loaded_faculty(service, make_user):
    busy = make_user(UserRole.faculty, user_id="f1")
    idle = make_user(UserRole.faculty, user_id="f2")
    fill_faculty(service, make_user, busy, 9)

    result = service.auto_allocate(make_user(UserRole.student))

    assert result.chosen_faculty_id == idle
    assert result.allocation.faculty_id == idle


def test_auto_allocation_breaks_ties_by_faculty_id(service, make_user):
    make_user(UserRole.faculty, user_id="f-b")
    make_user(UserRole.faculty, user_id="f-a")

    result = service.auto_allocate(make_user(UserRole.student))
    assert result.chosen_faculty_id == "f-a"


def test_auto_allocation_without_room_fails(service_factory, make_user):
    service = service_factory(allocation_capacity_limit=1)
    faculty = make_user(UserRole.faculty)
    service.allocate(faculty, make_user(UserRole.student))

    with pytest.raises(NoCapacityAvailableError):
        service.auto_allocate(make_user(UserRole.student))


def test_auto_allocation_rejects_mentored_student_without_retry(service, make_user):
    faculty = make_user(UserRole.faculty)
    make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    service.allocate(faculty, student)

    with pytest.raises(StudentAlreadyMentoredError):
        service.auto_allocate(student)


def test_auto_allocation_skips_former_mentor(service, make_user):
    former = make_user(UserRole.faculty, user_id="f1")
    other = make_user(UserRole.faculty, user_id="f2")
    student = make_user(UserRole.student)
    allocation = service.allocate(former, student)
    service.allocate(other, make_user(UserRole.student))
    service.complete_allocation(allocation.id)

    result = service.auto_allocate(student)

    assert result.chosen_faculty_id == other
    assert service.mentor_for_student(student).id == other


def test_auto_allocation_without_room_outside_former_mentor(service_factory, make_user):
    service = service_factory(allocation_capacity_limit=1)
    former = make_user(UserRole.faculty, user_id="f1")
    other = make_user(UserRole.faculty, user_id="f2")
    student = make_user(UserRole.student)
    allocation = service.allocate(former, student)
    service.allocate(other, make_user(UserRole.student))
    service.complete_allocation(allocation.id)

    with pytest.raises(NoCapacityAvailableError):
        service.auto_allocate(student)
    assert service.count_active(former) == 0


def test_auto_allocation_reselects_after_losing_a_slot(service, make_user, monkeypatch):
    make_user(UserRole.faculty, user_id="f1")
    make_user(UserRole.faculty, user_id="f2")
    student = make_user(UserRole.student)

    original_allocate = service.allocate
    attempted: list[str] = []

    def racing_allocate(faculty_id, student_id):
        attempted.append(faculty_id)
        if len(attempted) == 1:
            raise FacultyAtCapacityError(faculty_id, service.policy.limit)
        return original_allocate(faculty_id, student_id)

    monkeypatch.setattr(service, "allocate", racing_allocate)
    result = service.auto_allocate(student)

    assert len(attempted) == 2
    assert result.allocation.student_id == student


def test_auto_allocation_gives_up_after_bounded_attempts(service_factory, make_user, monkeypatch):
    service = service_factory(allocation_max_attempts=2)
    make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    calls: list[str] = []

    def always_full(faculty_id, student_id):
        calls.append(faculty_id)
        raise FacultyAtCapacityError(faculty_id, service.policy.limit)

    monkeypatch.setattr(service, "allocate", always_full)

    with pytest.raises(FacultyAtCapacityError):
        service.auto_allocate(student)
    assert len(calls) == 2


def test_bulk_allocation_fills_least_loaded_faculty_first(service, make_user):
    first = make_user(UserRole.faculty, user_id="f1")
    second = make_user(UserRole.faculty, user_id="f2")
    fill_faculty(service, make_user, first, 8)
    pending = [make_user(UserRole.student) for _ in range(5)]

    result = service.bulk_allocate()

    assert result.success_count == 5
    assert result.failed_count == 0
    assert [item.student_id for item in result.details] == pending
    assert active_counts(service) == {first: 8, second: 5}


def test_bulk_allocation_balances_load(service, make_user):
    faculty = [make_user(UserRole.faculty) for _ in range(3)]
    for _ in range(7):
        make_user(UserRole.student)

    result = service.bulk_allocate()

    counts = active_counts(service)
    assert result.success_count == 7
    assert set(counts) == set(faculty)
    assert max(counts.values()) - min(counts.values()) <= 1


def test_bulk_allocation_keeps_earlier_successes_when_capacity_runs_out(service_factory, make_user):
    service = service_factory(allocation_capacity_limit=2)
    make_user(UserRole.faculty)
    make_user(UserRole.faculty)
    students = [make_user(UserRole.student) for _ in range(5)]

    result = service.bulk_allocate()

    assert result.success_count == 4
    assert result.failed_count == 1
    assert result.success_count + result.failed_count == len(students)
    failed = [item for item in result.details if item.outcome != "allocated"]
    assert failed[0].outcome == "no_capacity_available"
    assert failed[0].student_id == students[-1]
    assert len(service.list_allocations(status=AllocationStatus.active)) == 4
    assert service.unallocated_students()[0].id == students[-1]


def test_bulk_allocation_reassigns_students_after_completion(service, make_user):
    former = make_user(UserRole.faculty, user_id="f1")
    other = make_user(UserRole.faculty, user_id="f2")
    student = make_user(UserRole.student)
    allocation = service.allocate(former, student)
    service.allocate(other, make_user(UserRole.student))
    service.complete_allocation(allocation.id)

    result = service.bulk_allocate()

    assert result.success_count == 1
    assert result.failed_count == 0
    assert result.details[0].student_id == student
    assert result.details[0].outcome == "allocated"
    assert result.details[0].faculty_id == other


def test_bulk_allocation_with_nothing_to_do(service, make_user):
    make_user(UserRole.faculty)
    result = service.bulk_allocate()
    assert result.success_count == 0
    assert result.failed_count == 0
    assert result.details == []


def test_mentor_lookup(service, make_user):
    faculty = make_user(UserRole.faculty, name="Dr. Rao")
    student = make_user(UserRole.student)
    assert service.mentor_for_student(student) is None

    service.allocate(faculty, student)
    mentor = service.mentor_for_student(student)
    assert mentor.id == faculty
    assert mentor.name == "Dr. Rao"


def test_storage_errors_are_reported_not_swallowed(service, make_user, monkeypatch):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)

    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is gone"))

    monkeypatch.setattr(service.store, "count_active", broken)

    with pytest.raises(StorageFailureError) as exc_info:
        service.allocate(faculty, student)
    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert service.list_allocations() == []


def test_store_enforces_capacity_without_precheck(db, service, make_user):
    faculty = make_user(UserRole.faculty)
    first = make_user(UserRole.student)
    second = make_user(UserRole.student)

    service.store.create_allocation(faculty, first, capacity=1)
    db.commit()

    with pytest.raises(FacultyAtCapacityError):
        service.store.create_allocation(faculty, second, capacity=1)
    db.rollback()

    load = db.get(FacultyLoad, faculty)
    assert load.active_count == 1
    assert load.capacity == 1


def test_store_enforces_single_active_mentor(db, service, make_user):
    first = make_user(UserRole.faculty)
    second = make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    service.store.create_allocation(first, student, capacity=10)
    db.commit()

    with pytest.raises(StudentAlreadyMentoredError):
        service.store.create_allocation(second, student, capacity=10)

    assert db.get(FacultyLoad, second) is None
    rows = db.execute(select(Allocation).where(Allocation.student_id == student)).scalars().all()
    assert len(rows) == 1


def test_store_enforces_unique_pair(db, service, make_user):
    faculty = make_user(UserRole.faculty)
    student = make_user(UserRole.student)
    allocation = service.allocate(faculty, student)
    service.complete_allocation(allocation.id)

    with pytest.raises(DuplicateAllocationError):
        service.store.create_allocation(faculty, student, capacity=10)
    assert db.get(FacultyLoad, faculty).active_count == 0


def test_load_row_starts_from_existing_active_allocations(db, service, make_user):
    faculty = make_user(UserRole.faculty)
    for _ in range(2):
        db.add(Allocation(faculty_id=faculty, student_id=make_user(UserRole.student), status=AllocationStatus.active))
    db.commit()
    assert db.get(FacultyLoad, faculty) is None

    assert service.store.reserve_slot(faculty, 3) is True
    db.commit()
    assert db.get(FacultyLoad, faculty).active_count == 3
    assert service.store.reserve_slot(faculty, 3) is False
