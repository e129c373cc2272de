from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_allocation_service
from app.core.exceptions import InvalidRequestError, ResourceNotFoundError
from app.models.allocation import AllocationStatus
from app.schemas.allocation import (
    AllocationCreate,
    AllocationOut,
    AllocationWithStudentOut,
    AutoAllocateOut,
    BulkAllocateOut,
    BulkAllocationItemOut,
    BulkAllocationSummaryOut,
    FacultyWorkloadOut,
    MentorOut,
    StudentSummaryOut,
    UnallocatedStudentOut,
)
from app.services.allocation import AllocationService

router = APIRouter()


@router.get("", response_model=list[AllocationWithStudentOut])
def list_allocations(
    faculty_id: str | None = Query(default=None, alias="facultyId"),
    student_id: str | None = Query(default=None, alias="studentId"),
    allocation_status: AllocationStatus | None = Query(default=None, alias="status"),
    service: AllocationService = Depends(get_allocation_service),
) -> list[AllocationWithStudentOut]:
    allocations = service.list_allocations(
        faculty_id=faculty_id,
        student_id=student_id,
        status=allocation_status,
    )
    students = service.users_by_id(item.student_id for item in allocations)
    items: list[AllocationWithStudentOut] = []
    for allocation in allocations:
        student = students.get(allocation.student_id)
        items.append(
            AllocationWithStudentOut(
                **AllocationOut.model_validate(allocation).model_dump(),
                student=StudentSummaryOut.model_validate(student) if student is not None else None,
            )
        )
    return items


@router.get("/unallocated-students", response_model=list[UnallocatedStudentOut])
def list_unallocated_students(
    service: AllocationService = Depends(get_allocation_service),
) -> list[UnallocatedStudentOut]:
    return service.unallocated_students()


@router.get("/faculty-workloads", response_model=list[FacultyWorkloadOut])
def list_faculty_workloads(
    service: AllocationService = Depends(get_allocation_service),
) -> list[FacultyWorkloadOut]:
    return [FacultyWorkloadOut.model_validate(item) for item in service.workloads()]


@router.get("/mentor/{student_id}", response_model=MentorOut)
def get_student_mentor(
    student_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> MentorOut:
    mentor = service.mentor_for_student(student_id)
    if mentor is None:
        raise ResourceNotFoundError("Mentor for student", student_id)
    return mentor


@router.post("", response_model=AllocationOut, status_code=status.HTTP_201_CREATED)
def create_allocation(
    payload: AllocationCreate,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationOut:
    if not payload.faculty_id or not payload.student_id:
        raise InvalidRequestError("Faculty ID and Student ID are required")
    return service.allocate(payload.faculty_id, payload.student_id)


@router.post("/auto-allocate/{student_id}", response_model=AutoAllocateOut)
def auto_allocate_student(
    student_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> AutoAllocateOut:
    outcome = service.auto_allocate(student_id)
    return AutoAllocateOut(
        message="Student allocated successfully",
        allocation=AllocationOut.model_validate(outcome.allocation),
    )


@router.post("/bulk-allocate", response_model=BulkAllocateOut)
def bulk_allocate_students(
    service: AllocationService = Depends(get_allocation_service),
) -> BulkAllocateOut:
    result = service.bulk_allocate()
    return BulkAllocateOut(
        message=(
            f"Successfully allocated {result.success_count} students. "
            f"Failed to allocate {result.failed_count} students."
        ),
        result=BulkAllocationSummaryOut(
            success=result.success_count,
            failed=result.failed_count,
            details=[BulkAllocationItemOut.model_validate(item) for item in result.details],
        ),
    )


@router.post("/{allocation_id}/complete", response_model=AllocationOut)
def complete_allocation(
    allocation_id: str,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationOut:
    return service.complete_allocation(allocation_id)
