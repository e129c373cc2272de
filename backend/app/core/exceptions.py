class AppError(Exception):
    """Base class for all application exceptions."""
    code = "internal_error"

    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = {"code": self.code, **(details or {})}
        super().__init__(self.message)


class InvalidRequestError(AppError):
    """Raised when a request is missing required values."""
    code = "invalid_request"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class StudentAlreadyMentoredError(AppError):
    """Raised when the student already holds an active allocation."""
    code = "student_already_mentored"

    def __init__(self, student_id: str, faculty_id: str | None = None):
        super().__init__(
            f"Student {student_id} already has an active faculty mentor",
            status_code=409,
            details={"student_id": student_id, "faculty_id": faculty_id},
        )


class DuplicateAllocationError(AppError):
    """Raised when the faculty/student pair has already been allocated once."""
    code = "duplicate_allocation"

    def __init__(self, faculty_id: str, student_id: str):
        super().__init__(
            f"Student {student_id} has already been allocated to faculty {faculty_id}",
            status_code=409,
            details={"faculty_id": faculty_id, "student_id": student_id},
        )


class FacultyAtCapacityError(AppError):
    """Raised when the faculty member has no free mentoring slot."""
    code = "faculty_at_capacity"

    def __init__(self, faculty_id: str, capacity: int):
        super().__init__(
            f"Faculty {faculty_id} already supervises the maximum of {capacity} students",
            status_code=409,
            details={"faculty_id": faculty_id, "capacity": capacity},
        )


class NoCapacityAvailableError(AppError):
    """Raised when auto-allocation finds no faculty member with room."""
    code = "no_capacity_available"

    def __init__(self, student_id: str):
        super().__init__(
            "Could not allocate student. All faculty members may be at maximum capacity.",
            status_code=400,
            details={"student_id": student_id},
        )


class ConcurrencyConflictError(AppError):
    """Raised when a concurrent write won the race for the same rows."""
    code = "concurrency_conflict"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)


class InvalidAllocationStateError(AppError):
    """Raised when an allocation cannot move to the requested status."""
    code = "invalid_allocation_state"

    def __init__(self, allocation_id: str, status: str):
        super().__init__(
            f"Allocation {allocation_id} is {status} and cannot be completed",
            status_code=409,
            details={"allocation_id": allocation_id, "status": status},
        )


class StorageFailureError(AppError):
    """Raised when the database rejects or loses a request."""
    code = "storage_failure"

    def __init__(self, message: str = "Allocation storage is unavailable"):
        super().__init__(message, status_code=500)
