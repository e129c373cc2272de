from app.models.allocation import Allocation, AllocationStatus, FacultyLoad  # noqa: F401
from app.models.user import User, UserRole  # noqa: F401
