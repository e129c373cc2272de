from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.allocation import AllocationStatus


class AllocationCreate(BaseModel):
    faculty_id: str | None = Field(default=None, alias="facultyId")
    student_id: str | None = Field(default=None, alias="studentId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("faculty_id", "student_id", mode="before")
    @classmethod
    def normalize_identifier(cls, value: object) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None


class StudentSummaryOut(BaseModel):
    id: str
    name: str
    email: str
    department: str | None = None

    model_config = {"from_attributes": True}


class UnallocatedStudentOut(BaseModel):
    id: str
    name: str
    email: str

    model_config = {"from_attributes": True}


class MentorOut(BaseModel):
    id: str
    name: str
    email: str
    department: str | None = None

    model_config = {"from_attributes": True}


class AllocationOut(BaseModel):
    id: str
    faculty_id: str = Field(serialization_alias="facultyId")
    student_id: str = Field(serialization_alias="studentId")
    status: AllocationStatus
    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")
    updated_at: datetime | None = Field(default=None, serialization_alias="updatedAt")

    model_config = {"from_attributes": True}


class AllocationWithStudentOut(AllocationOut):
    student: StudentSummaryOut | None = None


class FacultyWorkloadOut(BaseModel):
    faculty_id: str = Field(serialization_alias="facultyId")
    name: str
    student_count: int = Field(serialization_alias="studentCount")
    capacity: int
    utilization_percent: float = Field(serialization_alias="utilizationPercent")

    model_config = {"from_attributes": True}


class AutoAllocateOut(BaseModel):
    success: bool = True
    message: str
    allocation: AllocationOut


class BulkAllocationItemOut(BaseModel):
    student_id: str = Field(serialization_alias="studentId")
    outcome: str
    faculty_id: str | None = Field(default=None, serialization_alias="facultyId")
    message: str | None = None

    model_config = {"from_attributes": True}


class BulkAllocationSummaryOut(BaseModel):
    success: int
    failed: int
    details: list[BulkAllocationItemOut] = Field(default_factory=list)


class BulkAllocateOut(BaseModel):
    success: bool = True
    message: str
    result: BulkAllocationSummaryOut
