import enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from gymbooking.models.registration import RegistrationStatus


class RegistrationOutcome(str, enum.Enum):
    REGISTERED = "REGISTERED"
    WAITLISTED = "WAITLISTED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"


class CancellationOutcome(str, enum.Enum):
    CANCELLED = "CANCELLED"
    NOT_REGISTERED = "NOT_REGISTERED"


class EligibilityReason(str, enum.Enum):
    COURSE_CANCELLED = "COURSE_CANCELLED"
    DEADLINE_PASSED = "DEADLINE_PASSED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    NO_CREDITS_AVAILABLE = "NO_CREDITS_AVAILABLE"


class RegistrationRequest(BaseModel):
    member_id: int = Field(..., description="ID del socio que se inscribe")


class RegistrationResult(BaseModel):
    outcome: RegistrationOutcome
    course_id: int
    member_id: int
    registration_id: Optional[int] = None
    status: Optional[RegistrationStatus] = None
    waitlist_position: Optional[int] = Field(None, description="Solo si quedó en lista de espera")


class CancellationResult(BaseModel):
    outcome: CancellationOutcome
    course_id: int
    member_id: int
    promoted_member_id: Optional[int] = Field(None, description="Socio promovido desde la lista de espera")


class Eligibility(BaseModel):
    """Resultado de solo lectura de la comprobación previa a la inscripción."""
    course_id: int
    member_id: int
    can_register: bool
    reason: Optional[EligibilityReason] = None
    minutes_late: Optional[int] = None
    waitlist_expected: bool = False


class MemberRegistration(BaseModel):
    registration_id: int
    course_id: int
    course_title: str
    start_at: datetime
    end_at: datetime
    status: RegistrationStatus
    enqueued_at: datetime
    course_is_cancelled: bool = False
