from gymbooking.schemas.member import MemberCreate
from gymbooking.schemas.course import CourseCreate, CourseStats, Participant, CourseParticipants
from gymbooking.schemas.registration import (
    RegistrationOutcome,
    CancellationOutcome,
    EligibilityReason,
    RegistrationRequest,
    RegistrationResult,
    CancellationResult,
    Eligibility,
    MemberRegistration
)
from gymbooking.schemas.credits import (
    CreditAdjustmentRequest,
    CreditBalance,
    CreditAdjustmentResult,
    CreditTransactionOut
)
from gymbooking.schemas.quota import QuotaStatus
from gymbooking.schemas.worker import WaitlistSweepResult, PromotionDispatchResult
