from gymbooking.models.member import Member, MembershipType
from gymbooking.models.course import Course
from gymbooking.models.registration import (
    CourseRegistration,
    RegistrationStatus,
    QuotaKind,
    ACTIVE_STATUSES
)
from gymbooking.models.quota import (
    WeeklyRegistrationCounter,
    MembershipCredit,
    CreditTransaction,
    CreditTransactionType
)
from gymbooking.models.promotion import WaitlistPromotionEvent, PromotionType
