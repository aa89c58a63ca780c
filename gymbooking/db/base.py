# Importar todos los modelos para que Alembic y create_all los detecten
from gymbooking.db.base_class import Base  # noqa
from gymbooking.models.member import Member  # noqa
from gymbooking.models.course import Course  # noqa
from gymbooking.models.registration import CourseRegistration  # noqa
from gymbooking.models.quota import (
    WeeklyRegistrationCounter,
    MembershipCredit,
    CreditTransaction
)  # noqa
from gymbooking.models.promotion import WaitlistPromotionEvent  # noqa
