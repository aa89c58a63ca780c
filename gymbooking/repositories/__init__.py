from gymbooking.repositories.member import member_repository, MemberRepository
from gymbooking.repositories.course import course_repository, CourseRepository
from gymbooking.repositories.registration import registration_repository, RegistrationRepository
from gymbooking.repositories.quota import quota_repository, QuotaRepository
from gymbooking.repositories.promotion_event import promotion_event_repository, PromotionEventRepository
