from gymbooking.models.member import Member
from gymbooking.repositories.base import BaseRepository
from gymbooking.schemas.member import MemberCreate


class MemberRepository(BaseRepository[Member, MemberCreate]):
    pass


member_repository = MemberRepository(Member)
