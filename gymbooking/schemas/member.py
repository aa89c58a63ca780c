from typing import Optional
from pydantic import BaseModel, Field

from gymbooking.models.member import MembershipType


class MemberBase(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    membership_type: MembershipType = MembershipType.BASIC_MEMBER


class MemberCreate(MemberBase):
    pass
