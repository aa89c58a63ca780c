from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from gymbooking.models.member import MembershipType


class QuotaStatus(BaseModel):
    member_id: int
    membership_type: MembershipType
    policy: str = Field(..., description="unrestricted | weekly_limit | credits")
    weekly_limit: Optional[int] = None
    week_start: Optional[datetime] = None
    registrations_this_week: Optional[int] = None
    remaining_this_week: Optional[int] = None
    credits_remaining: Optional[int] = None
    credits_total: Optional[int] = None
