from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from gymbooking.models.quota import CreditTransactionType


class CreditAdjustmentRequest(BaseModel):
    amount: int = Field(..., description="Créditos a abonar (positivo) o descontar (negativo)")
    description: Optional[str] = Field(None, max_length=500)
    created_by: Optional[str] = Field(None, max_length=255)

    @field_validator('amount')
    @classmethod
    def amount_not_zero(cls, v):
        if v == 0:
            raise ValueError("amount no puede ser 0")
        return v


class CreditBalance(BaseModel):
    member_id: int
    credits_remaining: int
    credits_total: int
    last_recharged_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreditAdjustmentResult(BaseModel):
    credits: CreditBalance
    message: str


class CreditTransactionOut(BaseModel):
    id: int
    member_id: int
    amount: int
    transaction_type: CreditTransactionType
    description: Optional[str] = None
    balance_after: int
    course_id: Optional[int] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
