from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session

from gymbooking.core.timezone_utils import utc_now
from gymbooking.db.session import get_db
from gymbooking.schemas.credits import (
    CreditAdjustmentRequest,
    CreditAdjustmentResult,
    CreditTransactionOut
)
from gymbooking.schemas.quota import QuotaStatus
from gymbooking.schemas.registration import MemberRegistration
from gymbooking.services.exceptions import RegistrationError
from gymbooking.services.registration import RegistrationService, get_registration_service

router = APIRouter()


@router.get("/{member_id}/registrations", response_model=List[MemberRegistration])
def read_member_registrations(
    member_id: int = Path(..., gt=0),
    include_cancelled: bool = Query(False),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    List a member's registrations, newest course first.
    """
    try:
        return service.list_member_registrations(db, member_id, include_cancelled=include_cancelled)
    except RegistrationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/{member_id}/quota", response_model=QuotaStatus)
def read_member_quota(
    member_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Get the member's quota: weekly usage for Basic Members, credit balance
    for 10er Karte holders, nothing for unrestricted memberships.
    """
    try:
        return service.get_quota_status(db, member_id, utc_now())
    except RegistrationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/{member_id}/credits/transactions", response_model=List[CreditTransactionOut])
def read_credit_transactions(
    member_id: int = Path(..., gt=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Credit movements of a member, newest first.
    """
    try:
        return service.list_credit_transactions(db, member_id, skip=skip, limit=limit)
    except RegistrationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{member_id}/credits", response_model=CreditAdjustmentResult, status_code=status.HTTP_200_OK)
def adjust_member_credits(
    request: CreditAdjustmentRequest,
    member_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Recharge (positive amount) or deduct (negative amount) 10er Karte credits.
    """
    try:
        return service.adjust_credits(
            db,
            member_id,
            request.amount,
            utc_now(),
            description=request.description,
            created_by=request.created_by
        )
    except RegistrationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
