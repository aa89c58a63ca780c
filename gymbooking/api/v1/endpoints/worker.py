"""
Worker Endpoints - batch operations for external cron or queue workers

Same jobs the in-process scheduler runs, exposed so an external worker
can trigger them on demand.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from gymbooking.core.timezone_utils import utc_now
from gymbooking.db.session import get_db
from gymbooking.schemas.worker import WaitlistSweepResult, PromotionDispatchResult
from gymbooking.services.registration import RegistrationService, get_registration_service

# Configure logger
logger = logging.getLogger(__name__)

# Create router with prefix /worker
router = APIRouter(prefix="/worker", tags=["worker"])


@router.post("/process-waitlists", response_model=WaitlistSweepResult)
def process_waitlists(
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Promote waitlisted members into free slots of all upcoming courses.

    Returns:
        WaitlistSweepResult: courses touched and members promoted
    """
    logger.info("Worker: barrido de listas de espera solicitado")
    return service.process_waitlists(db, utc_now())


@router.post("/dispatch-promotion-events", response_model=PromotionDispatchResult)
def dispatch_promotion_events(
    limit: Optional[int] = Query(None, description="Batch size, clamped to 1..100"),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Deliver pending waitlist promotion notifications, oldest first.

    Returns:
        PromotionDispatchResult: events attempted and events delivered
    """
    logger.info(f"Worker: despacho de eventos de promoción (limit={limit})")
    return service.dispatch_pending_promotion_events(db, limit=limit)
