import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.orm import Session

from gymbooking.core.timezone_utils import utc_now
from gymbooking.db.session import get_db
from gymbooking.schemas.course import CourseStats, CourseParticipants
from gymbooking.schemas.registration import (
    CancellationResult,
    Eligibility,
    RegistrationOutcome,
    RegistrationRequest,
    RegistrationResult
)
from gymbooking.services.exceptions import RegistrationError
from gymbooking.services.registration import RegistrationService, get_registration_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(exc: RegistrationError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.get("/{course_id}/stats", response_model=CourseStats)
def read_course_stats(
    course_id: int = Path(..., gt=0, description="ID of the course"),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Get live capacity counters of a course.

    Counts are always derived from the registrations, so
    `registered_count` never exceeds `capacity`.
    """
    try:
        return service.get_course_stats(db, course_id)
    except RegistrationError as e:
        raise _http_error(e)


@router.get("/{course_id}/participants", response_model=CourseParticipants)
def read_course_participants(
    course_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    List registered members and the waitlist (with 1-based positions),
    both in arrival order.
    """
    try:
        return service.list_participants(db, course_id)
    except RegistrationError as e:
        raise _http_error(e)


@router.get("/{course_id}/eligibility", response_model=Eligibility)
def read_registration_eligibility(
    course_id: int = Path(..., gt=0),
    member_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Check, without side effects, whether a member may register right now.
    """
    try:
        return service.check_eligibility(db, member_id, course_id, utc_now())
    except RegistrationError as e:
        raise _http_error(e)


@router.post("/{course_id}/registrations", response_model=RegistrationResult, status_code=status.HTTP_201_CREATED)
def register_for_course(
    response: Response,
    request: RegistrationRequest,
    course_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Register a member for a course.

    Returns 201 with outcome REGISTERED or WAITLISTED, or 200 with
    ALREADY_REGISTERED when the member already holds an active registration.

    Errors:
    - 404 COURSE_NOT_FOUND / MEMBER_NOT_FOUND
    - 400 COURSE_CANCELLED, DEADLINE_PASSED, QUOTA_EXCEEDED, NO_CREDITS_AVAILABLE
    """
    try:
        result = service.register(db, request.member_id, course_id, utc_now())
    except RegistrationError as e:
        logger.info(f"Inscripción rechazada (curso {course_id}, socio {request.member_id}): {e.code}")
        raise _http_error(e)

    if result.outcome == RegistrationOutcome.ALREADY_REGISTERED:
        response.status_code = status.HTTP_200_OK
    return result


@router.delete("/{course_id}/registrations/{member_id}", response_model=CancellationResult)
def cancel_course_registration(
    course_id: int = Path(..., gt=0),
    member_id: int = Path(..., gt=0),
    db: Session = Depends(get_db),
    service: RegistrationService = Depends(get_registration_service)
):
    """
    Cancel a member's registration or waitlist entry.

    Cancelling a non-existent registration returns NOT_REGISTERED. When a
    registered slot is freed, the earliest waitlisted member is promoted.
    """
    try:
        return service.cancel(db, member_id, course_id, utc_now())
    except RegistrationError as e:
        logger.info(f"Cancelación rechazada (curso {course_id}, socio {member_id}): {e.code}")
        raise _http_error(e)
