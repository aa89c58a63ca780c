"""
Cuotas por tipo de membresía.

Cada MembershipType se resuelve a una política:

- UnrestrictedPolicy: sin límite ni estado.
- WeeklyLimitPolicy: N inscripciones por semana natural (lunes 00:00, zona del gimnasio).
- CreditPolicy: una inscripción consume un crédito de la 10er Karte.

La reserva queda anotada en la propia inscripción (`quota_kind`,
`quota_week_start`) y la liberación usa esa anotación, no la membresía actual.
Nada aquí hace commit: reserva y escritura de la inscripción van en la misma
transacción del servicio.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gymbooking.core.config import get_settings
from gymbooking.core.timezone_utils import as_utc, week_start
from gymbooking.models.course import Course
from gymbooking.models.member import Member, MembershipType
from gymbooking.models.quota import CreditTransactionType
from gymbooking.models.registration import CourseRegistration, QuotaKind
from gymbooking.repositories.quota import quota_repository
from gymbooking.services.exceptions import (
    CapacityRaceDetected,
    NoCreditsAvailableError,
    QuotaExceededError,
    RegistrationError
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    kind: QuotaKind = QuotaKind.NONE
    week_start: Optional[datetime] = None


NO_RESERVATION = Reservation()


class QuotaPolicy:
    """Interfaz común de las políticas de cuota."""
    name = "unrestricted"

    def reserve(self, db: Session, member: Member, course: Course, now: datetime) -> Reservation:
        raise NotImplementedError

    def check(self, db: Session, member: Member, now: datetime) -> Optional[RegistrationError]:
        """Versión de solo lectura de `reserve`: devuelve el error que se lanzaría."""
        raise NotImplementedError

    def status(self, db: Session, member: Member, now: datetime) -> Dict:
        raise NotImplementedError


class UnrestrictedPolicy(QuotaPolicy):
    name = "unrestricted"

    def reserve(self, db, member, course, now):
        return NO_RESERVATION

    def check(self, db, member, now):
        return None

    def status(self, db, member, now):
        return {}


class WeeklyLimitPolicy(QuotaPolicy):
    name = "weekly_limit"

    def __init__(self, limit: int, gym_timezone: str):
        self.limit = limit
        self.gym_timezone = gym_timezone

    def _used(self, db: Session, member_id: int, week: datetime) -> int:
        counter = quota_repository.get_weekly_counter(db, member_id=member_id, week_start=week)
        return counter.registrations_count if counter else 0

    def reserve(self, db, member, course, now):
        week = week_start(now, self.gym_timezone)
        counter = quota_repository.get_weekly_counter(db, member_id=member.id, week_start=week)
        if counter is None:
            try:
                quota_repository.create_weekly_counter(db, member_id=member.id, week_start=week)
            except IntegrityError as e:
                # Otro proceso creó el contador de esta semana a la vez
                raise CapacityRaceDetected(course.id, member.id, original=e) from e

        if not quota_repository.increment_weekly_counter(
            db, member_id=member.id, week_start=week, limit=self.limit
        ):
            logger.info(f"Socio {member.id} alcanzó el límite semanal ({self.limit})")
            raise QuotaExceededError(self.limit)

        logger.debug(f"Cuota semanal reservada para socio {member.id} (semana {week.date()})")
        return Reservation(kind=QuotaKind.WEEKLY, week_start=week)

    def check(self, db, member, now):
        week = week_start(now, self.gym_timezone)
        if self._used(db, member.id, week) >= self.limit:
            return QuotaExceededError(self.limit)
        return None

    def status(self, db, member, now):
        week = week_start(now, self.gym_timezone)
        used = self._used(db, member.id, week)
        return {
            "weekly_limit": self.limit,
            "week_start": week,
            "registrations_this_week": used,
            "remaining_this_week": max(0, self.limit - used),
        }


class CreditPolicy(QuotaPolicy):
    name = "credits"

    def reserve(self, db, member, course, now):
        balance = quota_repository.change_credits(db, member_id=member.id, amount=-1)
        if balance is None:
            current = quota_repository.get_credit_balance(db, member_id=member.id)
            remaining = current.credits_remaining if current else 0
            logger.info(f"Socio {member.id} sin créditos disponibles ({remaining})")
            raise NoCreditsAvailableError(remaining)

        quota_repository.add_transaction(
            db,
            member_id=member.id,
            amount=-1,
            transaction_type=CreditTransactionType.COURSE_REGISTRATION,
            balance_after=balance.credits_remaining,
            description=f"Kursanmeldung: {course.title}",
            course_id=course.id,
            now=now
        )
        logger.debug(f"Crédito consumido por socio {member.id}, quedan {balance.credits_remaining}")
        return Reservation(kind=QuotaKind.CREDIT)

    def check(self, db, member, now):
        balance = quota_repository.get_credit_balance(db, member_id=member.id)
        if balance is None or balance.credits_remaining < 1:
            return NoCreditsAvailableError(balance.credits_remaining if balance else 0)
        return None

    def status(self, db, member, now):
        balance = quota_repository.get_credit_balance(db, member_id=member.id)
        return {
            "credits_remaining": balance.credits_remaining if balance else 0,
            "credits_total": balance.credits_total if balance else 0,
        }


class QuotaLedger:
    """Resuelve la política de cada socio y aplica reserva / liberación."""

    def __init__(self, weekly_limit: int, gym_timezone: str):
        self.gym_timezone = gym_timezone
        unrestricted = UnrestrictedPolicy()
        self._policies: Dict[MembershipType, QuotaPolicy] = {
            MembershipType.BASIC_MEMBER: WeeklyLimitPolicy(weekly_limit, gym_timezone),
            MembershipType.PREMIUM_MEMBER: unrestricted,
            MembershipType.TRAINER: unrestricted,
            MembershipType.ADMINISTRATOR: unrestricted,
            MembershipType.OPEN_GYM: unrestricted,
            MembershipType.WELLPASS: unrestricted,
            MembershipType.TEN_CARD: CreditPolicy(),
        }

    def policy_for(self, membership_type: MembershipType) -> QuotaPolicy:
        return self._policies[membership_type]

    def reserve(self, db: Session, member: Member, course: Course, now: datetime) -> Reservation:
        """
        Reservar cuota para una inscripción.

        Raises:
            QuotaExceededError: límite semanal alcanzado
            NoCreditsAvailableError: sin créditos
        """
        return self.policy_for(member.membership_type).reserve(db, member, course, now)

    def check(self, db: Session, member: Member, now: datetime) -> Optional[RegistrationError]:
        return self.policy_for(member.membership_type).check(db, member, now)

    def release(self, db: Session, registration: CourseRegistration, now: datetime) -> bool:
        """
        Devolver la cuota consumida por `registration` y limpiar la anotación.

        Las reservas semanales solo se devuelven si la cancelación cae en la
        misma semana que se consumió.

        Returns:
            True si se devolvió algo
        """
        kind = registration.quota_kind or QuotaKind.NONE
        released = False

        if kind == QuotaKind.WEEKLY:
            reserved_week = as_utc(registration.quota_week_start)
            current_week = week_start(now, self.gym_timezone)
            if reserved_week is not None and reserved_week == current_week:
                released = quota_repository.decrement_weekly_counter(
                    db, member_id=registration.member_id, week_start=reserved_week
                )
                if released:
                    logger.debug(f"Cuota semanal devuelta a socio {registration.member_id}")
            else:
                logger.debug(
                    f"Cancelación en otra semana; no se devuelve cuota al socio {registration.member_id}"
                )

        elif kind == QuotaKind.CREDIT:
            balance = quota_repository.change_credits(db, member_id=registration.member_id, amount=1)
            if balance is None:
                logger.warning(
                    f"Inscripción {registration.id} consumió crédito pero el socio "
                    f"{registration.member_id} no tiene saldo; se crea"
                )
                balance = quota_repository.create_credit_balance(
                    db, member_id=registration.member_id, credits=0, now=now
                )
                balance = quota_repository.change_credits(db, member_id=registration.member_id, amount=1)
            quota_repository.add_transaction(
                db,
                member_id=registration.member_id,
                amount=1,
                transaction_type=CreditTransactionType.COURSE_CANCELLATION,
                balance_after=balance.credits_remaining,
                description="Kursabmeldung: Credit zurückerstattet",
                course_id=registration.course_id,
                now=now
            )
            released = True
            logger.debug(
                f"Crédito devuelto a socio {registration.member_id}, saldo {balance.credits_remaining}"
            )

        registration.quota_kind = QuotaKind.NONE
        registration.quota_week_start = None
        db.flush()
        return released

    def status(self, db: Session, member: Member, now: datetime) -> Dict:
        policy = self.policy_for(member.membership_type)
        status = {
            "member_id": member.id,
            "membership_type": member.membership_type,
            "policy": policy.name,
        }
        status.update(policy.status(db, member, now))
        return status


def build_quota_ledger() -> QuotaLedger:
    settings = get_settings()
    return QuotaLedger(
        weekly_limit=settings.BASIC_MEMBER_WEEKLY_LIMIT,
        gym_timezone=settings.GYM_TIMEZONE
    )
