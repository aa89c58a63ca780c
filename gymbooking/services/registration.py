"""
Servicio de inscripciones a cursos con lista de espera.

Orquesta DeadlineGuard, QuotaLedger, CapacityTracker y WaitlistPromoter dentro
del scope serializado por curso. Cada escritura es una transacción: si algo
falla se hace rollback y la cuota reservada desaparece con ella. Las
notificaciones de promoción se entregan solo después del commit.
"""
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TypeVar
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from gymbooking.core.config import get_settings
from gymbooking.core.locks import RegistrationLocks, registration_locks
from gymbooking.core.timezone_utils import as_utc, utc_now
from gymbooking.models.course import Course
from gymbooking.models.member import Member
from gymbooking.models.promotion import PromotionType
from gymbooking.models.registration import RegistrationStatus
from gymbooking.repositories.course import course_repository
from gymbooking.repositories.member import member_repository
from gymbooking.repositories.promotion_event import promotion_event_repository
from gymbooking.repositories.quota import quota_repository
from gymbooking.repositories.registration import registration_repository
from gymbooking.models.quota import CreditTransactionType
from gymbooking.schemas.course import CourseStats, CourseParticipants, Participant
from gymbooking.schemas.credits import CreditAdjustmentResult, CreditBalance, CreditTransactionOut
from gymbooking.schemas.quota import QuotaStatus
from gymbooking.schemas.registration import (
    CancellationOutcome,
    CancellationResult,
    Eligibility,
    EligibilityReason,
    MemberRegistration,
    RegistrationOutcome,
    RegistrationResult
)
from gymbooking.services.capacity_tracker import CapacityTracker, capacity_tracker
from gymbooking.services.deadline_guard import DeadlineGuard, deadline_guard
from gymbooking.services.exceptions import (
    CapacityRaceDetected,
    CourseCancelledError,
    CourseNotFoundError,
    CreditAdjustmentError,
    MemberNotFoundError,
    NoCreditsAvailableError,
    QuotaExceededError
)
from gymbooking.services.notification_sink import NotificationSink, get_notification_sink
from gymbooking.services.quota_ledger import CreditPolicy, QuotaLedger, build_quota_ledger
from gymbooking.services.waitlist_promoter import WaitlistPromoter

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_DISPATCH_BATCH = 100


class RegistrationService:
    """Fachada de las operaciones de inscripción, cancelación y cuotas."""

    def __init__(
        self,
        quota_ledger: Optional[QuotaLedger] = None,
        sink: Optional[NotificationSink] = None,
        locks: Optional[RegistrationLocks] = None,
        max_race_retries: Optional[int] = None,
        guard: Optional[DeadlineGuard] = None,
        tracker: Optional[CapacityTracker] = None,
        promoter: Optional[WaitlistPromoter] = None
    ):
        settings = get_settings()
        self.quota_ledger = quota_ledger or build_quota_ledger()
        self.sink = sink or get_notification_sink()
        self.locks = locks or registration_locks
        self.max_race_retries = (
            settings.CAPACITY_RACE_MAX_RETRIES if max_race_retries is None else max_race_retries
        )
        self.guard = guard or deadline_guard
        self.tracker = tracker or capacity_tracker
        self.promoter = promoter or WaitlistPromoter(settings.GYM_TIMEZONE)
        self.dispatch_batch_size = settings.PROMOTION_DISPATCH_BATCH_SIZE
        self.claim_timeout_seconds = settings.PROMOTION_CLAIM_TIMEOUT_SECONDS

    # ------------------------------------------------------------------
    # Lecturas
    # ------------------------------------------------------------------

    def _get_course(self, db: Session, course_id: int) -> Course:
        course = course_repository.get(db, course_id)
        if course is None:
            raise CourseNotFoundError(course_id)
        return course

    def _get_member(self, db: Session, member_id: int) -> Member:
        member = member_repository.get(db, member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        return member

    def get_course_stats(self, db: Session, course_id: int) -> CourseStats:
        course = self._get_course(db, course_id)
        counters = self.tracker.counters(db, course)
        return CourseStats(
            course_id=course.id,
            registered_count=counters.registered_count,
            waitlist_count=counters.waitlist_count,
            capacity=counters.capacity,
            available_spots=counters.available_spots,
            is_cancelled=bool(course.is_cancelled)
        )

    def list_participants(self, db: Session, course_id: int) -> CourseParticipants:
        """Inscritos y lista de espera, ambos por orden de llegada; la espera con posición 1..n."""
        course = self._get_course(db, course_id)

        def to_participant(registration, position=None):
            return Participant(
                registration_id=registration.id,
                member_id=registration.member_id,
                display_name=registration.member.display_name,
                enqueued_at=as_utc(registration.enqueued_at),
                position=position
            )

        registered = registration_repository.list_by_status(
            db, course_id=course.id, status=RegistrationStatus.REGISTERED
        )
        waitlisted = registration_repository.list_by_status(
            db, course_id=course.id, status=RegistrationStatus.WAITLISTED
        )
        return CourseParticipants(
            course_id=course.id,
            registered=[to_participant(r) for r in registered],
            waitlisted=[to_participant(r, position) for position, r in enumerate(waitlisted, start=1)]
        )

    def list_member_registrations(
        self, db: Session, member_id: int, include_cancelled: bool = False
    ) -> List[MemberRegistration]:
        self._get_member(db, member_id)
        rows = registration_repository.list_for_member(
            db, member_id=member_id, include_cancelled=include_cancelled
        )
        return [
            MemberRegistration(
                registration_id=registration.id,
                course_id=course.id,
                course_title=course.title,
                start_at=as_utc(course.start_at),
                end_at=as_utc(course.end_at),
                status=registration.status,
                enqueued_at=as_utc(registration.enqueued_at),
                course_is_cancelled=bool(course.is_cancelled)
            )
            for registration, course in rows
        ]

    def check_eligibility(self, db: Session, member_id: int, course_id: int, now: datetime) -> Eligibility:
        """
        Comprobación de solo lectura con el mismo orden de reglas que `register`.

        Args:
            db: Sesión de base de datos
            member_id: ID del socio
            course_id: ID del curso
            now: instante de referencia

        Returns:
            Eligibility con `can_register`, el motivo del rechazo y si acabaría en lista de espera
        """
        now = as_utc(now)
        course = self._get_course(db, course_id)
        member = self._get_member(db, member_id)

        def rejected(reason, minutes_late=None):
            return Eligibility(
                course_id=course_id,
                member_id=member_id,
                can_register=False,
                reason=reason,
                minutes_late=minutes_late
            )

        if course.is_cancelled:
            return rejected(EligibilityReason.COURSE_CANCELLED)

        window = self.guard.check_registration_window(course, now)
        if not window.allowed:
            return rejected(EligibilityReason.DEADLINE_PASSED, window.minutes_late)

        existing = registration_repository.get_by_course_member(
            db, course_id=course_id, member_id=member_id
        )
        if existing is not None and existing.is_active:
            return rejected(EligibilityReason.ALREADY_REGISTERED)

        quota_error = self.quota_ledger.check(db, member, now)
        if isinstance(quota_error, QuotaExceededError):
            return rejected(EligibilityReason.QUOTA_EXCEEDED)
        if isinstance(quota_error, NoCreditsAvailableError):
            return rejected(EligibilityReason.NO_CREDITS_AVAILABLE)

        counters = self.tracker.counters(db, course)
        return Eligibility(
            course_id=course_id,
            member_id=member_id,
            can_register=True,
            waitlist_expected=counters.registered_count >= course.capacity
        )

    def can_register(self, db: Session, member_id: int, course_id: int, now: datetime) -> bool:
        return self.check_eligibility(db, member_id, course_id, now).can_register

    def get_quota_status(self, db: Session, member_id: int, now: datetime) -> QuotaStatus:
        member = self._get_member(db, member_id)
        return QuotaStatus(**self.quota_ledger.status(db, member, as_utc(now)))

    def list_credit_transactions(
        self, db: Session, member_id: int, skip: int = 0, limit: int = 50
    ) -> List[CreditTransactionOut]:
        self._get_member(db, member_id)
        transactions = quota_repository.list_transactions(
            db, member_id=member_id, skip=skip, limit=limit
        )
        return [CreditTransactionOut.model_validate(t) for t in transactions]

    # ------------------------------------------------------------------
    # Escrituras
    # ------------------------------------------------------------------

    def _with_race_retries(self, db: Session, operation: Callable[[], T], label: str) -> T:
        """
        Ejecuta `operation` reintentando si otro escritor gana la carrera por la fila.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except CapacityRaceDetected as e:
                db.rollback()
                attempt += 1
                if attempt > self.max_race_retries:
                    logger.error(
                        f"{label}: conflicto concurrente persistente tras {self.max_race_retries} reintentos",
                        exc_info=True
                    )
                    raise
                logger.warning(f"{label}: {e.message}; reintento {attempt}/{self.max_race_retries}")

    def register(self, db: Session, member_id: int, course_id: int, now: datetime) -> RegistrationResult:
        """
        Inscribir a un socio en un curso.

        Returns:
            RegistrationResult con outcome REGISTERED, WAITLISTED o ALREADY_REGISTERED

        Raises:
            CourseNotFoundError, MemberNotFoundError, CourseCancelledError,
            DeadlinePassedError, QuotaExceededError, NoCreditsAvailableError
        """
        now = as_utc(now)
        result = self._with_race_retries(
            db,
            lambda: self._register_once(db, member_id, course_id, now),
            f"register(curso={course_id}, socio={member_id})"
        )
        return result

    def _register_once(self, db: Session, member_id: int, course_id: int, now: datetime) -> RegistrationResult:
        with self.locks.hold(course_id, member_id):
            try:
                course = course_repository.get_for_update(db, course_id)
                if course is None:
                    raise CourseNotFoundError(course_id)
                member = self._get_member(db, member_id)

                if course.is_cancelled:
                    raise CourseCancelledError(course_id)
                self.guard.ensure_registration_window(course, now)

                existing = registration_repository.get_by_course_member(
                    db, course_id=course_id, member_id=member_id
                )
                if existing is not None and existing.is_active:
                    result = RegistrationResult(
                        outcome=RegistrationOutcome.ALREADY_REGISTERED,
                        course_id=course_id,
                        member_id=member_id,
                        registration_id=existing.id,
                        status=existing.status,
                        waitlist_position=self._waitlist_position(db, course_id, existing)
                    )
                    db.rollback()
                    logger.debug(f"Socio {member_id} ya inscrito en curso {course_id} ({result.status.value})")
                    return result

                reservation = self.quota_ledger.reserve(db, member, course, now)
                counters = self.tracker.counters(db, course)
                status = self.tracker.classify(course, counters.registered_count)

                if existing is not None:
                    # Reactivar la fila cancelada; vuelve al final de la cola
                    existing.status = status
                    existing.enqueued_at = now
                    existing.updated_at = now
                    existing.quota_kind = reservation.kind
                    existing.quota_week_start = reservation.week_start
                    db.flush()
                    registration = existing
                else:
                    registration = registration_repository.insert(
                        db,
                        course_id=course_id,
                        member_id=member_id,
                        status=status,
                        now=now,
                        quota_kind=reservation.kind,
                        quota_week_start=reservation.week_start
                    )

                registration_id = registration.id
                position = self._waitlist_position(db, course_id, registration)
                capacity = course.capacity
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info(
            f"Socio {member_id} -> curso {course_id}: {status.value} "
            f"({counters.registered_count}/{capacity} antes de la inscripción)"
        )
        return RegistrationResult(
            outcome=RegistrationOutcome(status.value),
            course_id=course_id,
            member_id=member_id,
            registration_id=registration_id,
            status=status,
            waitlist_position=position
        )

    def _waitlist_position(self, db: Session, course_id: int, registration) -> Optional[int]:
        if registration.status != RegistrationStatus.WAITLISTED:
            return None
        return self.tracker.waitlist_position(db, course_id, registration.id)

    def cancel(self, db: Session, member_id: int, course_id: int, now: datetime) -> CancellationResult:
        """
        Cancelar la inscripción de un socio y promocionar al siguiente en espera.

        Raises:
            CourseNotFoundError, DeadlinePassedError
        """
        now = as_utc(now)
        promoted_event_id = None
        promoted_member_id = None

        with self.locks.hold(course_id, member_id):
            try:
                course = course_repository.get_for_update(db, course_id)
                if course is None:
                    raise CourseNotFoundError(course_id)

                registration = registration_repository.get_by_course_member(
                    db, course_id=course_id, member_id=member_id
                )
                if registration is None or not registration.is_active:
                    db.rollback()
                    logger.debug(f"Socio {member_id} no tiene inscripción activa en curso {course_id}")
                    return CancellationResult(
                        outcome=CancellationOutcome.NOT_REGISTERED,
                        course_id=course_id,
                        member_id=member_id
                    )

                self.guard.ensure_cancellation_window(course, now)

                previous_status = registration.status
                registration.status = RegistrationStatus.CANCELLED
                registration.updated_at = now
                self.quota_ledger.release(db, registration, now)

                if self.tracker.release(previous_status):
                    event = self.promoter.promote_next(db, course, now, PromotionType.CANCELLATION)
                    if event is not None:
                        promoted_event_id = event.id
                        promoted_member_id = event.member_id

                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info(f"Socio {member_id} canceló curso {course_id} (antes {previous_status.value})")
        if promoted_event_id is not None:
            self._deliver_after_commit(db, promoted_event_id)

        return CancellationResult(
            outcome=CancellationOutcome.CANCELLED,
            course_id=course_id,
            member_id=member_id,
            promoted_member_id=promoted_member_id
        )

    def fill_vacancies(self, db: Session, course_id: int, now: datetime) -> List[int]:
        """
        Promocionar desde la lista de espera mientras haya plazas libres.

        Returns:
            IDs de los socios promocionados, en orden
        """
        now = as_utc(now)
        with self.locks.hold(course_id):
            try:
                course = course_repository.get_for_update(db, course_id)
                if course is None:
                    raise CourseNotFoundError(course_id)
                events = self.promoter.fill_vacancies(db, course, now, PromotionType.AUTOMATIC)
                promoted = [(event.id, event.member_id) for event in events]
                db.commit()
            except Exception:
                db.rollback()
                raise

        for event_id, _ in promoted:
            self._deliver_after_commit(db, event_id)
        if promoted:
            logger.info(f"Curso {course_id}: {len(promoted)} socio(s) promocionados desde lista de espera")
        return [member_id for _, member_id in promoted]

    def process_waitlists(self, db: Session, now: datetime) -> dict:
        """
        Barrido de todos los cursos futuros con lista de espera.

        Cada curso es independiente: si uno falla se registra el error y el
        barrido sigue con el resto.

        Returns:
            {"courses_processed": n, "members_promoted": m, "courses_failed": k}
        """
        now = as_utc(now)
        course_ids = [c.id for c in course_repository.get_upcoming_with_waitlist(db, now=now)]
        db.rollback()

        courses_processed = 0
        courses_failed = 0
        members_promoted = 0
        for course_id in course_ids:
            try:
                members_promoted += len(self.fill_vacancies(db, course_id, now))
                courses_processed += 1
            except Exception as e:
                courses_failed += 1
                logger.error(f"Barrido de lista de espera fallido en curso {course_id}: {e}", exc_info=True)

        logger.info(
            f"Barrido de listas de espera: {courses_processed} curso(s), "
            f"{members_promoted} promoción(es), {courses_failed} fallo(s)"
        )
        return {
            "courses_processed": courses_processed,
            "members_promoted": members_promoted,
            "courses_failed": courses_failed,
        }

    def adjust_credits(
        self,
        db: Session,
        member_id: int,
        amount: int,
        now: datetime,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> CreditAdjustmentResult:
        """
        Abonar o descontar créditos de una 10er Karte.

        Raises:
            MemberNotFoundError: el socio no existe
            CreditAdjustmentError: membresía sin créditos, importe 0 o saldo negativo
        """
        now = as_utc(now)
        credits = self._with_race_retries(
            db,
            lambda: self._adjust_credits_once(db, member_id, amount, now, description, created_by),
            f"adjust_credits(socio={member_id})"
        )

        action = "hinzugefügt" if amount > 0 else "abgezogen"
        logger.info(f"Créditos de socio {member_id} ajustados en {amount}: saldo {credits.credits_remaining}")
        return CreditAdjustmentResult(
            credits=credits,
            message=f"{abs(amount)} Credits erfolgreich {action}"
        )

    def _adjust_credits_once(
        self,
        db: Session,
        member_id: int,
        amount: int,
        now: datetime,
        description: Optional[str],
        created_by: Optional[str]
    ) -> CreditBalance:
        with self.locks.hold_member(member_id):
            try:
                member = self._get_member(db, member_id)
                if not isinstance(self.quota_ledger.policy_for(member.membership_type), CreditPolicy):
                    raise CreditAdjustmentError("Mitglied muss eine 10er Karte haben")
                if amount == 0:
                    raise CreditAdjustmentError("Der Betrag darf nicht 0 sein")

                balance = quota_repository.change_credits(
                    db,
                    member_id=member_id,
                    amount=amount,
                    add_to_total=amount > 0,
                    recharged_at=now
                )
                if balance is None:
                    current = quota_repository.get_credit_balance(db, member_id=member_id)
                    if current is not None:
                        raise CreditAdjustmentError(
                            f"Nicht genügend Credits vorhanden. Aktuell: {current.credits_remaining}, "
                            f"versucht abzuziehen: {abs(amount)}",
                            credits_remaining=current.credits_remaining
                        )
                    if amount < 0:
                        raise CreditAdjustmentError(
                            "Mitglied hat noch keine Credits. Kann nicht von 0 abziehen."
                        )
                    try:
                        balance = quota_repository.create_credit_balance(
                            db, member_id=member_id, credits=amount, now=now
                        )
                    except IntegrityError as e:
                        # Otro proceso creó el saldo a la vez
                        raise CapacityRaceDetected(None, member_id, original=e) from e

                if amount > 0:
                    transaction_type = CreditTransactionType.ADMIN_RECHARGE
                    default_description = f"Admin-Aufladung: {amount} Credits"
                else:
                    transaction_type = CreditTransactionType.ADMIN_DEDUCTION
                    default_description = f"Admin-Abzug: {abs(amount)} Credits"

                quota_repository.add_transaction(
                    db,
                    member_id=member_id,
                    amount=amount,
                    transaction_type=transaction_type,
                    balance_after=balance.credits_remaining,
                    description=description or default_description,
                    created_by=created_by,
                    now=now
                )
                credits = CreditBalance(
                    member_id=member_id,
                    credits_remaining=balance.credits_remaining,
                    credits_total=balance.credits_total,
                    last_recharged_at=now
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
        return credits

    # ------------------------------------------------------------------
    # Outbox de promociones
    # ------------------------------------------------------------------

    def _deliver(self, db: Session, event_id: int, now: Optional[datetime] = None) -> bool:
        """
        Entregar un evento: reclamarlo, llamar al sink y marcarlo como notificado.

        Si el sink falla el reclamo se libera; si el proceso muere antes de
        marcarlo, el reclamo caduca a los PROMOTION_CLAIM_TIMEOUT_SECONDS y el
        dispatcher lo vuelve a intentar.

        Returns:
            True si el sink aceptó la notificación
        """
        now = as_utc(now) if now is not None else utc_now()
        stale_before = now - timedelta(seconds=self.claim_timeout_seconds)
        if not promotion_event_repository.claim(db, event_id=event_id, now=now, stale_before=stale_before):
            db.rollback()
            logger.debug(f"Evento de promoción {event_id} ya entregado o reclamado por otro proceso")
            return False
        db.commit()

        event = promotion_event_repository.get(db, event_id)
        notification = dict(event.payload or {})
        notification["event_id"] = event.id

        try:
            self.sink.emit(notification)
        except Exception as e:
            logger.warning(
                f"Fallo del sink al notificar evento {event_id}; queda pendiente: {e}",
                exc_info=True
            )
            promotion_event_repository.release_claim(db, event_id=event_id)
            db.commit()
            return False

        promotion_event_repository.mark_notified(db, event_id=event_id, now=now)
        db.commit()
        logger.info(f"Evento de promoción {event_id} notificado (socio {event.member_id}, curso {event.course_id})")
        return True

    def _deliver_after_commit(self, db: Session, event_id: int) -> None:
        # La operación principal ya está confirmada; un fallo aquí deja el evento para el dispatcher
        try:
            self._deliver(db, event_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error de BD entregando evento de promoción {event_id}: {e}", exc_info=True)

    def dispatch_pending_promotion_events(
        self, db: Session, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> dict:
        """
        Entregar eventos pendientes, los más antiguos primero.

        Un evento reclamado por una entrega que no terminó vuelve a la cola
        cuando su reclamo caduca, así que la entrega es al menos una vez.

        Args:
            limit: tamaño del lote, acotado a 1..100 (por defecto PROMOTION_DISPATCH_BATCH_SIZE)
            now: instante de referencia para la caducidad de reclamos (por defecto ahora)

        Returns:
            {"processed": n, "succeeded": m}
        """
        if limit is None:
            limit = self.dispatch_batch_size
        limit = max(1, min(MAX_DISPATCH_BATCH, limit))
        now = as_utc(now) if now is not None else utc_now()
        stale_before = now - timedelta(seconds=self.claim_timeout_seconds)

        event_ids = [
            e.id for e in promotion_event_repository.list_pending(db, limit=limit, stale_before=stale_before)
        ]
        db.rollback()
        if not event_ids:
            logger.debug("No hay eventos de promoción pendientes")
            return {"processed": 0, "succeeded": 0}

        logger.info(f"Despachando {len(event_ids)} evento(s) de promoción")
        processed = 0
        succeeded = 0
        for event_id in event_ids:
            processed += 1
            if self._deliver(db, event_id, now=now):
                succeeded += 1
        return {"processed": processed, "succeeded": succeeded}


registration_service = RegistrationService()


def get_registration_service() -> RegistrationService:
    return registration_service
