"""
Excepciones de dominio del servicio de inscripciones.

Cada excepción lleva un `code` estable y un `message` para el usuario; los
endpoints las traducen a HTTPException con `detail = exc.to_detail()`.
"""
from typing import Any, Dict, Optional


class RegistrationError(Exception):
    """Base de los errores de negocio de inscripciones."""
    code = "REGISTRATION_ERROR"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        detail.update(self.extra)
        return detail


class CourseNotFoundError(RegistrationError):
    """Raised when a course does not exist."""
    code = "COURSE_NOT_FOUND"
    status_code = 404

    def __init__(self, course_id: int):
        super().__init__(f"Kurs {course_id} nicht gefunden", course_id=course_id)
        self.course_id = course_id


class MemberNotFoundError(RegistrationError):
    """Raised when a member does not exist."""
    code = "MEMBER_NOT_FOUND"
    status_code = 404

    def __init__(self, member_id: int):
        super().__init__(f"Mitglied {member_id} nicht gefunden", member_id=member_id)
        self.member_id = member_id


class CourseCancelledError(RegistrationError):
    code = "COURSE_CANCELLED"

    def __init__(self, course_id: int):
        super().__init__("Dieser Kurs wurde abgesagt", course_id=course_id)
        self.course_id = course_id


class DeadlinePassedError(RegistrationError):
    """El plazo de inscripción o de cancelación ya pasó."""
    code = "DEADLINE_PASSED"

    def __init__(self, minutes_late: int, window: str):
        if window == "cancellation":
            message = f"Die Abmeldefrist ist seit {minutes_late} Minute(n) abgelaufen"
        else:
            message = f"Die Anmeldefrist ist seit {minutes_late} Minute(n) abgelaufen"
        super().__init__(message, minutes_late=minutes_late, window=window)
        self.minutes_late = minutes_late
        self.window = window


class QuotaExceededError(RegistrationError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, limit: int):
        super().__init__(
            f"Du hast dein Wochenlimit von {limit} Kursen bereits erreicht",
            limit=limit
        )
        self.limit = limit


class NoCreditsAvailableError(RegistrationError):
    code = "NO_CREDITS_AVAILABLE"

    def __init__(self, credits_remaining: int = 0):
        super().__init__(
            "Keine Credits mehr verfügbar. Bitte lade deine 10er Karte auf",
            credits_remaining=credits_remaining
        )
        self.credits_remaining = credits_remaining


class CreditAdjustmentError(RegistrationError):
    code = "CREDIT_ADJUSTMENT_REJECTED"


class CapacityRaceDetected(RegistrationError):
    """
    Otro escritor insertó la misma fila única (inscripción, contador semanal o
    saldo) fuera del lock de proceso.

    El servicio reintenta la operación completa; solo llega al cliente (409)
    cuando se agotan los reintentos.
    """
    code = "CAPACITY_RACE"
    status_code = 409

    def __init__(self, course_id: Optional[int], member_id: int, original: Optional[Exception] = None):
        if course_id is None:
            message = f"Conflicto concurrente en el saldo del socio {member_id}"
        else:
            message = f"Conflicto concurrente en curso {course_id} / socio {member_id}"
        super().__init__(
            message,
            course_id=course_id,
            member_id=member_id
        )
        self.original = original
