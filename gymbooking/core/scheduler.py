from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import OperationalError, DBAPIError
from functools import wraps
import logging
import time

from gymbooking.core.config import get_settings
from gymbooking.core.timezone_utils import utc_now
from gymbooking.db.session import SessionLocal

logger = logging.getLogger(__name__)

# Variable global para mantener referencia al scheduler
_scheduler = None


def retry_on_db_error(max_retries=3, delay=2):
    """
    Decorator para reintentar operaciones en caso de errores de BD.

    Útil para tareas programadas que pueden fallar por conexiones cerradas
    o timeouts transitorios.

    Args:
        max_retries: Número máximo de intentos (default: 3)
        delay: Tiempo base de espera entre reintentos en segundos (default: 2).
               Espera lineal: delay * (attempt + 1)
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except (OperationalError, DBAPIError) as e:
                    if attempt < max_retries - 1:
                        wait_time = delay * (attempt + 1)
                        logger.warning(
                            f"DB error in {func.__name__}, retry {attempt + 1}/{max_retries} "
                            f"after {wait_time}s: {str(e)}"
                        )
                        time.sleep(wait_time)
                    else:
                        logger.error(
                            f"Max retries ({max_retries}) reached for {func.__name__}: {str(e)}",
                            exc_info=True
                        )
                        raise
        return wrapper
    return decorator


@retry_on_db_error(max_retries=3, delay=2)
def process_waitlists():
    """
    Rellena plazas libres de cursos futuros con socios en lista de espera
    """
    from gymbooking.services.registration import registration_service

    logger.info("Running scheduled task: process_waitlists")
    db = SessionLocal()
    try:
        result = registration_service.process_waitlists(db, utc_now())
        logger.info(
            f"process_waitlists: {result['courses_processed']} curso(s), "
            f"{result['members_promoted']} promoción(es), {result['courses_failed']} fallo(s)"
        )
        return result
    finally:
        db.close()


@retry_on_db_error(max_retries=3, delay=2)
def dispatch_promotion_events():
    """
    Reintenta la entrega de eventos de promoción pendientes
    """
    from gymbooking.services.registration import registration_service

    db = SessionLocal()
    try:
        result = registration_service.dispatch_pending_promotion_events(db)
        if result["processed"]:
            logger.info(
                f"dispatch_promotion_events: {result['succeeded']}/{result['processed']} entregados"
            )
        return result
    finally:
        db.close()


def init_scheduler():
    """
    Inicializa el programador de tareas
    """
    global _scheduler
    settings = get_settings()

    logger.info("Initializing scheduler with UTC timezone")
    _scheduler = BackgroundScheduler(timezone="UTC")

    # Barrido de listas de espera
    _scheduler.add_job(
        process_waitlists,
        trigger=IntervalTrigger(minutes=settings.WAITLIST_SWEEP_MINUTES),
        id='process_waitlists',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    # Reintento de notificaciones de promoción pendientes
    _scheduler.add_job(
        dispatch_promotion_events,
        trigger=IntervalTrigger(minutes=settings.PROMOTION_DISPATCH_MINUTES),
        id='dispatch_promotion_events',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    _scheduler.start()
    logger.info("Scheduler started with UTC timezone - waitlist sweep and promotion dispatch")
    return _scheduler


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler detenido")
    _scheduler = None
