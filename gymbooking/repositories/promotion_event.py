from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from gymbooking.models.promotion import WaitlistPromotionEvent, PromotionType


def _claimable(stale_before: datetime):
    # Sin reclamar, o con un reclamo cuyo plazo ya venció
    return or_(
        WaitlistPromotionEvent.claimed_at.is_(None),
        WaitlistPromotionEvent.claimed_at < stale_before
    )


class PromotionEventRepository:
    """
    Outbox `waitlist_promotion_events`.

    Un evento está pendiente mientras `notified_at` sea NULL. `claimed_at`
    marca la entrega en curso; si el proceso muere antes de confirmar, el
    reclamo caduca y el evento vuelve a estar disponible.
    """

    def create(
        self,
        db: Session,
        *,
        registration_id: int,
        course_id: int,
        member_id: int,
        promotion_type: PromotionType,
        payload: dict,
        now: datetime
    ) -> WaitlistPromotionEvent:
        event = WaitlistPromotionEvent(
            registration_id=registration_id,
            course_id=course_id,
            member_id=member_id,
            promotion_type=promotion_type,
            payload=payload,
            created_at=now,
            claimed_at=None,
            notified_at=None
        )
        db.add(event)
        db.flush()
        return event

    def get(self, db: Session, event_id: int) -> Optional[WaitlistPromotionEvent]:
        return (
            db.query(WaitlistPromotionEvent)
            .filter(WaitlistPromotionEvent.id == event_id)
            .populate_existing()
            .first()
        )

    def list_pending(
        self, db: Session, *, limit: int, stale_before: datetime
    ) -> List[WaitlistPromotionEvent]:
        return (
            db.query(WaitlistPromotionEvent)
            .filter(
                WaitlistPromotionEvent.notified_at.is_(None),
                _claimable(stale_before)
            )
            .order_by(WaitlistPromotionEvent.created_at.asc(), WaitlistPromotionEvent.id.asc())
            .limit(limit)
            .all()
        )

    def claim(self, db: Session, *, event_id: int, now: datetime, stale_before: datetime) -> bool:
        """
        Reclamar el evento para entregarlo si sigue pendiente y nadie lo tiene reclamado.

        Returns:
            True si esta llamada se quedó con el evento
        """
        result = db.execute(
            update(WaitlistPromotionEvent)
            .where(
                WaitlistPromotionEvent.id == event_id,
                WaitlistPromotionEvent.notified_at.is_(None),
                _claimable(stale_before)
            )
            .values(claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_notified(self, db: Session, *, event_id: int, now: datetime) -> None:
        db.execute(
            update(WaitlistPromotionEvent)
            .where(WaitlistPromotionEvent.id == event_id)
            .values(notified_at=now)
            .execution_options(synchronize_session=False)
        )

    def release_claim(self, db: Session, *, event_id: int) -> None:
        """Devolver el evento a pendiente tras un fallo del sink."""
        db.execute(
            update(WaitlistPromotionEvent)
            .where(
                WaitlistPromotionEvent.id == event_id,
                WaitlistPromotionEvent.notified_at.is_(None)
            )
            .values(claimed_at=None)
            .execution_options(synchronize_session=False)
        )


promotion_event_repository = PromotionEventRepository()
