from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from gymbooking.models.quota import (
    WeeklyRegistrationCounter,
    MembershipCredit,
    CreditTransaction,
    CreditTransactionType
)


class QuotaRepository:
    """
    Contadores semanales, saldo de créditos y movimientos de créditos.

    Los cambios de contador y saldo son UPDATE condicionales evaluados en la
    base de datos sobre el valor vigente, nunca lectura + escritura en Python.
    """

    def get_weekly_counter(
        self, db: Session, *, member_id: int, week_start: datetime
    ) -> Optional[WeeklyRegistrationCounter]:
        return (
            db.query(WeeklyRegistrationCounter)
            .filter(
                WeeklyRegistrationCounter.member_id == member_id,
                WeeklyRegistrationCounter.week_start == week_start
            )
            .populate_existing()
            .first()
        )

    def create_weekly_counter(
        self, db: Session, *, member_id: int, week_start: datetime
    ) -> WeeklyRegistrationCounter:
        counter = WeeklyRegistrationCounter(
            member_id=member_id,
            week_start=week_start,
            registrations_count=0
        )
        db.add(counter)
        db.flush()
        return counter

    def increment_weekly_counter(
        self, db: Session, *, member_id: int, week_start: datetime, limit: int
    ) -> bool:
        """
        Sumar una inscripción si el contador sigue por debajo de `limit`.

        Returns:
            True si se consumió la plaza de cuota
        """
        result = db.execute(
            update(WeeklyRegistrationCounter)
            .where(
                WeeklyRegistrationCounter.member_id == member_id,
                WeeklyRegistrationCounter.week_start == week_start,
                WeeklyRegistrationCounter.registrations_count < limit
            )
            .values(registrations_count=WeeklyRegistrationCounter.registrations_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def decrement_weekly_counter(self, db: Session, *, member_id: int, week_start: datetime) -> bool:
        result = db.execute(
            update(WeeklyRegistrationCounter)
            .where(
                WeeklyRegistrationCounter.member_id == member_id,
                WeeklyRegistrationCounter.week_start == week_start,
                WeeklyRegistrationCounter.registrations_count > 0
            )
            .values(registrations_count=WeeklyRegistrationCounter.registrations_count - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def get_credit_balance(self, db: Session, *, member_id: int) -> Optional[MembershipCredit]:
        return (
            db.query(MembershipCredit)
            .filter(MembershipCredit.member_id == member_id)
            .populate_existing()
            .first()
        )

    def create_credit_balance(
        self, db: Session, *, member_id: int, credits: int, now: datetime
    ) -> MembershipCredit:
        balance = MembershipCredit(
            member_id=member_id,
            credits_remaining=credits,
            credits_total=credits,
            last_recharged_at=now
        )
        db.add(balance)
        db.flush()
        return balance

    def change_credits(
        self,
        db: Session,
        *,
        member_id: int,
        amount: int,
        add_to_total: bool = False,
        recharged_at: Optional[datetime] = None
    ) -> Optional[MembershipCredit]:
        """
        Sumar `amount` (positivo o negativo) al saldo si no queda por debajo de 0.

        Returns:
            El saldo actualizado, o None si no hay saldo o no alcanza
        """
        values = {"credits_remaining": MembershipCredit.credits_remaining + amount}
        if add_to_total:
            values["credits_total"] = MembershipCredit.credits_total + amount
        if recharged_at is not None:
            values["last_recharged_at"] = recharged_at

        result = db.execute(
            update(MembershipCredit)
            .where(
                MembershipCredit.member_id == member_id,
                MembershipCredit.credits_remaining + amount >= 0
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return self.get_credit_balance(db, member_id=member_id)

    def add_transaction(
        self,
        db: Session,
        *,
        member_id: int,
        amount: int,
        transaction_type: CreditTransactionType,
        balance_after: int,
        now: datetime,
        description: Optional[str] = None,
        course_id: Optional[int] = None,
        created_by: Optional[str] = None
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            member_id=member_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            balance_after=balance_after,
            course_id=course_id,
            created_by=created_by,
            created_at=now
        )
        db.add(transaction)
        db.flush()
        return transaction

    def list_transactions(
        self, db: Session, *, member_id: int, skip: int = 0, limit: int = 50
    ) -> List[CreditTransaction]:
        return (
            db.query(CreditTransaction)
            .filter(CreditTransaction.member_id == member_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )


quota_repository = QuotaRepository()
