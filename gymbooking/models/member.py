import enum
from sqlalchemy import Column, String, Integer, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gymbooking.db.base_class import Base


class MembershipType(str, enum.Enum):
    """Tipo de membresía del socio; determina la política de cuota."""
    BASIC_MEMBER = "Basic Member"      # Límite semanal de inscripciones
    PREMIUM_MEMBER = "Premium Member"
    TRAINER = "Trainer"
    ADMINISTRATOR = "Administrator"
    OPEN_GYM = "Open Gym"
    WELLPASS = "Wellpass"
    TEN_CARD = "10er Karte"            # Créditos prepagados


class Member(Base):
    """Socio del estudio (solo lectura para el núcleo de inscripciones)."""
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    membership_type = Column(Enum(MembershipType), nullable=False, default=MembershipType.BASIC_MEMBER)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    registrations = relationship("CourseRegistration", back_populates="member")
    credit_balance = relationship("MembershipCredit", back_populates="member", uselist=False)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or f"Mitglied #{self.id}"
