from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class CourseBase(BaseModel):
    title: str = Field(..., max_length=100)
    description: Optional[str] = Field(None)
    start_at: datetime
    end_at: datetime
    capacity: int = Field(..., gt=0, description="Plazas disponibles")
    registration_deadline_minutes: int = Field(0, ge=0, description="Minutos antes del inicio en que cierra la inscripción")
    cancellation_deadline_minutes: int = Field(0, ge=0, description="Minutos antes del inicio en que cierra la cancelación")
    is_cancelled: bool = False


class CourseCreate(CourseBase):
    @field_validator('end_at')
    @classmethod
    def end_after_start(cls, v, info):
        start_at = info.data.get('start_at')
        if start_at is not None and v <= start_at:
            raise ValueError("end_at debe ser posterior a start_at")
        return v


class CourseStats(BaseModel):
    """Contadores derivados de las inscripciones activas."""
    course_id: int
    registered_count: int = Field(..., ge=0)
    waitlist_count: int = Field(..., ge=0)
    capacity: int = Field(..., gt=0)
    available_spots: int = Field(..., ge=0)
    is_cancelled: bool = False


class Participant(BaseModel):
    registration_id: int
    member_id: int
    display_name: str
    enqueued_at: datetime
    position: Optional[int] = Field(None, description="Posición en lista de espera (1 = siguiente)")


class CourseParticipants(BaseModel):
    course_id: int
    registered: List[Participant]
    waitlisted: List[Participant]
