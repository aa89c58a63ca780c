"""
Utilidades para el manejo de zonas horarias en el sistema.

Todas las marcas de tiempo se guardan en UTC. La zona del gimnasio solo se usa
para calcular la semana natural de las cuotas y para mostrar horas locales.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import pytz


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normaliza un datetime a UTC aware.

    Los valores naive se interpretan como UTC (SQLite devuelve las columnas
    DateTime(timezone=True) sin tzinfo).

    Args:
        dt: datetime a normalizar

    Returns:
        datetime aware en UTC, o None si la entrada es None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Hora actual en UTC (aware)."""
    return datetime.now(timezone.utc)


def to_gym_timezone(dt: datetime, gym_timezone: str) -> datetime:
    """
    Convierte un datetime (naive = UTC) a la zona horaria del gimnasio.

    Args:
        dt: datetime a convertir
        gym_timezone: zona horaria del gimnasio (ej: 'Europe/Berlin')

    Returns:
        Datetime aware en la zona horaria del gimnasio
    """
    tz = pytz.timezone(gym_timezone)
    return as_utc(dt).astimezone(tz)


def week_start(dt: datetime, gym_timezone: str) -> datetime:
    """
    Inicio (lunes 00:00 hora local del gimnasio) de la semana natural que
    contiene `dt`, devuelto en UTC.

    Args:
        dt: instante de referencia
        gym_timezone: zona horaria del gimnasio

    Returns:
        Datetime aware en UTC
    """
    tz = pytz.timezone(gym_timezone)
    local = to_gym_timezone(dt, gym_timezone)
    monday = local.date() - timedelta(days=local.weekday())
    # localize() resuelve correctamente el offset del lunes (horario de verano)
    local_midnight = tz.localize(datetime(monday.year, monday.month, monday.day))
    return local_midnight.astimezone(timezone.utc)


def format_gym_time(dt: datetime, gym_timezone: str, fmt: str = "%d.%m.%Y %H:%M") -> str:
    """Formatea un instante en la hora local del gimnasio."""
    return to_gym_timezone(dt, gym_timezone).strftime(fmt)
