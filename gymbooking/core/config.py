import os
from typing import Any, List, Optional, Union
from functools import lru_cache
import logging

import pytz
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Configurar el logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Permitir campos extra en .env
    )

    # Configuración básica
    API_V1_STR: str = "/api/v1"

    # Información del proyecto
    PROJECT_NAME: str = "GymBooking"
    PROJECT_DESCRIPTION: str = "API con FastAPI para inscripciones a cursos y listas de espera del gimnasio"
    VERSION: str = "0.1.0"

    # Debug mode
    DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "False").lower() in ("true", "1", "t")
    # Directorio de logs (None = solo consola)
    LOG_DIR: Optional[str] = os.getenv("LOG_DIR", None)

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode='before')
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Base de datos
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./gymbooking.db")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    DB_STATEMENT_TIMEOUT_MS: int = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "30000"))
    # Crear tablas al arrancar (desarrollo / SQLite)
    AUTO_CREATE_TABLES: bool = os.getenv("AUTO_CREATE_TABLES", "True").lower() in ("true", "1", "t")

    @field_validator("DATABASE_URL", mode="before")
    def ensure_proper_url_format(cls, v: Optional[str]) -> str:
        """Asegura que DATABASE_URL esté en el formato que espera SQLAlchemy."""
        # No loguear el valor completo por seguridad
        logger.info("DATABASE_URL detectado en configuración")
        if not v:
            return "sqlite:///./gymbooking.db"
        v = v.strip()
        if v.startswith('postgres://'):
            logger.info("Corrigiendo formato de postgres:// a postgresql://")
            return 'postgresql://' + v[len('postgres://'):]
        return v

    # Zona horaria del gimnasio (semanas de cuota y mensajes)
    GYM_TIMEZONE: str = os.getenv("GYM_TIMEZONE", "Europe/Berlin")

    @field_validator("GYM_TIMEZONE")
    def validate_gym_timezone(cls, v: str) -> str:
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"GYM_TIMEZONE desconocida: {v}")
        return v

    # Reglas de cuota por tipo de membresía
    BASIC_MEMBER_WEEKLY_LIMIT: int = int(os.getenv("BASIC_MEMBER_WEEKLY_LIMIT", "2"))

    @field_validator("BASIC_MEMBER_WEEKLY_LIMIT")
    def validate_weekly_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("BASIC_MEMBER_WEEKLY_LIMIT debe ser al menos 1")
        return v

    # Reintentos cuando otro escritor gana la carrera por la misma fila
    CAPACITY_RACE_MAX_RETRIES: int = int(os.getenv("CAPACITY_RACE_MAX_RETRIES", "3"))

    # Notificaciones de promoción desde lista de espera
    NOTIFICATION_SINK: str = os.getenv("NOTIFICATION_SINK", "log")  # "log" | "redis"
    PROMOTION_DISPATCH_BATCH_SIZE: int = int(os.getenv("PROMOTION_DISPATCH_BATCH_SIZE", "25"))
    # Segundos tras los que un reclamo de entrega sin confirmar caduca
    PROMOTION_CLAIM_TIMEOUT_SECONDS: int = int(os.getenv("PROMOTION_CLAIM_TIMEOUT_SECONDS", "300"))

    @field_validator("NOTIFICATION_SINK")
    def validate_notification_sink(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("log", "redis"):
            raise ValueError("NOTIFICATION_SINK debe ser 'log' o 'redis'")
        return v

    # Configuración de Redis
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_PROMOTION_QUEUE: str = os.getenv("REDIS_PROMOTION_QUEUE", "gymbooking:waitlist_promotions")
    REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))

    @field_validator("REDIS_URL", mode="before")
    def assemble_redis_connection(cls, v: Optional[str]) -> Any:
        if isinstance(v, str):
            # Eliminar comentarios (todo lo que sigue a #)
            if '#' in v:
                v = v.split('#')[0]
                logger.info("REDIS_URL: eliminados comentarios en configuración")
            return v.strip()
        return "redis://localhost:6379/0"

    # Tareas programadas
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "False").lower() in ("true", "1", "t")
    WAITLIST_SWEEP_MINUTES: int = int(os.getenv("WAITLIST_SWEEP_MINUTES", "15"))
    PROMOTION_DISPATCH_MINUTES: int = int(os.getenv("PROMOTION_DISPATCH_MINUTES", "1"))


# Usar una función con caché para obtener la configuración
@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    logger.info("Configuración cargada correctamente")
    return settings
