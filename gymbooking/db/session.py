from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import SQLAlchemyError
import logging

from gymbooking.core.config import get_settings

logger = logging.getLogger(__name__)

# Obtener la instancia de configuración
settings_instance = get_settings()

db_url = str(settings_instance.DATABASE_URL)


def _display_url(url: str) -> str:
    """Oculta credenciales antes de loguear la URL."""
    if '@' in url:
        scheme = url.split('://')[0]
        host_info = url.split('@')[-1]
        return f"{scheme}://***@{host_info}"
    return url


def build_engine(url: str):
    """
    Crea el engine sync adecuado para la URL.

    SQLite (desarrollo y tests) no admite pool_size ni opciones de servidor;
    PostgreSQL recibe el pool y el statement_timeout configurados.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=settings_instance.DB_POOL_SIZE,
        max_overflow=settings_instance.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=180,
        connect_args={
            "connect_timeout": 10,
            "options": f"-c statement_timeout={settings_instance.DB_STATEMENT_TIMEOUT_MS}",
        },
        execution_options={
            "isolation_level": "READ COMMITTED",
        }
    )


engine = build_engine(db_url)
logger.info(f"Sync engine creado correctamente: {_display_url(db_url)}")

# Crear clase de sesión
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependencia para obtener la sesión de DB
def get_db():
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        logger.error(f"Error de SQLAlchemy en la sesión: {e}", exc_info=True)
        db.rollback()  # Hacer rollback en caso de error
        raise  # Relanzar la excepción para que FastAPI la maneje
    finally:
        # Asegurarse siempre de cerrar la sesión
        db.close()
