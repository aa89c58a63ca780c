import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

# Importar la función de configuración de logging
from gymbooking.core.logging_config import setup_logging

# Llamar a la configuración de logging ANTES de importar/crear otros elementos
setup_logging()

# Ahora importar el resto
from gymbooking.api.v1.api import api_router
from gymbooking.core.config import get_settings
from gymbooking.core.scheduler import init_scheduler, shutdown_scheduler
from gymbooking.create_tables import create_tables

logger = logging.getLogger(__name__)

# Obtener la instancia de configuración al inicio del módulo
settings_instance = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Lifespan: Startup iniciado...")

    if settings_instance.AUTO_CREATE_TABLES:
        create_tables()

    # Iniciar el scheduler
    if settings_instance.SCHEDULER_ENABLED:
        app.state.scheduler = init_scheduler()
        logger.info("Lifespan: Scheduler inicializado.")
    else:
        logger.info("Lifespan: Scheduler desactivado (SCHEDULER_ENABLED=False).")

    yield  # Aplicación en ejecución

    logger.info("Lifespan: Shutdown iniciado...")
    if getattr(app.state, "scheduler", None) is not None:
        shutdown_scheduler()
        app.state.scheduler = None


app = FastAPI(
    title=settings_instance.PROJECT_NAME,
    description=settings_instance.PROJECT_DESCRIPTION,
    version=settings_instance.VERSION,
    openapi_url=f"{settings_instance.API_V1_STR}/openapi.json",
    docs_url=f"{settings_instance.API_V1_STR}/docs",
    redoc_url=f"{settings_instance.API_V1_STR}/redoc",
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"Middleware: Recibida petición: {request.method} {request.url}")
    response = await call_next(request)
    logger.info(f"Middleware: Enviando respuesta: {response.status_code}")
    return response


# Lista de orígenes permitidos para CORS
origins = [str(origin) for origin in settings_instance.BACKEND_CORS_ORIGINS]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Incluir routers
app.include_router(api_router, prefix=settings_instance.API_V1_STR)


# Ruta raíz
@app.get("/")
def root():
    return {
        "message": f"Willkommen bei der {settings_instance.PROJECT_NAME} API",
        "docs": f"{settings_instance.API_V1_STR}/docs",
    }


if __name__ == "__main__":
    uvicorn.run("gymbooking.main:app", host="0.0.0.0", port=8000, reload=settings_instance.DEBUG_MODE)
