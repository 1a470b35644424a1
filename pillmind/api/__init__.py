# pillmind/api/__init__.py
"""
Router principal de la API
"""
from fastapi import APIRouter, Depends

from pillmind.core.config import get_settings
from pillmind.core.dependencies import verify_cron_secret

# Importar todos los routers
from . import schedules, doses, cron

settings = get_settings()

# Router principal de la API
api_router = APIRouter()

api_router.include_router(
    schedules.router,
    prefix="",
    tags=["schedules"]
)

api_router.include_router(
    doses.router,
    prefix="/doses",
    tags=["doses"]
)

# Jobs programados
api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)]
)


# Endpoints adicionales de la API
@api_router.get("/health")
async def api_health():
    """Health check específico de la API"""
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION
    }
