"""
Configuración de la aplicación para MySQL y el motor de dosis
"""
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Configuración de la aplicación"""

    # Información del proyecto
    PROJECT_NAME: str = Field(default="PillMind API")
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="production")
    DEBUG: bool = Field(default=False)

    # Configuración del servidor
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8081)

    # Base de datos MySQL
    DB_HOST: str = Field(default="localhost")
    DB_PORT: int = Field(default=3306)
    DB_NAME: str = Field(default="pillmind")
    DB_USER: str = Field(default="pillmind")
    DB_PASSWORD: str = Field(default="")
    DB_CHARSET: str = Field(default="utf8mb4")
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=30)

    # URL completa (tiene prioridad sobre los campos DB_*), ej: sqlite:///./pillmind.db
    DATABASE_URL: Optional[str] = Field(default=None)

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173"
        ]
    )

    # Cron (Authorization: Bearer <CRON_SECRET>)
    CRON_SECRET: str = Field(default="")

    # Generación de dosis
    GENERATION_HORIZON_DAYS: int = Field(default=14, ge=1, le=365)
    GENERATION_WORKERS: int = Field(default=4, ge=1)

    # Recordatorios: dosis que vencen en los próximos N minutos
    REMINDER_WINDOW_MINUTES: int = Field(default=2, ge=1, le=60)

    # Reintentos de inserción masiva
    DOSE_BULK_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    DOSE_BULK_INITIAL_DELAY_MS: int = Field(default=500, ge=0)
    DOSE_BULK_MAX_DELAY_MS: int = Field(default=10000, ge=0)

    # Reintentos de inserción individual (fallback)
    DOSE_ITEM_MAX_ATTEMPTS: int = Field(default=2, ge=1)
    DOSE_ITEM_INITIAL_DELAY_MS: int = Field(default=200, ge=0)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")

    # Timezone
    DEFAULT_TIMEZONE: str = Field(default="UTC")

    @property
    def database_url(self) -> str:
        """Construir URL de conexión MySQL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?charset={self.DB_CHARSET}"
        )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Obtener configuración con cache"""
    return Settings()
