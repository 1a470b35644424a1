"""
Configuración de base de datos con SQLAlchemy (MySQL en producción, SQLite en desarrollo)
"""
from datetime import datetime, timezone
from sqlalchemy import create_engine, text, DateTime
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator
import logging

# Crear Base ANTES de importar config para evitar import circular
Base = declarative_base()

from pillmind.core.config import get_settings

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """
    DateTime que siempre guarda y devuelve instantes en UTC.

    MySQL y SQLite descartan la zona horaria, así que se normaliza a UTC al
    escribir y se vuelve a adjuntar UTC al leer.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Se requiere un datetime con zona horaria: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def build_engine(url: str, echo: bool = False):
    """Crear engine según el dialecto de la URL"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    settings = get_settings()
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,  # Reciclar conexiones cada hora
        echo=echo,
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency para obtener sesión de base de datos
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """
    Crear todas las tablas si no existen
    """
    # Importar todos los modelos para que se registren
    import pillmind.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("✅ Tablas creadas/verificadas exitosamente")
    except Exception as e:
        logger.error(f"❌ Error al crear tablas: {e}")
        raise


def drop_tables(bind=None):
    """
    Eliminar todas las tablas (usar con cuidado)
    """
    try:
        Base.metadata.drop_all(bind=bind or engine)
        logger.warning("⚠️ Todas las tablas han sido eliminadas")
    except Exception as e:
        logger.error(f"❌ Error al eliminar tablas: {e}")
        raise


def test_connection() -> bool:
    """
    Probar conexión a la base de datos
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info(f"✅ Conexión a {engine.dialect.name} exitosa")
        return True
    except Exception as e:
        logger.error(f"❌ Error de conexión a {engine.dialect.name}: {e}")
        return False


def get_db_info():
    """
    Obtener información de la base de datos
    """
    try:
        with engine.connect() as conn:
            version = conn.dialect.server_version_info
        return {
            "dialect": engine.dialect.name,
            "server_version": ".".join(str(part) for part in version) if version else None,
            "database_name": engine.url.database,
            "host": engine.url.host,
            "port": engine.url.port,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        logger.error(f"Error al obtener info de DB: {e}")
        return None


def get_session_factory():
    """
    Dependency para jobs que abren una sesión por tarea
    """
    return SessionLocal
