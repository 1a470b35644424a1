"""
Dependencias globales de la aplicación
"""
from fastapi import Depends, Header, HTTPException, status
from datetime import datetime
from typing import Optional
import hmac
import logging

from pillmind.core.config import Settings, get_settings
from pillmind.core.timezone_utils import as_aware
from pillmind.services.notification_claims import AlertNotifier, LoggingNotifier

logger = logging.getLogger(__name__)


def verify_cron_secret(
        authorization: Optional[str] = Header(None),
        settings: Settings = Depends(get_settings)
) -> bool:
    """
    Verificar el header Authorization: Bearer <CRON_SECRET> de los jobs
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not settings.CRON_SECRET:
        logger.warning("CRON_SECRET no configurado; se rechaza la llamada al job")
        raise credentials_exception

    if not authorization or not authorization.startswith("Bearer "):
        raise credentials_exception

    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token.encode(), settings.CRON_SECRET.encode()):
        raise credentials_exception

    return True


# Dependencias para filtros comunes
class InstantRangeParams:
    def __init__(
            self,
            start: Optional[str] = None,
            end: Optional[str] = None
    ):
        self.start = self._parse(start)
        self.end = self._parse(end)

        # Validar que start <= end
        if self.start and self.end and self.start > self.end:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="El inicio del rango debe ser menor o igual al fin"
            )

    @staticmethod
    def _parse(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return as_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Formato de fecha inválido. Use ISO 8601 (YYYY-MM-DDTHH:MM:SSZ)"
            )


def get_instant_range_params(
        start: Optional[str] = None,
        end: Optional[str] = None
) -> InstantRangeParams:
    """
    Parámetros de rango de instantes
    """
    return InstantRangeParams(start=start, end=end)


def get_alert_notifier() -> AlertNotifier:
    """
    Notificador de alertas de stock bajo y recordatorios de dosis
    """
    return LoggingNotifier()
