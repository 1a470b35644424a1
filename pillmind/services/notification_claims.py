"""
Reclamo y envío de notificaciones deduplicadas.

Una notificación se reclama insertando un NotificationLog PENDING con una
dedupe_key única. Si otro proceso ya la insertó, la restricción de unicidad
decide el ganador y esta ejecución la omite. Tras el envío el registro queda
SENT, o FAILED con la clave liberada para que un barrido posterior reintente.
"""
import abc
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from pillmind.core.exceptions import TransientReason, TransientStoreError
from pillmind.core.retry import RetryPolicy, retry_with_backoff
from pillmind.models.notification import Channel, NotificationLog, NotificationStatus
from pillmind.models.user import User
from pillmind.services.dose_persister import translate_store_error

logger = logging.getLogger(__name__)

# Una carrera de unicidad significa que otro barrido ganó: no se reintenta
CLAIM_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=10.0,
    retry_on=frozenset({TransientReason.TIMEOUT, TransientReason.CONNECTION_RESET}),
)


class AlertNotifier(abc.ABC):
    """Canal de salida de las notificaciones"""

    @abc.abstractmethod
    def send(self, user: User, channel: Channel, payload: Dict[str, Any]) -> None:
        """Enviar la notificación; cualquier excepción la marca como FAILED"""


class LoggingNotifier(AlertNotifier):
    """Notificador por defecto: deja la notificación en el log"""

    def send(self, user: User, channel: Channel, payload: Dict[str, Any]) -> None:
        logger.info(f"Notificación {payload.get('type')} enviada a {user.email} por {channel.value}")


class ClaimedNotificationService:
    """Base de los barridos que reclaman, envían y registran notificaciones"""

    def __init__(
            self,
            db: Session,
            notifier: Optional[AlertNotifier] = None,
            claim_policy: RetryPolicy = CLAIM_POLICY,
            sleep=None
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.claim_policy = claim_policy
        self.sleep = sleep

    def _insert_claim(self, log: NotificationLog) -> NotificationLog:
        try:
            self.db.add(log)
            self.db.commit()
            self.db.refresh(log)
            return log
        except Exception as e:
            self.db.rollback()
            raise translate_store_error(e, f"reclamo de notificación {log.dedupe_key}")

    def claim_log(self, build_log) -> Optional[NotificationLog]:
        """
        Insertar el registro PENDING que construye build_log().

        Devuelve None si otro proceso ya tiene la misma dedupe_key.
        """
        kwargs = {"sleep": self.sleep} if self.sleep else {}
        key = None
        try:
            def attempt():
                nonlocal key
                log = build_log()
                key = log.dedupe_key
                return self._insert_claim(log)

            return retry_with_backoff(attempt, self.claim_policy, operation="reclamo de notificación", **kwargs)
        except TransientStoreError as e:
            if e.reason == TransientReason.UNIQUE_RACE:
                logger.info(f"Notificación {key} ya reclamada por otro proceso")
                return None
            raise

    def deliver(self, user: User, channel: Channel, log: NotificationLog, payload: Dict[str, Any], now: datetime) -> bool:
        """Enviar y registrar SENT o FAILED (liberando la clave)"""
        try:
            self.notifier.send(user, channel, payload)
        except Exception as e:
            logger.error(f"Error enviando {log.kind} al usuario {user.id} por {channel.value}: {e}")
            log.status = NotificationStatus.FAILED
            log.dedupe_key = None
            log.meta = {**payload, "error": str(e)}
            self.db.commit()
            return False

        log.status = NotificationStatus.SENT
        log.sent_at = now
        self.db.commit()
        return True
