"""
Barrido diario de alertas de stock bajo.

Como máximo una alerta por usuario, canal y día local. El día se reclama
insertando un NotificationLog PENDING con dedupe_key única; si otro barrido
ya lo reclamó, la inserción choca con la restricción y esta ejecución omite
la alerta.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pillmind.core.config import get_settings
from pillmind.core.timezone_utils import as_aware, local_date_in_zone, utc_now
from pillmind.models.medication import Medication
from pillmind.models.notification import LOW_STOCK_ALERT, Channel, NotificationLog, NotificationStatus
from pillmind.models.user import User
from pillmind.services.notification_claims import ClaimedNotificationService

logger = logging.getLogger(__name__)


def dedupe_key(user_id: int, channel: Channel, day: date) -> str:
    return f"{LOW_STOCK_ALERT}:{user_id}:{Channel(channel).value}:{day.isoformat()}"


@dataclass
class LowStockSweepResult:
    """Resumen del barrido"""
    total_alerts: int = 0
    skipped: int = 0
    failed: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def totals(self) -> Dict[str, int]:
        return {"alerts": self.total_alerts, "skipped": self.skipped, "failed": self.failed}


def _quantity(value) -> float:
    return float(value) if value is not None else 0.0


class LowStockAlertService(ClaimedNotificationService):
    """Servicio de alertas de stock bajo"""

    def low_stock_medications(self, user: User) -> List[Medication]:
        """Medicamentos con cantidad actual <= umbral"""
        return [
            medication for medication in user.medications
            if medication.inventory is not None and medication.inventory.is_low
        ]

    def build_payload(self, medications: List[Medication]) -> Dict[str, Any]:
        return {
            "type": LOW_STOCK_ALERT,
            "medications": [
                {
                    "id": medication.id,
                    "name": medication.name,
                    "current_qty": _quantity(medication.inventory.current_qty),
                    "low_threshold": _quantity(medication.inventory.low_threshold),
                    "unit": medication.inventory.unit.value if medication.inventory.unit else None,
                }
                for medication in medications
            ],
        }

    def already_alerted(self, user_id: int, channel: Channel, day: date) -> bool:
        """Existe una alerta PENDING o SENT para ese día"""
        existing = self.db.query(NotificationLog).filter(
            NotificationLog.user_id == user_id,
            NotificationLog.channel == channel,
            NotificationLog.kind == LOW_STOCK_ALERT,
            NotificationLog.alert_date == day,
            NotificationLog.status.in_([NotificationStatus.PENDING, NotificationStatus.SENT])
        ).first()
        return existing is not None

    def claim(self, user: User, channel: Channel, day: date, payload: Dict[str, Any]) -> Optional[NotificationLog]:
        """Reclamar la alerta del día; None si otro barrido ya la tiene"""
        return self.claim_log(lambda: NotificationLog(
            user_id=user.id,
            channel=channel,
            kind=LOW_STOCK_ALERT,
            status=NotificationStatus.PENDING,
            alert_date=day,
            dedupe_key=dedupe_key(user.id, channel, day),
            meta=payload
        ))

    def run(self, now: Optional[datetime] = None) -> LowStockSweepResult:
        """Ejecutar el barrido para todos los usuarios activos"""
        now = as_aware(now) if now else utc_now()
        default_timezone = get_settings().DEFAULT_TIMEZONE
        sweep = LowStockSweepResult()

        users = self.db.query(User).filter(User.is_active.is_(True)).order_by(User.id).all()
        logger.info(f"Barrido de stock bajo: {len(users)} usuarios")

        for user in users:
            medications = self.low_stock_medications(user)
            if not medications:
                continue

            day = local_date_in_zone(now, user.timezone or default_timezone)
            payload = self.build_payload(medications)

            for channel in user.alert_channels:
                if self.already_alerted(user.id, channel, day):
                    sweep.skipped += 1
                    continue

                log = self.claim(user, channel, day, payload)
                if log is None:
                    sweep.skipped += 1
                    continue

                if self.deliver(user, channel, log, payload, now):
                    sweep.total_alerts += 1
                    sweep.results.append({
                        "user_id": user.id,
                        "user_email": user.email,
                        "channel": channel.value,
                        "alert_date": day.isoformat(),
                        "low_stock_count": len(medications),
                        "medications": payload["medications"],
                        "notification_id": log.id,
                    })
                else:
                    sweep.failed += 1

        logger.info(f"Barrido de stock bajo completado: {sweep.totals}")
        return sweep
