"""
Recordatorios de dosis próximas.

Se ejecuta cada minuto. Selecciona las dosis SCHEDULED de usuarios activos
que vencen en [now, now + ventana] y, por cada canal del usuario sin
recordatorio PENDING o SENT, reclama y envía uno. La dedupe_key
"dose_reminder:{dose}:{canal}" garantiza un único recordatorio por dosis y
canal aunque dos barridos coincidan.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pillmind.core.config import get_settings
from pillmind.core.timezone_utils import as_aware, get_zone, utc_now
from pillmind.models.dose_instance import DoseInstance, DoseStatus
from pillmind.models.notification import DOSE_REMINDER, Channel, NotificationLog, NotificationStatus
from pillmind.models.prescription import Prescription
from pillmind.models.user import User
from pillmind.services.notification_claims import ClaimedNotificationService

logger = logging.getLogger(__name__)


def reminder_key(dose_id: int, channel: Channel) -> str:
    return f"{DOSE_REMINDER}:{dose_id}:{Channel(channel).value}"


@dataclass
class DueReminder:
    """Dosis que vence ahora y canales que aún no la recordaron"""
    dose: DoseInstance
    user: User
    channels: List[Channel]


@dataclass
class ReminderSweepResult:
    """Resumen del barrido de recordatorios"""
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def totals(self) -> Dict[str, int]:
        return {"reminders": self.sent, "skipped": self.skipped, "failed": self.failed}


class DoseReminderService(ClaimedNotificationService):
    """Servicio de recordatorios de dosis"""

    def __init__(self, db, notifier=None, window_minutes: Optional[int] = None, **kwargs):
        super().__init__(db, notifier, **kwargs)
        self.window = timedelta(minutes=window_minutes or get_settings().REMINDER_WINDOW_MINUTES)

    def already_reminded(self, dose_id: int, channel: Channel) -> bool:
        existing = self.db.query(NotificationLog).filter(
            NotificationLog.dose_instance_id == dose_id,
            NotificationLog.channel == channel,
            NotificationLog.kind == DOSE_REMINDER,
            NotificationLog.status.in_([NotificationStatus.PENDING, NotificationStatus.SENT])
        ).first()
        return existing is not None

    def due_reminders(self, now: Optional[datetime] = None) -> List[DueReminder]:
        """Dosis SCHEDULED en [now, now + ventana] con canales pendientes"""
        now = as_aware(now) if now else utc_now()
        doses = self.db.query(DoseInstance).join(Prescription).join(User).filter(
            User.is_active.is_(True),
            DoseInstance.status == DoseStatus.SCHEDULED,
            DoseInstance.scheduled_for >= now,
            DoseInstance.scheduled_for <= now + self.window
        ).order_by(DoseInstance.scheduled_for, DoseInstance.id).all()

        due = []
        for dose in doses:
            user = dose.prescription.user
            channels = [c for c in user.alert_channels if not self.already_reminded(dose.id, c)]
            if channels:
                due.append(DueReminder(dose=dose, user=user, channels=channels))
        return due

    def build_payload(self, dose: DoseInstance, user: User) -> Dict[str, Any]:
        zone = get_zone(user.timezone or get_settings().DEFAULT_TIMEZONE)
        return {
            "type": DOSE_REMINDER,
            "dose_id": dose.id,
            "medication": dose.prescription.medication.name,
            "scheduled_for": dose.scheduled_for.isoformat(),
            "local_time": dose.scheduled_for.astimezone(zone).strftime("%H:%M"),
            "timezone": zone.key,
            "quantity": float(dose.quantity) if dose.quantity is not None else None,
            "unit": dose.unit.value if dose.unit else None,
        }

    def claim(self, dose: DoseInstance, user: User, channel: Channel,
              payload: Dict[str, Any]) -> Optional[NotificationLog]:
        return self.claim_log(lambda: NotificationLog(
            user_id=user.id,
            dose_instance_id=dose.id,
            channel=channel,
            kind=DOSE_REMINDER,
            status=NotificationStatus.PENDING,
            dedupe_key=reminder_key(dose.id, channel),
            meta=payload
        ))

    def run(self, now: Optional[datetime] = None) -> ReminderSweepResult:
        """Enviar los recordatorios que vencen ahora"""
        now = as_aware(now) if now else utc_now()
        sweep = ReminderSweepResult()

        reminders = self.due_reminders(now)
        logger.info(f"Barrido de recordatorios: {len(reminders)} dosis por recordar")

        for reminder in reminders:
            payload = self.build_payload(reminder.dose, reminder.user)
            for channel in reminder.channels:
                log = self.claim(reminder.dose, reminder.user, channel, payload)
                if log is None:
                    sweep.skipped += 1
                    continue

                if self.deliver(reminder.user, channel, log, payload, now):
                    sweep.sent += 1
                    sweep.results.append({
                        "dose_id": reminder.dose.id,
                        "user_id": reminder.user.id,
                        "channel": channel.value,
                        "scheduled_for": payload["scheduled_for"],
                        "notification_id": log.id,
                    })
                else:
                    sweep.failed += 1

        logger.info(f"Barrido de recordatorios completado: {sweep.totals}")
        return sweep
