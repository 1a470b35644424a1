"""
Servicio de lectura de dosis y registro de tomas
"""
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from pillmind.core.config import get_settings
from pillmind.core.timezone_utils import as_aware, utc_now
from pillmind.models.dose_instance import DoseInstance, DoseStatus
from pillmind.schemas.dose import DoseResponse
from pillmind.services.dose_status import apply_dose_action, classify_dose

logger = logging.getLogger(__name__)


class DoseService:
    """Servicio de dosis programadas"""

    def __init__(self, db: Session):
        self.db = db

    def dose_timezone(self, dose: DoseInstance) -> str:
        """Zona del horario; si no hay, la del usuario o la de configuración"""
        if dose.schedule is not None and dose.schedule.timezone:
            return dose.schedule.timezone
        user = dose.prescription.user if dose.prescription else None
        if user is not None and user.timezone:
            return user.timezone
        return get_settings().DEFAULT_TIMEZONE

    def to_response(self, dose: DoseInstance, now: Optional[datetime] = None) -> DoseResponse:
        view = classify_dose(dose.status, dose.scheduled_for, self.dose_timezone(dose), now=now)
        return DoseResponse(
            id=dose.id,
            prescription_id=dose.prescription_id,
            schedule_id=dose.schedule_id,
            scheduled_for=dose.scheduled_for,
            taken_at=dose.taken_at,
            stored_status=dose.status,
            status=view.status,
            interactable=view.interactable,
            quantity=dose.quantity,
            unit=dose.unit
        )

    def get_dose(self, dose_id: int) -> Optional[DoseInstance]:
        """Obtener dosis por ID"""
        return self.db.query(DoseInstance).filter(DoseInstance.id == dose_id).first()

    def list_doses(
            self,
            prescription_id: int,
            start: Optional[datetime] = None,
            end: Optional[datetime] = None,
            now: Optional[datetime] = None
    ) -> List[DoseResponse]:
        """Dosis de una prescripción en [start, end] con su estado efectivo"""
        query = self.db.query(DoseInstance).filter(DoseInstance.prescription_id == prescription_id)
        if start is not None:
            query = query.filter(DoseInstance.scheduled_for >= as_aware(start))
        if end is not None:
            query = query.filter(DoseInstance.scheduled_for <= as_aware(end))

        doses = query.order_by(DoseInstance.scheduled_for, DoseInstance.id).all()
        now = as_aware(now) if now else utc_now()
        return [self.to_response(dose, now=now) for dose in doses]

    def record_action(
            self,
            dose_id: int,
            action: DoseStatus,
            taken_at: Optional[datetime] = None,
            now: Optional[datetime] = None
    ) -> Optional[DoseResponse]:
        """
        Marcar una dosis como TAKEN o SKIPPED.

        Devuelve None si la dosis no existe. Lanza DoseNotInteractableError si
        ya es terminal o su día local terminó.
        """
        dose = self.get_dose(dose_id)
        if not dose:
            logger.warning(f"Dosis {dose_id} no encontrada")
            return None

        now = as_aware(now) if now else utc_now()
        new_status = apply_dose_action(
            dose.status, dose.scheduled_for, self.dose_timezone(dose), action, now=now
        )

        try:
            dose.status = new_status
            if new_status == DoseStatus.TAKEN:
                dose.taken_at = as_aware(taken_at) if taken_at else now
            else:
                dose.taken_at = None

            self.db.commit()
            self.db.refresh(dose)

            logger.info(f"Dosis {dose_id} marcada como {new_status.value}")
            return self.to_response(dose, now=now)

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error registrando acción en dosis {dose_id}: {e}")
            raise e
