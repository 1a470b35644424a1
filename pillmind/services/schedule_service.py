"""
Servicio de gestión de horarios y generación de dosis
"""
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
from datetime import datetime
import logging

from pillmind.core.config import get_settings
from pillmind.core.exceptions import ScheduleValidationError
from pillmind.core.retry import RetryPolicy
from pillmind.core.timezone_utils import add_days_in_zone, as_aware, get_zone, utc_now
from pillmind.models.dose_instance import DoseInstance, DoseStatus
from pillmind.models.prescription import Prescription
from pillmind.models.schedule import Schedule
from pillmind.models.user import User
from pillmind.schemas.dose import GenerationResult, ScheduleGenerationResult
from pillmind.schemas.schedule import ScheduleConflict, ScheduleCreate, ScheduleUpdate
from pillmind.services.conflict_detector import check_schedule_conflicts
from pillmind.services.dose_expansion import expand_schedule
from pillmind.services.dose_persister import (
    BULK_INSERT_POLICY,
    SINGLE_INSERT_POLICY,
    DoseDraft,
    DosePersister,
    DoseStore,
    SqlAlchemyDoseStore,
)

logger = logging.getLogger(__name__)

# Campos que cambian los instantes generados: su edición rehace las dosis futuras
PATTERN_FIELDS = ("timezone", "days_of_week", "times", "start_date", "end_date")


def build_persister(store: DoseStore, sleep=None) -> DosePersister:
    """Persister con los presupuestos de reintento de la configuración"""
    settings = get_settings()
    bulk_policy = RetryPolicy.from_millis(
        settings.DOSE_BULK_MAX_ATTEMPTS,
        settings.DOSE_BULK_INITIAL_DELAY_MS,
        settings.DOSE_BULK_MAX_DELAY_MS,
        retry_on=BULK_INSERT_POLICY.retry_on,
    )
    item_policy = RetryPolicy.from_millis(
        settings.DOSE_ITEM_MAX_ATTEMPTS,
        settings.DOSE_ITEM_INITIAL_DELAY_MS,
        settings.DOSE_BULK_MAX_DELAY_MS,
        retry_on=SINGLE_INSERT_POLICY.retry_on,
    )
    if sleep is None:
        return DosePersister(store, bulk_policy, item_policy)
    return DosePersister(store, bulk_policy, item_policy, sleep=sleep)


class ScheduleService:
    """Servicio completo para gestión de horarios"""

    def __init__(self, db: Session, persister: Optional[DosePersister] = None):
        self.db = db
        self.persister = persister or build_persister(SqlAlchemyDoseStore(db))

    def get_prescription(self, prescription_id: int) -> Optional[Prescription]:
        """Obtener prescripción por ID"""
        prescription = self.db.query(Prescription).filter(Prescription.id == prescription_id).first()
        if not prescription:
            logger.warning(f"Prescripción {prescription_id} no encontrada")
        return prescription

    def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        """Obtener horario por ID"""
        schedule = self.db.query(Schedule).filter(Schedule.id == schedule_id).first()
        if not schedule:
            logger.warning(f"Horario {schedule_id} no encontrado")
        return schedule

    def list_schedules(self, prescription_id: int) -> List[Schedule]:
        """Horarios de una prescripción en orden de creación"""
        return self.db.query(Schedule).filter(
            Schedule.prescription_id == prescription_id
        ).order_by(Schedule.id).all()

    def check_conflicts(
            self,
            prescription_id: int,
            schedule_data,
            exclude_schedule_id: Optional[int] = None
    ) -> List[ScheduleConflict]:
        """Conflictos del horario candidato con los de la misma prescripción"""
        existing = self.list_schedules(prescription_id)
        conflicts = check_schedule_conflicts(schedule_data, existing, exclude_schedule_id)
        if conflicts:
            logger.info(
                f"Prescripción {prescription_id}: {len(conflicts)} conflicto(s) con horarios "
                f"{[c.conflicting_schedule_id for c in conflicts]}"
            )
        return conflicts

    def create_schedule(
            self,
            prescription_id: int,
            schedule_data: ScheduleCreate
    ) -> Tuple[Optional[Schedule], List[ScheduleConflict]]:
        """
        Crear horario si no choca con los existentes.

        Los conflictos se devuelven antes de guardar nada.
        """
        conflicts = self.check_conflicts(prescription_id, schedule_data)
        if conflicts:
            return None, conflicts

        try:
            logger.info(f"Creando horario para prescripción {prescription_id}")

            db_schedule = Schedule(
                prescription_id=prescription_id,
                timezone=schedule_data.timezone,
                days_of_week=[day.value for day in schedule_data.days_of_week],
                times=list(schedule_data.times),
                dose_quantity=schedule_data.dose_quantity,
                dose_unit=schedule_data.dose_unit,
                start_date=schedule_data.start_date,
                end_date=schedule_data.end_date
            )

            self.db.add(db_schedule)
            self.db.commit()
            self.db.refresh(db_schedule)

            logger.info(f"Horario creado exitosamente: ID {db_schedule.id}")
            return db_schedule, []

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creando horario: {e}")
            raise e

    def update_schedule(
            self,
            schedule_id: int,
            schedule_update: ScheduleUpdate,
            now: Optional[datetime] = None
    ) -> Tuple[Optional[Schedule], List[ScheduleConflict]]:
        """
        Actualizar horario validando conflictos con el resultado final.

        Si cambia el patrón (zona, días, horas o validez) las dosis futuras aún
        SCHEDULED se borran y se regenera el horizonte; TAKEN, SKIPPED y las
        pasadas se conservan. Si solo cambia cantidad/unidad se propaga a las
        dosis futuras.
        """
        schedule = self.get_schedule(schedule_id)
        if not schedule:
            return None, []

        update_data = schedule_update.dict(exclude_unset=True)
        merged = ScheduleCreate(**{**schedule.to_dict(), **update_data})

        conflicts = self.check_conflicts(schedule.prescription_id, merged, exclude_schedule_id=schedule_id)
        if conflicts:
            return None, conflicts

        before = {name: value for name, value in schedule.to_dict().items() if name in PATTERN_FIELDS}

        try:
            logger.info(f"Actualizando horario {schedule_id}")
            schedule.timezone = merged.timezone
            schedule.days_of_week = [day.value for day in merged.days_of_week]
            schedule.times = list(merged.times)
            schedule.dose_quantity = merged.dose_quantity
            schedule.dose_unit = merged.dose_unit
            schedule.start_date = merged.start_date
            schedule.end_date = merged.end_date

            self.db.commit()
            self.db.refresh(schedule)

            logger.info(f"Horario {schedule_id} actualizado exitosamente")

        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando horario {schedule_id}: {e}")
            raise e

        after = {name: value for name, value in schedule.to_dict().items() if name in PATTERN_FIELDS}
        if after != before:
            self.regenerate_future_doses(schedule, now=now)
        elif "dose_quantity" in update_data or "dose_unit" in update_data:
            self.update_scheduled_doses_quantity(schedule, now=now)

        return schedule, []

    def update_scheduled_doses_quantity(self, schedule: Schedule, now: Optional[datetime] = None) -> int:
        """Propagar cantidad/unidad a las dosis futuras aún SCHEDULED"""
        now = now or utc_now()
        try:
            updated = self.db.query(DoseInstance).filter(
                DoseInstance.schedule_id == schedule.id,
                DoseInstance.status == DoseStatus.SCHEDULED,
                DoseInstance.scheduled_for >= now
            ).update(
                {"quantity": schedule.dose_quantity, "unit": schedule.dose_unit},
                synchronize_session=False
            )
            self.db.commit()
            logger.info(f"Actualizadas {updated} dosis futuras del horario {schedule.id}")
            return updated
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error actualizando dosis del horario {schedule.id}: {e}")
            raise e

    def delete_future_doses(self, schedule_id: int, now: Optional[datetime] = None) -> int:
        """Borrar las dosis aún SCHEDULED posteriores a now; el historial no se toca"""
        now = as_aware(now) if now else utc_now()
        try:
            deleted = self.db.query(DoseInstance).filter(
                DoseInstance.schedule_id == schedule_id,
                DoseInstance.status == DoseStatus.SCHEDULED,
                DoseInstance.scheduled_for > now
            ).delete(synchronize_session=False)
            self.db.commit()
            logger.info(f"Borradas {deleted} dosis futuras del horario {schedule_id}")
            return deleted
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error borrando dosis futuras del horario {schedule_id}: {e}")
            raise e

    def regenerate_future_doses(
            self,
            schedule: Schedule,
            now: Optional[datetime] = None
    ) -> Tuple[int, Optional[GenerationResult]]:
        """Rehacer las dosis futuras de un horario tras cambiar su patrón"""
        now = as_aware(now) if now else utc_now()
        deleted = self.delete_future_doses(schedule.id, now=now)
        if schedule.prescription.as_needed:
            return deleted, None
        return deleted, self.generate_horizon(schedule.id, now=now)

    def delete_schedule(self, schedule_id: int, now: Optional[datetime] = None) -> Optional[int]:
        """
        Eliminar un horario y sus dosis futuras aún SCHEDULED.

        Las dosis pasadas y las registradas se conservan sin horario. Devuelve
        el número de dosis borradas, o None si el horario no existe.
        """
        schedule = self.get_schedule(schedule_id)
        if not schedule:
            return None

        deleted = self.delete_future_doses(schedule_id, now=now)
        try:
            self.db.delete(schedule)
            self.db.commit()
            logger.info(f"Horario {schedule_id} eliminado ({deleted} dosis futuras borradas)")
            return deleted
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error eliminando horario {schedule_id}: {e}")
            raise e

    def sync_user_timezone(self, user_id: int, timezone: str, now: Optional[datetime] = None) -> Optional[int]:
        """
        Mover todos los horarios de un usuario a otra zona horaria.

        Cada horario que cambia rehace sus dosis futuras. Devuelve el número
        de horarios actualizados, o None si el usuario no existe.
        """
        zone = get_zone(timezone)
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            logger.warning(f"Usuario {user_id} no encontrado")
            return None

        schedules = self.db.query(Schedule).join(Prescription).filter(
            Prescription.user_id == user_id,
            Schedule.timezone != zone.key
        ).order_by(Schedule.id).all()

        try:
            for schedule in schedules:
                schedule.timezone = zone.key
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error sincronizando zona horaria del usuario {user_id}: {e}")
            raise e

        for schedule in schedules:
            self.regenerate_future_doses(schedule, now=now)

        logger.info(f"Usuario {user_id}: {len(schedules)} horarios movidos a {zone.key}")
        return len(schedules)

    def generate_doses(
            self,
            schedule_id: int,
            window_from: datetime,
            window_to: datetime,
            now: Optional[datetime] = None
    ) -> GenerationResult:
        """
        Expandir un horario y persistir sus dosis dentro de la ventana.

        GenerationWindowTooLarge y ScheduleValidationError se propagan; los
        fallos de almacenamiento quedan en el resultado.
        """
        schedule = self.get_schedule(schedule_id)
        if not schedule:
            raise ScheduleValidationError(f"Horario {schedule_id} no encontrado")

        prescription = schedule.prescription
        if prescription.as_needed:
            raise ScheduleValidationError("No se pueden generar dosis para prescripciones PRN")

        expansion = expand_schedule(
            schedule,
            window_from,
            window_to,
            prescription_end_date=prescription.end_date,
            now=now
        )

        drafts = [
            DoseDraft(
                prescription_id=prescription.id,
                schedule_id=schedule.id,
                scheduled_for=instant,
                quantity=schedule.dose_quantity,
                unit=schedule.dose_unit
            )
            for instant in expansion.instants
        ]
        return self.persister.persist(drafts)

    def generate_horizon(
            self,
            schedule_id: int,
            horizon_days: Optional[int] = None,
            now: Optional[datetime] = None
    ) -> GenerationResult:
        """Generar dosis desde ahora hasta horizon_days días en la zona del horario"""
        schedule = self.get_schedule(schedule_id)
        if not schedule:
            raise ScheduleValidationError(f"Horario {schedule_id} no encontrado")

        now = now or utc_now()
        horizon_days = horizon_days or get_settings().GENERATION_HORIZON_DAYS
        window_to = add_days_in_zone(now, horizon_days, schedule.timezone)
        return self.generate_doses(schedule_id, now, window_to, now=now)

    def generate_for_prescription(
            self,
            prescription_id: int,
            window_from: datetime,
            window_to: datetime,
            now: Optional[datetime] = None
    ) -> List[ScheduleGenerationResult]:
        """Generar dosis para todos los horarios de una prescripción"""
        prescription = self.get_prescription(prescription_id)
        if not prescription:
            raise ScheduleValidationError(f"Prescripción {prescription_id} no encontrada")
        if prescription.as_needed:
            raise ScheduleValidationError("No se pueden generar dosis para prescripciones PRN")

        results = []
        for schedule in self.list_schedules(prescription_id):
            result = self.generate_doses(schedule.id, window_from, window_to, now=now)
            results.append(ScheduleGenerationResult(schedule_id=schedule.id, **result.dict()))

        logger.info(
            f"Prescripción {prescription_id}: generadas {sum(r.generated for r in results)}, "
            f"omitidas {sum(r.skipped for r in results)}"
        )
        return results
