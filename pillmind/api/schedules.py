"""
Endpoints de horarios
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
import logging

from pillmind.core.database import get_db
from pillmind.schemas.schedule import (
    ScheduleConflict,
    ScheduleCreate,
    ScheduleCreateResult,
    ScheduleDeleteResult,
    ScheduleResponse,
    ScheduleUpdate,
    TimezoneSyncRequest,
    TimezoneSyncResult
)
from pillmind.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

# Endpoints síncronos: la generación puede esperar entre reintentos y debe
# ejecutarse en el threadpool, no en el event loop
router = APIRouter()


def conflict_exception(conflicts: List[ScheduleConflict]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": "El horario choca con otros horarios de la prescripción",
            "conflicts": [conflict.dict() for conflict in conflicts]
        }
    )


@router.get("/prescriptions/{prescription_id}/schedules", response_model=List[ScheduleResponse])
def list_schedules(
        prescription_id: int,
        db: Session = Depends(get_db)
):
    """
    Listar horarios de una prescripción
    """
    schedule_service = ScheduleService(db)

    if not schedule_service.get_prescription(prescription_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Prescripción no encontrada"
        )

    return schedule_service.list_schedules(prescription_id)


@router.post(
    "/prescriptions/{prescription_id}/schedules",
    response_model=ScheduleCreateResult,
    status_code=status.HTTP_201_CREATED
)
def create_schedule(
        prescription_id: int,
        schedule_data: ScheduleCreate,
        db: Session = Depends(get_db)
):
    """
    Crear horario y generar las dosis del horizonte por defecto
    """
    schedule_service = ScheduleService(db)

    prescription = schedule_service.get_prescription(prescription_id)
    if not prescription:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Prescripción no encontrada"
        )

    # Verificar conflictos antes de guardar
    schedule, conflicts = schedule_service.create_schedule(prescription_id, schedule_data)
    if conflicts:
        raise conflict_exception(conflicts)

    # Las prescripciones PRN no generan dosis
    generation = None
    if not prescription.as_needed:
        generation = schedule_service.generate_horizon(schedule.id)

    return ScheduleCreateResult(
        schedule=ScheduleResponse.from_orm(schedule),
        generation=generation
    )


@router.put("/schedules/{schedule_id}", response_model=ScheduleResponse)
def update_schedule(
        schedule_id: int,
        schedule_update: ScheduleUpdate,
        db: Session = Depends(get_db)
):
    """
    Actualizar horario
    """
    schedule_service = ScheduleService(db)

    if not schedule_service.get_schedule(schedule_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Horario no encontrado"
        )

    try:
        schedule, conflicts = schedule_service.update_schedule(schedule_id, schedule_update)
    except ValueError as e:
        # El horario resultante de la mezcla no es válido
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    if conflicts:
        raise conflict_exception(conflicts)

    return schedule


@router.get("/schedules/{schedule_id}/conflicts", response_model=List[ScheduleConflict])
def get_schedule_conflicts(
        schedule_id: int,
        db: Session = Depends(get_db)
):
    """
    Conflictos de un horario guardado con los demás de su prescripción
    """
    schedule_service = ScheduleService(db)

    schedule = schedule_service.get_schedule(schedule_id)
    if not schedule:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Horario no encontrado"
        )

    return schedule_service.check_conflicts(
        schedule.prescription_id,
        schedule,
        exclude_schedule_id=schedule_id
    )


@router.delete("/schedules/{schedule_id}", response_model=ScheduleDeleteResult)
def delete_schedule(
        schedule_id: int,
        db: Session = Depends(get_db)
):
    """
    Eliminar horario y sus dosis futuras pendientes
    """
    schedule_service = ScheduleService(db)

    deleted = schedule_service.delete_schedule(schedule_id)
    if deleted is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Horario no encontrado"
        )

    return ScheduleDeleteResult(
        message="Horario eliminado exitosamente",
        deleted_doses_count=deleted
    )


@router.post("/users/{user_id}/schedules/timezone", response_model=TimezoneSyncResult)
def sync_schedules_timezone(
        user_id: int,
        request: TimezoneSyncRequest,
        db: Session = Depends(get_db)
):
    """
    Mover todos los horarios del usuario a una zona horaria
    """
    schedule_service = ScheduleService(db)

    updated = schedule_service.sync_user_timezone(user_id, request.timezone)
    if updated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Usuario no encontrado"
        )

    return TimezoneSyncResult(
        message=f"{updated} horarios actualizados a {request.timezone}",
        updated_count=updated
    )
