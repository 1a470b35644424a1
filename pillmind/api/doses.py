"""
Endpoints de dosis
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List
import logging

from pillmind.core.database import get_db
from pillmind.core.dependencies import InstantRangeParams, get_instant_range_params
from pillmind.core.exceptions import DoseNotInteractableError, GenerationWindowTooLarge, ScheduleValidationError
from pillmind.schemas.dose import (
    DoseAction,
    DoseResponse,
    GenerationRequest,
    PrescriptionGenerationResponse,
    ScheduleGenerationResult
)
from pillmind.services.dose_service import DoseService
from pillmind.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

# Endpoints síncronos: la persistencia reintenta con espera bloqueante
router = APIRouter()


@router.post("/generate", response_model=PrescriptionGenerationResponse)
def generate_doses(
        request: GenerationRequest,
        db: Session = Depends(get_db)
):
    """
    Generar dosis de un horario o de todos los horarios de una prescripción
    """
    schedule_service = ScheduleService(db)

    if not schedule_service.get_prescription(request.prescription_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Prescripción no encontrada"
        )

    try:
        if request.schedule_id is not None:
            schedule = schedule_service.get_schedule(request.schedule_id)
            if not schedule or schedule.prescription_id != request.prescription_id:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Horario no encontrado en la prescripción"
                )
            result = schedule_service.generate_doses(
                schedule.id, request.window_from, request.window_to
            )
            results = [ScheduleGenerationResult(schedule_id=schedule.id, **result.dict())]
        else:
            results = schedule_service.generate_for_prescription(
                request.prescription_id, request.window_from, request.window_to
            )
    except (GenerationWindowTooLarge, ScheduleValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    total_generated = sum(r.generated for r in results)
    has_errors = any(r.has_errors for r in results)

    response = PrescriptionGenerationResponse(
        message=(
            f"Generación parcial: {total_generated} dosis creadas con errores"
            if has_errors else f"Se generaron {total_generated} dosis"
        ),
        total_generated=total_generated,
        total_skipped=sum(r.skipped for r in results),
        results=results
    )

    # Fallo de almacenamiento: 500 con el detalle parcial en el cuerpo
    if has_errors:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=jsonable_encoder(response)
        )
    return response


@router.get("", response_model=List[DoseResponse])
def list_doses(
        prescription_id: int = Query(..., description="ID de la prescripción"),
        instant_range: InstantRangeParams = Depends(get_instant_range_params),
        db: Session = Depends(get_db)
):
    """
    Listar dosis de una prescripción con su estado efectivo
    """
    dose_service = DoseService(db)
    return dose_service.list_doses(
        prescription_id,
        start=instant_range.start,
        end=instant_range.end
    )


@router.patch("/{dose_id}", response_model=DoseResponse)
def update_dose(
        dose_id: int,
        action: DoseAction,
        db: Session = Depends(get_db)
):
    """
    Marcar una dosis como TAKEN o SKIPPED
    """
    dose_service = DoseService(db)

    try:
        dose = dose_service.record_action(dose_id, action.status, taken_at=action.taken_at)
    except DoseNotInteractableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=e.message
        )

    if not dose:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dosis no encontrada"
        )

    return dose
