"""
Esquemas Pydantic para Dosis y Generación
"""
from pydantic import BaseModel, validator, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal

from pillmind.models.dose_instance import DoseStatus, EffectiveDoseStatus
from pillmind.models.schedule import DoseUnit


def _ensure_utc(v: datetime) -> datetime:
    # Un datetime sin zona se interpreta como UTC
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class GenerationResult(BaseModel):
    """Resultado de persistir las dosis candidatas de un horario"""
    requested: int = 0
    generated: int = 0
    skipped: int = 0
    errors: List[str] = []

    @property
    def failed(self) -> int:
        """Candidatas que no se insertaron ni se omitieron"""
        return self.requested - self.generated - self.skipped

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


class ScheduleGenerationResult(GenerationResult):
    """Resultado de generación por horario"""
    schedule_id: int


class GenerationRequest(BaseModel):
    """Solicitud de generación de dosis"""
    prescription_id: int = Field(..., description="ID de la prescripción")
    schedule_id: Optional[int] = Field(None, description="ID del horario (todos si se omite)")
    window_from: datetime = Field(..., alias="from", description="Inicio de la ventana (instante absoluto)")
    window_to: datetime = Field(..., alias="to", description="Fin de la ventana (instante absoluto)")

    @validator('window_from', 'window_to')
    def validate_instant(cls, v):
        return _ensure_utc(v)

    @validator('window_to')
    def validate_window(cls, v, values):
        if 'window_from' in values and v < values['window_from']:
            raise ValueError('El fin de la ventana debe ser posterior al inicio')
        return v

    class Config:
        populate_by_name = True


class PrescriptionGenerationResponse(BaseModel):
    """Resumen de generación para una prescripción"""
    message: str
    total_generated: int = 0
    total_skipped: int = 0
    results: List[ScheduleGenerationResult] = []


class DoseAction(BaseModel):
    """Acción explícita del usuario sobre una dosis"""
    status: DoseStatus = Field(..., description="TAKEN o SKIPPED")
    taken_at: Optional[datetime] = Field(None, description="Momento de la toma (por defecto ahora)")

    @validator('status')
    def validate_status(cls, v):
        if v == DoseStatus.SCHEDULED:
            raise ValueError('Solo se permite marcar TAKEN o SKIPPED')
        return v

    @validator('taken_at')
    def validate_taken_at(cls, v):
        if v is not None:
            return _ensure_utc(v)
        return v


class DoseResponse(BaseModel):
    """Dosis con su estado efectivo"""
    id: int
    prescription_id: int
    schedule_id: Optional[int] = None
    scheduled_for: datetime
    taken_at: Optional[datetime] = None
    stored_status: DoseStatus
    status: EffectiveDoseStatus
    interactable: bool
    quantity: Optional[Decimal] = None
    unit: Optional[DoseUnit] = None


class HorizonSweepRequest(BaseModel):
    """Parámetros del barrido de generación"""
    horizon_days: Optional[int] = Field(None, ge=1, le=365, description="Días hacia adelante (por defecto de configuración)")


class SweepResponse(BaseModel):
    """Respuesta genérica de los jobs programados"""
    success: bool = True
    totals: Dict[str, int] = {}
    results: List[Dict[str, Any]] = []
    timestamp: datetime
