"""
Esquemas Pydantic para Horarios
"""
from pydantic import BaseModel, validator, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal

from pillmind.core.timezone_utils import WEEKDAYS, get_zone, normalize_time_of_day
from pillmind.models.schedule import Weekday, DoseUnit
from pillmind.schemas.dose import GenerationResult


def _ordered_weekdays(values) -> List[Weekday]:
    unique = {Weekday(v) for v in values}
    return [day for day in WEEKDAYS if day in unique]


def _ordered_times(values) -> List[str]:
    return sorted({normalize_time_of_day(v) for v in values})


# Esquemas base
class ScheduleBase(BaseModel):
    """Base para esquemas de horario"""
    timezone: str = Field(..., min_length=1, max_length=64, description="Zona horaria IANA (ej: Europe/Madrid)")
    days_of_week: List[Weekday] = Field(..., description="Días de la semana (MON..SUN)")
    times: List[str] = Field(..., description="Horas locales en formato HH:MM")
    dose_quantity: Optional[Decimal] = Field(None, gt=0, description="Cantidad por toma")
    dose_unit: Optional[DoseUnit] = Field(None, description="Unidad de la dosis")
    start_date: Optional[date] = Field(None, description="Inicio de validez (opcional)")
    end_date: Optional[date] = Field(None, description="Fin de validez (opcional)")

    @validator('timezone')
    def validate_timezone(cls, v):
        get_zone(v)
        return v

    @validator('days_of_week')
    def validate_days(cls, v):
        if not v:
            raise ValueError('Se requiere al menos un día de la semana')
        return _ordered_weekdays(v)

    @validator('times')
    def validate_times(cls, v):
        if not v:
            raise ValueError('Se requiere al menos una hora')
        return _ordered_times(v)

    @validator('end_date')
    def validate_end_date(cls, v, values):
        if v and values.get('start_date') and v < values['start_date']:
            raise ValueError('La fecha de fin debe ser igual o posterior a la fecha de inicio')
        return v


class ScheduleCreate(ScheduleBase):
    """Esquema para crear horario"""
    pass


class ScheduleUpdate(BaseModel):
    """Esquema para actualizar horario"""
    timezone: Optional[str] = Field(None, min_length=1, max_length=64)
    days_of_week: Optional[List[Weekday]] = None
    times: Optional[List[str]] = None
    dose_quantity: Optional[Decimal] = Field(None, gt=0)
    dose_unit: Optional[DoseUnit] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @validator('timezone')
    def validate_timezone(cls, v):
        if v is not None:
            get_zone(v)
        return v

    @validator('days_of_week')
    def validate_days(cls, v):
        if v is not None:
            if not v:
                raise ValueError('Se requiere al menos un día de la semana')
            return _ordered_weekdays(v)
        return v

    @validator('times')
    def validate_times(cls, v):
        if v is not None:
            if not v:
                raise ValueError('Se requiere al menos una hora')
            return _ordered_times(v)
        return v


class ScheduleResponse(BaseModel):
    """Esquema de respuesta de horario"""
    id: int
    prescription_id: int
    timezone: str
    days_of_week: List[Weekday]
    times: List[str]
    dose_quantity: Optional[Decimal] = None
    dose_unit: Optional[DoseUnit] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduleConflict(BaseModel):
    """Conflicto entre dos horarios de la misma prescripción"""
    conflicting_schedule_id: Optional[int] = None
    conflicting_weekdays: List[Weekday] = []
    conflicting_times: List[str] = []


class ScheduleCreateResult(BaseModel):
    """Horario creado y resultado de la generación inicial"""
    schedule: ScheduleResponse
    generation: Optional[GenerationResult] = None


class ScheduleDeleteResult(BaseModel):
    """Resultado de eliminar un horario"""
    message: str
    deleted_doses_count: int = 0


class TimezoneSyncRequest(BaseModel):
    """Nueva zona horaria para todos los horarios de un usuario"""
    timezone: str = Field(..., min_length=1, max_length=64, description="Zona horaria IANA")

    @validator('timezone')
    def validate_timezone(cls, v):
        return get_zone(v).key


class TimezoneSyncResult(BaseModel):
    """Horarios movidos a la nueva zona"""
    message: str
    updated_count: int = 0
