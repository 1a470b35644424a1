"""
Errores tipados del motor de dosis.

Cada error pertenece a una categoría cerrada (ErrorKind) que decide la política
de reintentos: solo los errores TRANSIENT se reintentan, y únicamente cuando su
TransientReason está en la política del llamador. La clasificación de errores
del driver se hace una sola vez, en el adaptador de almacenamiento.
"""
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    """Categorías de error"""
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    VALIDATION = "validation"


class TransientReason(str, enum.Enum):
    """Motivos de error transitorio reintentables"""
    TIMEOUT = "timeout"
    CONNECTION_RESET = "connection_reset"
    UNIQUE_RACE = "unique_race"


class PillmindError(Exception):
    """Base de todos los errores del motor"""
    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
        }

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r})"


class ScheduleValidationError(PillmindError, ValueError):
    """Horario mal formado: días/horas vacíos, hora inválida, zona desconocida"""
    kind = ErrorKind.VALIDATION


class GenerationWindowTooLarge(PillmindError, ValueError):
    """La ventana de generación supera el máximo permitido"""
    kind = ErrorKind.VALIDATION

    def __init__(self, requested_days: float, max_days: int):
        super().__init__(
            f"El período de generación excede el máximo permitido ({max_days} días). "
            f"Solicitado: {requested_days:.1f} días"
        )
        self.requested_days = requested_days
        self.max_days = max_days


class DoseNotInteractableError(PillmindError):
    """La dosis ya no admite cambios (terminal o fuera de plazo)"""
    kind = ErrorKind.VALIDATION


class StoreError(PillmindError):
    """Error del almacenamiento"""


class TransientStoreError(StoreError):
    """Error transitorio del almacenamiento, candidato a reintento"""
    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, reason: TransientReason, cause: Optional[BaseException] = None):
        super().__init__(message, cause=cause)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason.value
        return data


class PermanentStoreError(StoreError):
    """Error permanente del almacenamiento, nunca se reintenta"""
    kind = ErrorKind.PERMANENT
