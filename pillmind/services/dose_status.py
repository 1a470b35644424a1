"""
Ciclo de vida de una dosis.

SCHEDULED -> TAKEN | SKIPPED por acción explícita (persistido).
SCHEDULED -> MISSED cuando termina el día local de la toma (derivado, nunca
se guarda). Mientras el día no termina la dosis sigue siendo editable.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pillmind.core.exceptions import DoseNotInteractableError
from pillmind.core.timezone_utils import ZoneLike, add_days_in_zone, as_aware, start_of_day_in_zone, utc_now
from pillmind.models.dose_instance import DoseStatus, EffectiveDoseStatus

# Días de calendario tras el día de la toma antes de considerarla MISSED
MISSED_GRACE_DAYS = 1

# Días de calendario durante los que se puede marcar TAKEN/SKIPPED
INTERACTION_CUTOFF_DAYS = 1

TERMINAL_STATUSES = {DoseStatus.TAKEN, DoseStatus.SKIPPED}


@dataclass(frozen=True)
class DoseStatusView:
    status: EffectiveDoseStatus
    interactable: bool


def _day_boundary(scheduled_for: datetime, zone: ZoneLike, days: int) -> datetime:
    day_start = start_of_day_in_zone(scheduled_for, zone)
    return add_days_in_zone(day_start, days, zone)


def missed_after(scheduled_for: datetime, zone: ZoneLike) -> datetime:
    """Instante a partir del cual una dosis SCHEDULED se muestra como MISSED"""
    return _day_boundary(scheduled_for, zone, MISSED_GRACE_DAYS)


def interactable_until(scheduled_for: datetime, zone: ZoneLike) -> datetime:
    """Instante a partir del cual la dosis pasa a ser de solo lectura"""
    return _day_boundary(scheduled_for, zone, INTERACTION_CUTOFF_DAYS)


def classify_dose(
        status: DoseStatus,
        scheduled_for: datetime,
        zone: ZoneLike,
        now: Optional[datetime] = None
) -> DoseStatusView:
    """Estado efectivo y si el usuario aún puede actuar sobre la dosis"""
    now = as_aware(now) if now else utc_now()
    status = DoseStatus(status)

    if status in TERMINAL_STATUSES:
        return DoseStatusView(EffectiveDoseStatus(status.value), interactable=False)

    if now >= missed_after(scheduled_for, zone):
        effective = EffectiveDoseStatus.MISSED
    else:
        effective = EffectiveDoseStatus.SCHEDULED

    return DoseStatusView(effective, interactable=now < interactable_until(scheduled_for, zone))


def apply_dose_action(
        status: DoseStatus,
        scheduled_for: datetime,
        zone: ZoneLike,
        action: DoseStatus,
        now: Optional[datetime] = None
) -> DoseStatus:
    """
    Validar la transición SCHEDULED -> TAKEN/SKIPPED.

    Lanza DoseNotInteractableError si la dosis ya es terminal o su día terminó.
    """
    action = DoseStatus(action)
    if action not in TERMINAL_STATUSES:
        raise DoseNotInteractableError(f"Acción no permitida: {action.value}")

    view = classify_dose(status, scheduled_for, zone, now=now)
    if not view.interactable:
        raise DoseNotInteractableError(
            f"La dosis programada para {as_aware(scheduled_for).isoformat()} "
            f"ya no admite cambios (estado {view.status.value})"
        )
    return action
