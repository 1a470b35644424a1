"""
Expansión de un horario semanal en instantes UTC de toma.

Función pura: no toca el almacenamiento. Recibe cualquier objeto con los
atributos days_of_week, times, timezone, start_date y end_date (el modelo
Schedule o un ScheduleCreate).
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional
import logging

from pillmind.core.exceptions import GenerationWindowTooLarge
from pillmind.core.timezone_utils import (
    add_days_in_zone,
    get_zone,
    local_date_in_zone,
    local_time_to_utc,
    start_of_date_in_zone,
    utc_now,
    weekday_in_zone,
    as_aware,
)
from pillmind.models.schedule import Weekday

logger = logging.getLogger(__name__)

# Período máximo de generación (1 año); acota tiempo y memoria de una llamada
MAX_GENERATION_DAYS = 365


@dataclass
class ExpansionResult:
    """Instantes candidatos en orden cronológico"""
    instants: List[datetime] = field(default_factory=list)

    @property
    def requested(self) -> int:
        return len(self.instants)


def _latest(*days: Optional[date]) -> date:
    return max(d for d in days if d is not None)


def _earliest(*days: Optional[date]) -> date:
    return min(d for d in days if d is not None)


def check_generation_window(window_from: datetime, window_to: datetime) -> None:
    """Rechazar ventanas de más de MAX_GENERATION_DAYS"""
    span = as_aware(window_to) - as_aware(window_from)
    if span > timedelta(days=MAX_GENERATION_DAYS):
        raise GenerationWindowTooLarge(span.total_seconds() / 86400, MAX_GENERATION_DAYS)


def expand_schedule(
        schedule,
        window_from: datetime,
        window_to: datetime,
        prescription_end_date: Optional[date] = None,
        now: Optional[datetime] = None
) -> ExpansionResult:
    """
    Generar los instantes de toma de un horario dentro de [window_from, window_to].

    La ventana se recorre por días de calendario de la zona del horario y se
    recorta con la validez del horario y la fecha de fin de la prescripción
    (ambas inclusivas). Nunca se generan instantes <= now.

    Los extremos se redondean a días completos de la zona: un window_to a las
    00:00 locales incluye todas las horas de ese día, aunque caigan después de
    window_to. Lo mismo vale para window_from respecto al inicio del día.
    """
    check_generation_window(window_from, window_to)

    now = as_aware(now) if now else utc_now()
    result = ExpansionResult()

    days = {Weekday(day) for day in (schedule.days_of_week or [])}
    times = list(schedule.times or [])
    if not days or not times:
        return result

    zone = get_zone(schedule.timezone)

    first_day = _latest(
        local_date_in_zone(window_from, zone),
        local_date_in_zone(now, zone),
        schedule.start_date,
    )
    last_day = _earliest(
        local_date_in_zone(window_to, zone),
        schedule.end_date,
        prescription_end_date,
    )
    if first_day > last_day:
        return result

    candidates = set()
    current = start_of_date_in_zone(first_day, zone)
    while local_date_in_zone(current, zone) <= last_day:
        if weekday_in_zone(current, zone) in days:
            for time_of_day in times:
                instant = local_time_to_utc(current, time_of_day, zone)
                if instant > now:
                    candidates.add(instant)
        current = add_days_in_zone(current, 1, zone)

    result.instants = sorted(candidates)
    logger.debug(
        f"Horario {getattr(schedule, 'id', None)}: {result.requested} instantes "
        f"entre {first_day} y {last_day} ({zone.key})"
    )
    return result
