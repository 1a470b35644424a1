"""
Detección de conflictos entre horarios de una misma prescripción
"""
from datetime import date
from typing import Iterable, List, Optional

from pillmind.models.schedule import Weekday
from pillmind.schemas.schedule import ScheduleConflict


def date_ranges_overlap(
        start1: Optional[date],
        end1: Optional[date],
        start2: Optional[date],
        end2: Optional[date]
) -> bool:
    """
    Verificar si dos rangos de fechas se solapan.

    Un límite ausente es abierto en esa dirección. Solo no hay solapamiento
    cuando un rango termina estrictamente antes de que empiece el otro.
    """
    if end1 is not None and start2 is not None and end1 < start2:
        return False
    if end2 is not None and start1 is not None and end2 < start1:
        return False
    return True


def check_schedule_conflicts(
        candidate,
        existing_schedules: Iterable,
        exclude_schedule_id: Optional[int] = None
) -> List[ScheduleConflict]:
    """
    Comparar un horario candidato con los existentes.

    Hay conflicto cuando coinciden a la vez la ventana de validez, al menos un
    día de la semana y al menos una hora idéntica (08:00 y 08:05 no chocan).
    """
    conflicts = []
    candidate_days = [Weekday(day) for day in (candidate.days_of_week or [])]
    candidate_times = list(candidate.times or [])

    for existing in existing_schedules:
        # Omitir el horario que se está actualizando
        if exclude_schedule_id is not None and existing.id == exclude_schedule_id:
            continue

        existing_days = {Weekday(day) for day in (existing.days_of_week or [])}
        existing_times = set(existing.times or [])

        shared_days = [day for day in candidate_days if day in existing_days]
        if not shared_days:
            continue

        shared_times = [time for time in candidate_times if time in existing_times]
        if not shared_times:
            continue

        if not date_ranges_overlap(
                candidate.start_date,
                candidate.end_date,
                existing.start_date,
                existing.end_date
        ):
            continue

        conflicts.append(ScheduleConflict(
            conflicting_schedule_id=existing.id,
            conflicting_weekdays=shared_days,
            conflicting_times=shared_times
        ))

    return conflicts
