"""
Utilidades de calendario por zona horaria.

Todas las funciones reciben instantes absolutos (datetime con zona; un datetime
naive se interpreta como UTC) y devuelven instantes en UTC. Las horas locales
inexistentes (hueco de primavera) se resuelven al primer instante válido tras
el hueco; las horas duplicadas (retroceso de otoño) a su primera ocurrencia.
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pillmind.core.exceptions import ScheduleValidationError
from pillmind.models.schedule import Weekday

ZoneLike = Union[str, ZoneInfo]

TIME_OF_DAY_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

# datetime.weekday(): lunes = 0
WEEKDAYS = [
    Weekday.MON,
    Weekday.TUE,
    Weekday.WED,
    Weekday.THU,
    Weekday.FRI,
    Weekday.SAT,
    Weekday.SUN,
]


@lru_cache(maxsize=256)
def _load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleValidationError(f"Zona horaria desconocida: {name}", cause=e)


def get_zone(zone: ZoneLike) -> ZoneInfo:
    """Obtener ZoneInfo a partir de un nombre IANA"""
    if isinstance(zone, ZoneInfo):
        return zone
    if not zone or not isinstance(zone, str):
        raise ScheduleValidationError(f"Zona horaria inválida: {zone!r}")
    return _load_zone(zone)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Validar una hora "HH:mm" y devolver (hora, minuto)"""
    if not isinstance(value, str):
        raise ScheduleValidationError(f"Formato de hora inválido: {value!r}. Use HH:MM")
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise ScheduleValidationError(f"Formato de hora inválido: {value!r}. Use HH:MM")
    return int(match.group(1)), int(match.group(2))


def normalize_time_of_day(value: str) -> str:
    """"8:05" -> "08:05" """
    hour, minute = parse_time_of_day(value)
    return f"{hour:02d}:{minute:02d}"


def resolve_local(naive: datetime, zone: ZoneLike) -> datetime:
    """
    Convertir una hora local (naive) de la zona a un instante UTC.

    Hueco de primavera: devuelve el instante de la transición, que es el
    primer instante válido después del hueco.
    Retroceso de otoño: fold=0 es la primera ocurrencia.
    """
    tz = get_zone(zone)
    candidate = naive.replace(tzinfo=tz, fold=0).astimezone(timezone.utc)
    if candidate.astimezone(tz).replace(tzinfo=None) == naive:
        return candidate

    # Hueco: fold=1 cae antes de la transición y fold=0 después
    before = naive.replace(tzinfo=tz, fold=1).astimezone(timezone.utc)
    after = candidate
    if after < before:
        before, after = after, before
    offset_after = after.astimezone(tz).utcoffset()

    low, high = 0, int((after - before).total_seconds())
    while low < high:
        middle = (low + high) // 2
        instant = before + timedelta(seconds=middle)
        if instant.astimezone(tz).utcoffset() == offset_after:
            high = middle
        else:
            low = middle + 1
    return before + timedelta(seconds=low)


def local_date_in_zone(instant: datetime, zone: ZoneLike) -> date:
    """Fecha de calendario del instante vista en la zona"""
    return as_aware(instant).astimezone(get_zone(zone)).date()


def start_of_day_in_zone(instant: datetime, zone: ZoneLike) -> datetime:
    """00:00:00.000 del día local que contiene al instante, como instante UTC"""
    day = local_date_in_zone(instant, zone)
    return resolve_local(datetime.combine(day, time()), zone)


def start_of_date_in_zone(day: date, zone: ZoneLike) -> datetime:
    """00:00 de una fecha de calendario en la zona, como instante UTC"""
    return resolve_local(datetime.combine(day, time()), zone)


def weekday_in_zone(instant: datetime, zone: ZoneLike) -> Weekday:
    """Día de la semana del instante visto en la zona"""
    return WEEKDAYS[local_date_in_zone(instant, zone).weekday()]


def local_time_to_utc(day_instant: datetime, time_of_day: str, zone: ZoneLike) -> datetime:
    """Combinar el día local de day_instant con una hora "HH:mm" de la zona"""
    hour, minute = parse_time_of_day(time_of_day)
    day = local_date_in_zone(day_instant, zone)
    return resolve_local(datetime.combine(day, time(hour, minute)), zone)


def add_days_in_zone(instant: datetime, days: int, zone: ZoneLike) -> datetime:
    """Avanzar días de calendario conservando la hora de pared local"""
    tz = get_zone(zone)
    local = as_aware(instant).astimezone(tz).replace(tzinfo=None)
    return resolve_local(local + timedelta(days=days), tz)
