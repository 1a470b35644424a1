"""
Barrido periódico de generación de dosis.

Cada horario activo se procesa en su propia tarea y con su propia sesión, de
modo que los reintentos de un horario no bloquean a los demás.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from pillmind.core.config import get_settings
from pillmind.core.exceptions import PillmindError
from pillmind.core.timezone_utils import as_aware, utc_now
from pillmind.models.prescription import Prescription
from pillmind.models.schedule import Schedule
from pillmind.services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)


@dataclass
class GenerationSweepResult:
    """Resultados por horario y totales del barrido"""
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def totals(self) -> Dict[str, int]:
        totals = {"schedules": len(self.results), "generated": 0, "skipped": 0, "failed": 0, "errors": 0}
        for item in self.results:
            totals["generated"] += item.get("generated", 0)
            totals["skipped"] += item.get("skipped", 0)
            totals["failed"] += item.get("failed", 0)
            if item.get("errors"):
                totals["errors"] += 1
        return totals


class GenerationSweep:
    """Genera el horizonte de dosis de todos los horarios activos"""

    def __init__(
            self,
            session_factory: Callable[[], Session],
            horizon_days: Optional[int] = None,
            max_workers: Optional[int] = None,
            service_factory: Callable[[Session], ScheduleService] = ScheduleService
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.horizon_days = horizon_days or settings.GENERATION_HORIZON_DAYS
        self.max_workers = max_workers or settings.GENERATION_WORKERS
        self.service_factory = service_factory

    def active_schedule_ids(self, now: datetime) -> List[int]:
        """Horarios de prescripciones no PRN cuya validez no ha terminado"""
        db = self.session_factory()
        try:
            # Margen de un día para zonas detrás de UTC; la expansión recorta
            # con la fecha local exacta
            earliest_end = now.date() - timedelta(days=1)
            rows = db.query(Schedule.id).join(Prescription).filter(
                Prescription.as_needed.is_(False),
                or_(Prescription.end_date.is_(None), Prescription.end_date >= earliest_end),
                or_(Schedule.end_date.is_(None), Schedule.end_date >= earliest_end),
            ).order_by(Schedule.id).all()
            return [row.id for row in rows]
        finally:
            db.close()

    def _run_one(self, schedule_id: int, now: datetime) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            service = self.service_factory(db)
            result = service.generate_horizon(schedule_id, self.horizon_days, now=now)
            return {
                "schedule_id": schedule_id,
                "generated": result.generated,
                "skipped": result.skipped,
                "failed": result.failed,
                "errors": list(result.errors),
            }
        finally:
            db.close()

    def run(self, now: Optional[datetime] = None) -> GenerationSweepResult:
        """Ejecutar el barrido; un horario que falla se reporta, no se propaga"""
        now = as_aware(now) if now else utc_now()
        schedule_ids = self.active_schedule_ids(now)
        sweep = GenerationSweepResult()

        logger.info(
            f"Barrido de generación: {len(schedule_ids)} horarios, horizonte {self.horizon_days} días, "
            f"{self.max_workers} workers"
        )
        if not schedule_ids:
            return sweep

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(self._run_one, schedule_id, now): schedule_id
                for schedule_id in schedule_ids
            }
            for future in as_completed(futures):
                schedule_id = futures[future]
                try:
                    sweep.results.append(future.result())
                except PillmindError as e:
                    logger.error(f"Horario {schedule_id} rechazado en el barrido: {e}")
                    sweep.results.append({"schedule_id": schedule_id, "errors": [e.message]})
                except Exception as e:
                    logger.error(f"Error inesperado generando horario {schedule_id}: {e}")
                    sweep.results.append({"schedule_id": schedule_id, "errors": [str(e)]})

        sweep.results.sort(key=lambda item: item["schedule_id"])
        logger.info(f"Barrido de generación completado: {sweep.totals}")
        return sweep
