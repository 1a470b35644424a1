"""
Endpoints de jobs programados (Authorization: Bearer <CRON_SECRET>)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
import logging

from pillmind.core.database import get_db, get_session_factory
from pillmind.core.dependencies import get_alert_notifier
from pillmind.core.timezone_utils import utc_now
from pillmind.schemas.dose import HorizonSweepRequest, SweepResponse
from pillmind.services.generation_sweep import GenerationSweep
from pillmind.services.low_stock_service import LowStockAlertService
from pillmind.services.notification_claims import AlertNotifier
from pillmind.services.reminder_service import DoseReminderService

logger = logging.getLogger(__name__)

router = APIRouter()


# Los barridos bloquean (reintentos con espera): se ejecutan en el threadpool
@router.post("/generate-doses", response_model=SweepResponse)
def run_generation_sweep(
        request: Optional[HorizonSweepRequest] = None,
        session_factory=Depends(get_session_factory)
):
    """
    Generar el horizonte de dosis de todos los horarios activos
    """
    horizon_days = request.horizon_days if request else None
    sweep = GenerationSweep(session_factory, horizon_days=horizon_days).run()

    return SweepResponse(
        success=sweep.totals["errors"] == 0,
        totals=sweep.totals,
        results=sweep.results,
        timestamp=utc_now()
    )


@router.post("/low-stock-alerts", response_model=SweepResponse)
def run_low_stock_alerts(
        db: Session = Depends(get_db),
        notifier: AlertNotifier = Depends(get_alert_notifier)
):
    """
    Enviar alertas diarias de stock bajo
    """
    sweep = LowStockAlertService(db, notifier).run()

    return SweepResponse(
        success=True,
        totals=sweep.totals,
        results=sweep.results,
        timestamp=utc_now()
    )


@router.post("/dose-reminders", response_model=SweepResponse)
def run_dose_reminders(
        db: Session = Depends(get_db),
        notifier: AlertNotifier = Depends(get_alert_notifier)
):
    """
    Enviar recordatorios de las dosis que vencen en los próximos minutos
    """
    sweep = DoseReminderService(db, notifier).run()

    return SweepResponse(
        success=True,
        totals=sweep.totals,
        results=sweep.results,
        timestamp=utc_now()
    )
