"""
Tests de lectura de dosis y registro de tomas
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pillmind.core.exceptions import DoseNotInteractableError
from pillmind.models import DoseInstance, DoseStatus, EffectiveDoseStatus
from pillmind.services.dose_service import DoseService
from pillmind.services.schedule_service import ScheduleService
from tests.factories import make_schedule


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def generated(db_session, prescription):
    """Lunes y miércoles 09:00 UTC del 1 al 14 de abril de 2024"""
    schedule = make_schedule(db_session, prescription)
    ScheduleService(db_session).generate_doses(
        schedule.id, utc(2024, 4, 1), utc(2024, 4, 14, 23, 59), now=utc(2024, 3, 31)
    )
    return schedule


@pytest.fixture()
def service(db_session):
    return DoseService(db_session)


def dose_at(db_session, instant):
    return db_session.query(DoseInstance).filter(DoseInstance.scheduled_for == instant).one()


class TestListDoses:
    def test_effective_status(self, service, prescription, generated):
        doses = service.list_doses(prescription.id, now=utc(2024, 4, 2, 12))
        assert [d.scheduled_for for d in doses] == [
            utc(2024, 4, 1, 9), utc(2024, 4, 3, 9), utc(2024, 4, 8, 9), utc(2024, 4, 10, 9)
        ]
        assert doses[0].status == EffectiveDoseStatus.MISSED
        assert doses[0].stored_status == DoseStatus.SCHEDULED
        assert not doses[0].interactable
        assert doses[1].status == EffectiveDoseStatus.SCHEDULED
        assert doses[1].interactable

    def test_range_filter(self, service, prescription, generated):
        doses = service.list_doses(prescription.id, start=utc(2024, 4, 2), end=utc(2024, 4, 9), now=utc(2024, 4, 2))
        assert [d.scheduled_for for d in doses] == [utc(2024, 4, 3, 9), utc(2024, 4, 8, 9)]

    def test_dose_without_schedule_uses_user_timezone(self, service, db_session, prescription):
        # 23:30 UTC del 1 de abril ya es 2 de abril en Madrid
        dose = DoseInstance(
            prescription_id=prescription.id,
            scheduled_for=utc(2024, 4, 1, 23, 30),
            quantity=Decimal("1"),
        )
        db_session.add(dose)
        db_session.commit()

        [view] = service.list_doses(prescription.id, now=utc(2024, 4, 2, 12))
        assert view.status == EffectiveDoseStatus.SCHEDULED
        assert view.interactable


class TestRecordAction:
    def test_mark_taken(self, service, db_session, generated):
        dose = dose_at(db_session, utc(2024, 4, 3, 9))
        now = utc(2024, 4, 3, 9, 15)

        response = service.record_action(dose.id, DoseStatus.TAKEN, now=now)

        assert response.status == EffectiveDoseStatus.TAKEN
        assert response.taken_at == now
        assert not response.interactable

    def test_mark_skipped_clears_taken_at(self, service, db_session, generated):
        dose = dose_at(db_session, utc(2024, 4, 3, 9))
        response = service.record_action(dose.id, DoseStatus.SKIPPED, now=utc(2024, 4, 3, 10))
        assert response.status == EffectiveDoseStatus.SKIPPED
        assert response.taken_at is None

    def test_explicit_taken_at(self, service, db_session, generated):
        dose = dose_at(db_session, utc(2024, 4, 3, 9))
        response = service.record_action(
            dose.id, DoseStatus.TAKEN, taken_at=utc(2024, 4, 3, 8, 50), now=utc(2024, 4, 3, 12)
        )
        assert response.taken_at == utc(2024, 4, 3, 8, 50)

    def test_terminal_dose_cannot_change(self, service, db_session, generated):
        dose = dose_at(db_session, utc(2024, 4, 3, 9))
        service.record_action(dose.id, DoseStatus.TAKEN, now=utc(2024, 4, 3, 10))
        with pytest.raises(DoseNotInteractableError):
            service.record_action(dose.id, DoseStatus.SKIPPED, now=utc(2024, 4, 3, 11))

    def test_missed_dose_cannot_change(self, service, db_session, generated):
        dose = dose_at(db_session, utc(2024, 4, 1, 9))
        with pytest.raises(DoseNotInteractableError):
            service.record_action(dose.id, DoseStatus.TAKEN, now=utc(2024, 4, 2, 0, 0))
        db_session.refresh(dose)
        assert dose.status == DoseStatus.SCHEDULED

    def test_missing_dose(self, service):
        assert service.record_action(999, DoseStatus.TAKEN) is None
