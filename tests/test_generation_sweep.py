"""
Tests del barrido periódico de generación
"""
from datetime import date, datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from pillmind.models import DoseInstance
from pillmind.services.generation_sweep import GenerationSweep
from tests.factories import make_medication, make_prescription, make_schedule, make_user

# Lunes 1 de abril de 2024, 10:00 UTC
NOW = datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture()
def file_sessions(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture()
def seeded(file_sessions):
    """Un horario activo, uno terminado, uno PRN y uno con zona inválida"""
    session = file_sessions()
    try:
        user = make_user(session)
        medication = make_medication(session, user)
        active = make_prescription(session, user, medication)
        prn = make_prescription(session, user, medication, as_needed=True)

        ids = {
            "active": make_schedule(session, active).id,
            "ended": make_schedule(session, active, days=["FRI"], end=date(2024, 3, 1)).id,
            "prn": make_schedule(session, prn).id,
            "broken": make_schedule(session, active, days=["SAT"], tz="Mars/Olympus_Mons").id,
        }
        return ids
    finally:
        session.close()


def count_doses(file_sessions, schedule_id):
    session = file_sessions()
    try:
        return session.query(DoseInstance).filter(DoseInstance.schedule_id == schedule_id).count()
    finally:
        session.close()


class TestGenerationSweep:
    def test_active_schedules_only(self, file_sessions, seeded):
        sweep = GenerationSweep(file_sessions, horizon_days=14, max_workers=2)
        assert sweep.active_schedule_ids(NOW) == [seeded["active"], seeded["broken"]]

    def test_generates_horizon_and_reports_failures(self, file_sessions, seeded):
        result = GenerationSweep(file_sessions, horizon_days=14, max_workers=2).run(now=NOW)

        by_schedule = {item["schedule_id"]: item for item in result.results}
        # Lunes y miércoles 09:00 UTC del 1 al 15 de abril, después de las 10:00 del día 1
        assert by_schedule[seeded["active"]]["generated"] == 4
        assert by_schedule[seeded["broken"]]["errors"]
        assert seeded["prn"] not in by_schedule
        assert seeded["ended"] not in by_schedule

        assert result.totals["schedules"] == 2
        assert result.totals["generated"] == 4
        assert result.totals["errors"] == 1
        assert count_doses(file_sessions, seeded["active"]) == 4

    def test_second_run_skips_existing(self, file_sessions, seeded):
        sweep = GenerationSweep(file_sessions, horizon_days=14, max_workers=2)
        sweep.run(now=NOW)
        result = sweep.run(now=NOW)

        by_schedule = {item["schedule_id"]: item for item in result.results}
        assert by_schedule[seeded["active"]]["generated"] == 0
        assert by_schedule[seeded["active"]]["skipped"] == 4
        assert count_doses(file_sessions, seeded["active"]) == 4

    def test_uses_configured_defaults(self, file_sessions):
        sweep = GenerationSweep(file_sessions)
        assert sweep.horizon_days == 14
        assert sweep.max_workers == 4
