"""
Tests de los endpoints con FastAPI TestClient sobre SQLite en fichero
"""
import inspect
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import anyio
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from pillmind.api import cron, doses, schedules
from pillmind.core.database import get_db, get_session_factory
from pillmind.core.dependencies import get_alert_notifier
from pillmind.main import app
from pillmind.models import DoseInstance, DoseStatus, Prescription, Schedule
from pillmind.services.dose_persister import SqlAlchemyDoseStore
from tests.factories import RecordingNotifier, make_medication, make_prescription, make_schedule, make_user

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}

SCHEDULE = {
    "timezone": "UTC",
    "days_of_week": ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"],
    "times": ["08:00", "20:00"],
    "dose_quantity": "1",
    "dose_unit": "TAB",
}


@pytest.fixture()
def sessions(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture()
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def overrides(sessions, notifier):
    def override_get_db():
        db = sessions()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: sessions
    app.dependency_overrides[get_alert_notifier] = lambda: notifier
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(overrides):
    return TestClient(app)


@pytest.fixture()
def data(sessions):
    session = sessions()
    try:
        user = make_user(session, tz="UTC")
        medication = make_medication(session, user, qty=1, threshold=5)
        return {
            "user_id": user.id,
            "prescription_id": make_prescription(session, user, medication).id,
            "prn_id": make_prescription(session, user, medication, as_needed=True).id,
        }
    finally:
        session.close()


def create_schedule(client, prescription_id, **overrides):
    return client.post(f"/api/prescriptions/{prescription_id}/schedules", json={**SCHEDULE, **overrides})


class TestHealth:
    def test_root_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["service"] == "PillMind API"

    def test_api_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestScheduleEndpoints:
    def test_create_generates_default_horizon(self, client, data):
        response = create_schedule(client, data["prescription_id"])
        assert response.status_code == 201
        body = response.json()
        assert body["schedule"]["times"] == ["08:00", "20:00"]
        generation = body["generation"]
        assert generation["generated"] > 0
        assert generation["generated"] == generation["requested"]
        assert generation["errors"] == []

    def test_create_for_prn_skips_generation(self, client, data):
        response = create_schedule(client, data["prn_id"])
        assert response.status_code == 201
        assert response.json()["generation"] is None

    def test_conflict_returns_409_with_list(self, client, data):
        first = create_schedule(client, data["prescription_id"]).json()["schedule"]
        response = create_schedule(client, data["prescription_id"], days_of_week=["MON"], times=["08:00"])
        assert response.status_code == 409
        conflicts = response.json()["detail"]["conflicts"]
        assert conflicts == [{
            "conflicting_schedule_id": first["id"],
            "conflicting_weekdays": ["MON"],
            "conflicting_times": ["08:00"],
        }]

    @pytest.mark.parametrize("overrides", [
        {"times": ["25:00"]},
        {"times": []},
        {"days_of_week": []},
        {"days_of_week": ["XYZ"]},
        {"timezone": "Mars/Olympus_Mons"},
        {"start_date": "2024-05-01", "end_date": "2024-04-01"},
    ])
    def test_malformed_schedule_is_422(self, client, data, overrides):
        response = create_schedule(client, data["prescription_id"], **overrides)
        assert response.status_code == 422

    def test_unknown_prescription(self, client):
        assert create_schedule(client, 999).status_code == 404
        assert client.get("/api/prescriptions/999/schedules").status_code == 404

    def test_list_schedules(self, client, data):
        create_schedule(client, data["prescription_id"], times=["08:00"])
        create_schedule(client, data["prescription_id"], times=["20:00"])
        response = client.get(f"/api/prescriptions/{data['prescription_id']}/schedules")
        assert response.status_code == 200
        assert [s["times"] for s in response.json()] == [["08:00"], ["20:00"]]

    def test_update_and_conflict(self, client, data):
        create_schedule(client, data["prescription_id"], times=["08:00"])
        second = create_schedule(client, data["prescription_id"], times=["20:00"]).json()["schedule"]

        ok = client.put(f"/api/schedules/{second['id']}", json={"times": ["21:00"]})
        assert ok.status_code == 200
        assert ok.json()["times"] == ["21:00"]

        clash = client.put(f"/api/schedules/{second['id']}", json={"times": ["08:00"]})
        assert clash.status_code == 409

        assert client.put("/api/schedules/999", json={"times": ["08:00"]}).status_code == 404

    def test_update_producing_invalid_range_is_422(self, client, data):
        schedule = create_schedule(client, data["prescription_id"], start_date="2024-04-01").json()["schedule"]
        response = client.put(f"/api/schedules/{schedule['id']}", json={"end_date": "2024-03-01"})
        assert response.status_code == 422

    def test_stored_schedule_conflicts(self, client, data, sessions):
        schedule = create_schedule(client, data["prescription_id"], times=["08:00"]).json()["schedule"]
        # Un horario guardado sin pasar por la validación de conflictos
        session = sessions()
        try:
            make_schedule(session, session.get(Prescription, data["prescription_id"]), days=["MON"], times=["08:00"])
        finally:
            session.close()

        response = client.get(f"/api/schedules/{schedule['id']}/conflicts")
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_update_regenerates_future_doses(self, client, data, sessions):
        schedule = create_schedule(client, data["prescription_id"], times=["08:00"]).json()["schedule"]
        updated_at = datetime.now(timezone.utc)

        response = client.put(f"/api/schedules/{schedule['id']}", json={"times": ["09:00"]})
        assert response.status_code == 200

        session = sessions()
        try:
            future = session.query(DoseInstance).filter(
                DoseInstance.schedule_id == schedule["id"],
                DoseInstance.status == DoseStatus.SCHEDULED,
                DoseInstance.scheduled_for > updated_at
            ).all()
        finally:
            session.close()
        assert future
        assert {(dose.scheduled_for.hour, dose.scheduled_for.minute) for dose in future} == {(9, 0)}

    def test_delete_removes_schedule_and_future_doses(self, client, data, sessions):
        schedule = create_schedule(client, data["prescription_id"]).json()["schedule"]

        response = client.delete(f"/api/schedules/{schedule['id']}")
        assert response.status_code == 200
        assert response.json()["deleted_doses_count"] > 0

        session = sessions()
        try:
            assert session.get(Schedule, schedule["id"]) is None
            assert session.query(DoseInstance).filter(
                DoseInstance.prescription_id == data["prescription_id"]
            ).count() == 0
        finally:
            session.close()

        assert client.delete(f"/api/schedules/{schedule['id']}").status_code == 404

    def test_timezone_sync(self, client, data):
        create_schedule(client, data["prescription_id"])
        url = f"/api/users/{data['user_id']}/schedules/timezone"

        response = client.post(url, json={"timezone": "Europe/Madrid"})
        assert response.status_code == 200
        assert response.json()["updated_count"] == 1

        listed = client.get(f"/api/prescriptions/{data['prescription_id']}/schedules").json()
        assert [s["timezone"] for s in listed] == ["Europe/Madrid"]

        assert client.post(url, json={"timezone": "Mars/Olympus"}).status_code == 422
        assert client.post("/api/users/999/schedules/timezone", json={"timezone": "UTC"}).status_code == 404


class TestDoseEndpoints:
    def window(self, days):
        start = datetime.now(timezone.utc)
        return {"from": start.isoformat(), "to": (start + timedelta(days=days)).isoformat()}

    def test_generate_is_idempotent(self, client, data):
        schedule = create_schedule(client, data["prescription_id"]).json()
        response = client.post("/api/doses/generate", json={
            "prescription_id": data["prescription_id"],
            "schedule_id": schedule["schedule"]["id"],
            **self.window(7),
        })
        assert response.status_code == 200
        body = response.json()
        assert body["total_generated"] == 0
        assert body["total_skipped"] > 0

    def test_generate_window_too_large(self, client, data):
        create_schedule(client, data["prescription_id"])
        response = client.post("/api/doses/generate", json={
            "prescription_id": data["prescription_id"], **self.window(400)
        })
        assert response.status_code == 400

    def test_generate_for_prn_is_400(self, client, data):
        response = client.post("/api/doses/generate", json={"prescription_id": data["prn_id"], **self.window(7)})
        assert response.status_code == 400

    def test_generate_with_foreign_schedule_is_404(self, client, data):
        schedule = create_schedule(client, data["prn_id"]).json()["schedule"]
        response = client.post("/api/doses/generate", json={
            "prescription_id": data["prescription_id"], "schedule_id": schedule["id"], **self.window(7)
        })
        assert response.status_code == 404

    def test_list_and_mark_taken(self, client, data):
        create_schedule(client, data["prescription_id"])
        doses = client.get("/api/doses", params={"prescription_id": data["prescription_id"]}).json()
        assert doses
        first = doses[0]
        assert first["status"] == "SCHEDULED"
        assert first["interactable"] is True

        taken = client.patch(f"/api/doses/{first['id']}", json={"status": "TAKEN"})
        assert taken.status_code == 200
        assert taken.json()["status"] == "TAKEN"
        assert taken.json()["taken_at"] is not None

        again = client.patch(f"/api/doses/{first['id']}", json={"status": "SKIPPED"})
        assert again.status_code == 409

    def test_missed_dose_is_read_only(self, client, data, sessions):
        session = sessions()
        try:
            dose = DoseInstance(
                prescription_id=data["prescription_id"],
                scheduled_for=datetime.now(timezone.utc) - timedelta(days=3),
                quantity=Decimal("1"),
            )
            session.add(dose)
            session.commit()
            dose_id = dose.id
        finally:
            session.close()

        listed = client.get("/api/doses", params={"prescription_id": data["prescription_id"]}).json()
        assert listed[0]["status"] == "MISSED"
        assert client.patch(f"/api/doses/{dose_id}", json={"status": "TAKEN"}).status_code == 409

    def test_scheduled_is_not_a_valid_action(self, client, data):
        assert client.patch("/api/doses/1", json={"status": "SCHEDULED"}).status_code == 422

    def test_unknown_dose(self, client):
        assert client.patch("/api/doses/999", json={"status": "TAKEN"}).status_code == 404

    def test_bad_range_format(self, client, data):
        response = client.get("/api/doses", params={"prescription_id": data["prescription_id"], "start": "ayer"})
        assert response.status_code == 400


class TestCronEndpoints:
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "test-cron-secret"}])
    def test_requires_secret(self, client, headers):
        assert client.post("/api/cron/generate-doses", headers=headers).status_code == 401
        assert client.post("/api/cron/low-stock-alerts", headers=headers).status_code == 401
        assert client.post("/api/cron/dose-reminders", headers=headers).status_code == 401

    def test_generation_sweep(self, client, data, sessions):
        session = sessions()
        try:
            make_schedule(session, session.get(Prescription, data["prescription_id"]),
                          days=["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"], times=["12:00"])
        finally:
            session.close()

        response = client.post("/api/cron/generate-doses", headers=CRON_HEADERS, json={"horizon_days": 3})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["totals"]["schedules"] == 1
        assert body["totals"]["generated"] >= 3

    def test_low_stock_sweep(self, client, data, notifier):
        response = client.post("/api/cron/low-stock-alerts", headers=CRON_HEADERS)
        assert response.status_code == 200
        assert response.json()["totals"]["alerts"] == 1
        assert len(notifier.sent) == 1

        again = client.post("/api/cron/low-stock-alerts", headers=CRON_HEADERS)
        assert again.json()["totals"]["alerts"] == 0

    def test_dose_reminder_sweep(self, client, data, sessions, notifier):
        session = sessions()
        try:
            session.add(DoseInstance(
                prescription_id=data["prescription_id"],
                scheduled_for=datetime.now(timezone.utc) + timedelta(minutes=1),
                quantity=Decimal("1"),
            ))
            session.commit()
        finally:
            session.close()

        response = client.post("/api/cron/dose-reminders", headers=CRON_HEADERS)
        assert response.status_code == 200
        assert response.json()["totals"]["reminders"] == 1
        assert notifier.sent[0][2]["type"] == "dose_reminder"

        again = client.post("/api/cron/dose-reminders", headers=CRON_HEADERS)
        assert again.json()["totals"]["reminders"] == 0


class TestEventLoop:
    @pytest.mark.parametrize("module", [schedules, doses, cron])
    def test_store_routes_run_in_threadpool(self, module):
        # Los reintentos duermen con time.sleep: una ruta async bloquearía el event loop
        for route in module.router.routes:
            assert not inspect.iscoroutinefunction(route.endpoint), route.path

    @pytest.mark.anyio
    async def test_slow_generation_does_not_block_other_requests(self, overrides, data, monkeypatch):
        original = SqlAlchemyDoseStore.insert_skip_duplicates

        def slow_insert(self, drafts):
            time.sleep(0.5)
            return original(self, drafts)

        monkeypatch.setattr(SqlAlchemyDoseStore, "insert_skip_duplicates", slow_insert)
        finished = []

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            async def create():
                response = await client.post(
                    f"/api/prescriptions/{data['prescription_id']}/schedules", json=SCHEDULE
                )
                assert response.status_code == 201
                finished.append("create")

            async def health():
                await anyio.sleep(0.05)
                response = await client.get("/api/health")
                assert response.status_code == 200
                finished.append("health")

            async with anyio.create_task_group() as tg:
                tg.start_soon(create)
                tg.start_soon(health)

        assert finished == ["health", "create"]
