"""
Fixtures compartidas de los tests de PillMind.

- Motor SQLite en memoria (StaticPool) con el esquema creado
- Usuario, medicamento y prescripción de ejemplo
- DoseStore en memoria con inyección de fallos
"""
import os

# Configuración de test antes de importar la aplicación
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pillmind.core.database import create_tables, drop_tables
from tests.factories import FakeDoseStore, make_medication, make_prescription, make_user


@pytest.fixture()
def engine():
    """SQLite en memoria compartido por todas las sesiones del test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    drop_tables(bind=engine)
    engine.dispose()


@pytest.fixture()
def file_engine(tmp_path):
    """SQLite en fichero, para tests con varios hilos"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pillmind-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def user(db_session):
    return make_user(db_session)


@pytest.fixture()
def medication(db_session, user):
    return make_medication(db_session, user)


@pytest.fixture()
def prescription(db_session, user, medication):
    return make_prescription(db_session, user, medication)


@pytest.fixture()
def fake_store():
    return FakeDoseStore()


@pytest.fixture()
def no_sleep():
    """Registro de esperas sin dormir de verdad"""
    delays = []
    return delays
