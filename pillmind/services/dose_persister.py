"""
Persistencia idempotente de dosis generadas.

La unicidad (schedule_id, scheduled_for) la garantiza el almacenamiento: las
llamadas repetidas o concurrentes se resuelven con inserciones que omiten
duplicados, no con bloqueos en proceso. Una escritura gana y la otra la
observa como omitida.
"""
import abc
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import exc as sa_exc
from sqlalchemy import insert, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from pillmind.core.exceptions import (
    PermanentStoreError,
    StoreError,
    TransientReason,
    TransientStoreError,
)
from pillmind.core.retry import RetryPolicy, retry_with_backoff
from pillmind.models.dose_instance import DoseInstance, DoseStatus
from pillmind.models.schedule import DoseUnit
from pillmind.schemas.dose import GenerationResult

logger = logging.getLogger(__name__)

# Inserción masiva: 3 intentos, 500 ms duplicando hasta 10 s
BULK_INSERT_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=10.0,
    retry_on=frozenset({
        TransientReason.TIMEOUT,
        TransientReason.CONNECTION_RESET,
        TransientReason.UNIQUE_RACE,
    }),
)

# Inserción individual: un duplicado se cuenta como omitido, no se reintenta
SINGLE_INSERT_POLICY = RetryPolicy(
    max_attempts=2,
    initial_delay=0.2,
    max_delay=10.0,
    retry_on=frozenset({
        TransientReason.TIMEOUT,
        TransientReason.CONNECTION_RESET,
    }),
)

# Filas por sentencia INSERT multi-VALUES
BULK_CHUNK_SIZE = 500

# Códigos de error de MySQL
MYSQL_DUPLICATE_ENTRY = 1062
MYSQL_TIMEOUT_CODES = {1205}  # lock wait timeout
MYSQL_CONNECTION_CODES = {2003, 2006, 2013}  # no conecta, server gone away, conexión perdida


@dataclass(frozen=True)
class DoseDraft:
    """Dosis candidata lista para insertar"""
    prescription_id: int
    schedule_id: int
    scheduled_for: datetime
    quantity: Optional[Decimal] = None
    unit: Optional[DoseUnit] = None

    def to_row(self) -> Dict:
        return {
            "prescription_id": self.prescription_id,
            "schedule_id": self.schedule_id,
            "scheduled_for": self.scheduled_for,
            "status": DoseStatus.SCHEDULED,
            "quantity": self.quantity,
            "unit": self.unit,
        }


class DoseStore(abc.ABC):
    """Almacenamiento de dosis con restricción única (schedule_id, scheduled_for)"""

    @abc.abstractmethod
    def existing_instants(self, schedule_id: int, start: datetime, end: datetime) -> Set[datetime]:
        """Instantes ya guardados del horario dentro de [start, end]"""

    @abc.abstractmethod
    def insert_skip_duplicates(self, drafts: List[DoseDraft]) -> int:
        """Inserción masiva que omite duplicados; devuelve filas insertadas"""

    @abc.abstractmethod
    def insert_one(self, draft: DoseDraft) -> None:
        """Inserción individual; un duplicado lanza TransientStoreError(UNIQUE_RACE)"""


def _mysql_code(error: BaseException) -> Optional[int]:
    args = getattr(error, "args", None)
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _is_unique_violation(orig: BaseException) -> bool:
    if _mysql_code(orig) == MYSQL_DUPLICATE_ENTRY:
        return True
    if getattr(orig, "pgcode", None) == "23505":
        return True
    if isinstance(orig, sqlite3.IntegrityError):
        return "UNIQUE constraint failed" in str(orig)
    return False


def translate_store_error(error: BaseException, operation: str) -> StoreError:
    """
    Clasificar un error del driver en la taxonomía cerrada del motor.

    Se decide una sola vez aquí, en la frontera del almacenamiento, para que
    la política de reintentos no dependa de los códigos de cada base de datos.
    """
    message = f"Error de almacenamiento en {operation}: {error}"

    if isinstance(error, StoreError):
        return error

    if isinstance(error, sa_exc.IntegrityError) and _is_unique_violation(error.orig):
        return TransientStoreError(message, TransientReason.UNIQUE_RACE, cause=error)

    if isinstance(error, sa_exc.TimeoutError) or isinstance(error, TimeoutError):
        return TransientStoreError(message, TransientReason.TIMEOUT, cause=error)

    if isinstance(error, ConnectionError):
        return TransientStoreError(message, TransientReason.CONNECTION_RESET, cause=error)

    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return TransientStoreError(message, TransientReason.CONNECTION_RESET, cause=error)

        if isinstance(error, sa_exc.OperationalError):
            code = _mysql_code(error.orig)
            if code in MYSQL_TIMEOUT_CODES:
                return TransientStoreError(message, TransientReason.TIMEOUT, cause=error)
            if code in MYSQL_CONNECTION_CODES:
                return TransientStoreError(message, TransientReason.CONNECTION_RESET, cause=error)
            if isinstance(error.orig, sqlite3.OperationalError) and "database is locked" in str(error.orig):
                return TransientStoreError(message, TransientReason.TIMEOUT, cause=error)

    return PermanentStoreError(message, cause=error)


class SqlAlchemyDoseStore(DoseStore):
    """DoseStore sobre una sesión de SQLAlchemy (MySQL o SQLite)"""

    def __init__(self, db: Session):
        self.db = db

    def _insert_ignoring_duplicates(self):
        table = DoseInstance.__table__
        dialect = self.db.get_bind().dialect.name
        if dialect == "mysql":
            return mysql_insert(table).prefix_with("IGNORE")
        if dialect == "sqlite":
            return sqlite_insert(table).on_conflict_do_nothing(
                index_elements=["schedule_id", "scheduled_for"]
            )
        # Otros dialectos: un duplicado se reporta como carrera de unicidad
        return insert(table)

    def existing_instants(self, schedule_id: int, start: datetime, end: datetime) -> Set[datetime]:
        try:
            rows = self.db.execute(
                select(DoseInstance.scheduled_for).where(
                    DoseInstance.schedule_id == schedule_id,
                    DoseInstance.scheduled_for >= start,
                    DoseInstance.scheduled_for <= end,
                )
            ).scalars().all()
            return set(rows)
        except Exception as e:
            self.db.rollback()
            raise translate_store_error(e, "consulta de dosis existentes")

    def insert_skip_duplicates(self, drafts: List[DoseDraft]) -> int:
        inserted = 0
        try:
            for start in range(0, len(drafts), BULK_CHUNK_SIZE):
                chunk = [draft.to_row() for draft in drafts[start:start + BULK_CHUNK_SIZE]]
                result = self.db.execute(self._insert_ignoring_duplicates().values(chunk))
                inserted += max(result.rowcount or 0, 0)
            self.db.commit()
            return inserted
        except Exception as e:
            self.db.rollback()
            raise translate_store_error(e, "inserción masiva de dosis")

    def insert_one(self, draft: DoseDraft) -> None:
        try:
            self.db.execute(insert(DoseInstance.__table__).values(**draft.to_row()))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            raise translate_store_error(e, "inserción de dosis")


class DosePersister:
    """Confirma las dosis candidatas de un horario exactamente una vez"""

    def __init__(
            self,
            store: DoseStore,
            bulk_policy: RetryPolicy = BULK_INSERT_POLICY,
            item_policy: RetryPolicy = SINGLE_INSERT_POLICY,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.bulk_policy = bulk_policy
        self.item_policy = item_policy
        self.sleep = sleep

    def persist(self, drafts: Iterable[DoseDraft]) -> GenerationResult:
        """
        Insertar las dosis que aún no existen.

        Nunca lanza por fallos del almacenamiento: el llamador revisa
        requested/generated/skipped/errors.
        """
        drafts = sorted(drafts, key=lambda d: d.scheduled_for)
        result = GenerationResult(requested=len(drafts))
        if not drafts:
            return result

        schedule_ids = {draft.schedule_id for draft in drafts}
        if len(schedule_ids) != 1:
            raise ValueError(f"Se esperaba un único horario, recibidos: {sorted(schedule_ids)}")
        schedule_id = drafts[0].schedule_id

        # Una sola consulta acotada, no una por candidata
        try:
            existing = self.store.existing_instants(
                schedule_id, drafts[0].scheduled_for, drafts[-1].scheduled_for
            )
        except StoreError as e:
            logger.error(f"No se pudieron consultar dosis existentes del horario {schedule_id}: {e}")
            result.errors.append(str(e))
            return result

        new_drafts = [draft for draft in drafts if draft.scheduled_for not in existing]
        result.skipped = len(drafts) - len(new_drafts)
        if not new_drafts:
            logger.info(f"Horario {schedule_id}: {result.skipped} dosis ya existían, nada que insertar")
            return result

        try:
            inserted = retry_with_backoff(
                lambda: self.store.insert_skip_duplicates(new_drafts),
                self.bulk_policy,
                sleep=self.sleep,
                operation=f"inserción masiva del horario {schedule_id}",
            )
            result.generated = inserted
            # Las filas que otro proceso insertó primero cuentan como omitidas
            result.skipped += len(new_drafts) - inserted
        except StoreError as e:
            logger.warning(
                f"Inserción masiva del horario {schedule_id} falló ({e}); "
                f"insertando {len(new_drafts)} dosis una a una"
            )
            self._insert_individually(new_drafts, result)

        if result.errors:
            logger.error(
                f"Horario {schedule_id}: generadas {result.generated}, omitidas {result.skipped}, "
                f"errores {len(result.errors)}"
            )
        else:
            logger.info(
                f"Horario {schedule_id}: generadas {result.generated}, omitidas {result.skipped}"
            )
        return result

    def _insert_individually(self, drafts: List[DoseDraft], result: GenerationResult) -> None:
        for draft in drafts:
            try:
                retry_with_backoff(
                    lambda: self.store.insert_one(draft),
                    self.item_policy,
                    sleep=self.sleep,
                    operation=f"inserción de dosis {draft.scheduled_for.isoformat()}",
                )
                result.generated += 1
            except TransientStoreError as e:
                if e.reason == TransientReason.UNIQUE_RACE:
                    result.skipped += 1
                else:
                    result.errors.append(
                        f"No se pudo crear la dosis de {draft.scheduled_for.isoformat()}: {e.message}"
                    )
            except StoreError as e:
                result.errors.append(
                    f"No se pudo crear la dosis de {draft.scheduled_for.isoformat()}: {e.message}"
                )
