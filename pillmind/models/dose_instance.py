# pillmind/models/dose_instance.py
"""
Modelo de Instancia de Dosis
"""
from sqlalchemy import Column, Integer, ForeignKey, Enum, Numeric, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from pillmind.core.database import Base, UTCDateTime
from pillmind.models.schedule import DoseUnit


class DoseStatus(str, enum.Enum):
    """Estados persistidos de dosis (MISSED se deriva al leer)"""
    SCHEDULED = "SCHEDULED"
    TAKEN = "TAKEN"
    SKIPPED = "SKIPPED"


class DoseInstance(Base):
    """Modelo de Instancia de Dosis"""
    __tablename__ = "dose_instances"
    __table_args__ = (
        # Clave de idempotencia del motor de generación
        UniqueConstraint("schedule_id", "scheduled_for", name="uq_dose_schedule_instant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="SET NULL"), nullable=True, index=True)
    scheduled_for = Column(UTCDateTime, nullable=False, index=True)
    taken_at = Column(UTCDateTime, nullable=True)
    status = Column(Enum(DoseStatus), default=DoseStatus.SCHEDULED, nullable=False)
    quantity = Column(Numeric(10, 3), nullable=True)
    unit = Column(Enum(DoseUnit), nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    # Relaciones
    prescription = relationship("Prescription", back_populates="dose_instances")
    schedule = relationship("Schedule", back_populates="dose_instances")

    def __repr__(self):
        return f"<DoseInstance(id={self.id}, schedule_id={self.schedule_id}, scheduled_for={self.scheduled_for}, status={self.status})>"


class EffectiveDoseStatus(str, enum.Enum):
    """Estado mostrado: el persistido más MISSED derivado"""
    SCHEDULED = "SCHEDULED"
    TAKEN = "TAKEN"
    SKIPPED = "SKIPPED"
    MISSED = "MISSED"
