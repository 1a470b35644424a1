"""
Modelo de Horario de toma recurrente
"""
import enum

from sqlalchemy import Column, Integer, String, Date, Numeric, Enum, JSON, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from pillmind.core.database import Base, UTCDateTime


class Weekday(str, enum.Enum):
    """Días de la semana"""
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"


class DoseUnit(str, enum.Enum):
    """Unidades de dosis"""
    MG = "MG"
    MCG = "MCG"
    G = "G"
    ML = "ML"
    IU = "IU"
    DROP = "DROP"
    PUFF = "PUFF"
    UNIT = "UNIT"
    TAB = "TAB"
    CAPS = "CAPS"


class Schedule(Base):
    """Patrón semanal (días + horas locales + zona) que genera dosis"""
    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=False, index=True)

    timezone = Column(String(64), nullable=False)
    days_of_week = Column(JSON, nullable=False, default=list)  # ["MON", "WED"]
    times = Column(JSON, nullable=False, default=list)  # ["08:00", "20:30"]

    dose_quantity = Column(Numeric(10, 3), nullable=True)
    dose_unit = Column(Enum(DoseUnit), nullable=True)

    # Ventana de validez (None = sin límite)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    # Relaciones
    prescription = relationship("Prescription", back_populates="schedules")
    dose_instances = relationship("DoseInstance", back_populates="schedule")

    def __repr__(self):
        return f"<Schedule(id={self.id}, prescription_id={self.prescription_id}, days={self.days_of_week}, times={self.times})>"

    @property
    def weekdays(self) -> set:
        return {Weekday(day) for day in (self.days_of_week or [])}

    def to_dict(self):
        """Convertir a diccionario para serialización"""
        return {
            "id": self.id,
            "prescription_id": self.prescription_id,
            "timezone": self.timezone,
            "days_of_week": list(self.days_of_week or []),
            "times": list(self.times or []),
            "dose_quantity": self.dose_quantity,
            "dose_unit": self.dose_unit.value if self.dose_unit else None,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }
