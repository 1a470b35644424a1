"""
Modelo de Prescripción
"""
from datetime import date
from sqlalchemy import Column, Integer, Text, Date, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from pillmind.core.database import Base, UTCDateTime


class Prescription(Base):
    """Modelo de Prescripción"""
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)

    # Relaciones
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False)

    # PRN ("según necesidad"): sin horarios fijos
    as_needed = Column(Boolean, default=False, nullable=False)

    indication = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)

    # Fechas (end_date es el techo de generación de dosis)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    # Metadatos
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    # Relaciones
    user = relationship("User", back_populates="prescriptions")
    medication = relationship("Medication", back_populates="prescriptions")
    schedules = relationship("Schedule", back_populates="prescription", cascade="all, delete-orphan")
    dose_instances = relationship("DoseInstance", back_populates="prescription", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Prescription(id={self.id}, user_id={self.user_id}, medication_id={self.medication_id})>"

    def is_active_on(self, day: date) -> bool:
        """La prescripción cubre la fecha indicada"""
        if self.start_date and day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date