"""
Modelo de Medicamento e Inventario
"""
from sqlalchemy import Column, Integer, String, Text, Numeric, Enum, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from pillmind.core.database import Base, UTCDateTime
from pillmind.models.schedule import DoseUnit


class Medication(Base):
    """Modelo de Medicamento"""
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Información básica
    name = Column(String(255), nullable=False, index=True)
    brand_name = Column(String(255), nullable=True)
    strength_value = Column(Numeric(10, 3), nullable=True)
    strength_unit = Column(Enum(DoseUnit), nullable=True)
    notes = Column(Text, nullable=True)

    # Metadatos
    created_at = Column(UTCDateTime, server_default=func.now())

    # Relaciones
    user = relationship("User", back_populates="medications")
    inventory = relationship("Inventory", back_populates="medication", uselist=False, cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="medication", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Medication(id={self.id}, name='{self.name}')>"


class Inventory(Base):
    """Existencias de un medicamento"""
    __tablename__ = "inventories"

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id"), nullable=False, unique=True)
    current_qty = Column(Numeric(10, 3), nullable=False, default=0)
    unit = Column(Enum(DoseUnit), nullable=False, default=DoseUnit.TAB)
    low_threshold = Column(Numeric(10, 3), nullable=True)
    last_restocked_at = Column(UTCDateTime, nullable=True)

    medication = relationship("Medication", back_populates="inventory")

    def __repr__(self):
        return f"<Inventory(medication_id={self.medication_id}, qty={self.current_qty})>"

    @property
    def is_low(self) -> bool:
        """Stock bajo: cantidad actual <= umbral (sin umbral = 0)"""
        threshold = self.low_threshold if self.low_threshold is not None else 0
        return (self.current_qty or 0) <= threshold
