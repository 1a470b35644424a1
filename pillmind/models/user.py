"""
Modelo de Usuario para el sistema
"""
from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from pillmind.core.database import Base, UTCDateTime
from pillmind.models.notification import Channel


class User(Base):
    """Modelo de Usuario"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)

    # Zona horaria por defecto para horarios y alertas
    timezone = Column(String(64), nullable=True)

    # Configuraciones de notificaciones
    email_notifications = Column(Boolean, default=True)
    sms_notifications = Column(Boolean, default=False)
    push_notifications = Column(Boolean, default=False)

    # Metadatos
    created_at = Column(UTCDateTime, server_default=func.now())

    # Relaciones
    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    prescriptions = relationship("Prescription", back_populates="user", cascade="all, delete-orphan")
    notification_logs = relationship("NotificationLog", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"

    @property
    def alert_channels(self) -> list:
        """Canales habilitados; EMAIL si no hay ninguno"""
        channels = []
        if self.push_notifications:
            channels.append(Channel.PUSH)
        if self.email_notifications:
            channels.append(Channel.EMAIL)
        if self.sms_notifications:
            channels.append(Channel.SMS)
        return channels or [Channel.EMAIL]
