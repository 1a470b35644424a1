"""
Modelo de Registro de Notificaciones
"""
from sqlalchemy import Column, Integer, String, Date, ForeignKey, Enum, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from pillmind.core.database import Base, UTCDateTime


class Channel(str, enum.Enum):
    """Canales de notificación"""
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(str, enum.Enum):
    """Estados de notificación"""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


LOW_STOCK_ALERT = "low_stock_alert"
DOSE_REMINDER = "dose_reminder"


class NotificationLog(Base):
    """Modelo de Registro de Notificaciones"""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    dose_instance_id = Column(Integer, ForeignKey("dose_instances.id", ondelete="SET NULL"), nullable=True, index=True)
    channel = Column(Enum(Channel), nullable=False)
    kind = Column(String(50), nullable=False)
    status = Column(Enum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING)

    # Día local del usuario al que corresponde la alerta
    alert_date = Column(Date, nullable=True, index=True)

    # "low_stock_alert:user:channel:YYYY-MM-DD" o "dose_reminder:dose:channel" mientras la alerta está reclamada o enviada;
    # NULL si falló, para que otro barrido pueda reintentar
    dedupe_key = Column(String(191), unique=True, nullable=True)

    sent_at = Column(UTCDateTime, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    # Relaciones
    user = relationship("User", back_populates="notification_logs")

    def __repr__(self):
        return f"<NotificationLog(id={self.id}, user_id={self.user_id}, channel={self.channel}, status={self.status})>"
