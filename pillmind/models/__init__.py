# pillmind/models/__init__.py

from .user import User
from .medication import Medication, Inventory
from .prescription import Prescription
from .schedule import Schedule, Weekday, DoseUnit
from .dose_instance import DoseInstance, DoseStatus, EffectiveDoseStatus
from .notification import NotificationLog, Channel, NotificationStatus

__all__ = [
    "User",
    "Medication",
    "Inventory",
    "Prescription",
    "Schedule",
    "Weekday",
    "DoseUnit",
    "DoseInstance",
    "DoseStatus",
    "EffectiveDoseStatus",
    "NotificationLog",
    "Channel",
    "NotificationStatus"
]
