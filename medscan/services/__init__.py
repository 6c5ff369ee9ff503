# medscan/services/__init__.py
from .records import PatientRecordStore, init_db
from .media import MediaStore
from .messaging import DeliveryReceipt, WhatsAppClient

__all__ = [
    "DeliveryReceipt",
    "MediaStore",
    "PatientRecordStore",
    "WhatsAppClient",
    "init_db",
]
