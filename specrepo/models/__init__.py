from ._entity import EMPTY_ID, SYSTEM_COLUMNS, Entity, EntityT, utc_now
from .audit import AuditAction, AuditLogEntry

__all__ = [
    "EMPTY_ID",
    "SYSTEM_COLUMNS",
    "AuditAction",
    "AuditLogEntry",
    "Entity",
    "EntityT",
    "utc_now",
]
