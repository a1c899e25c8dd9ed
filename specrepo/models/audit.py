from enum import Enum

from sqlmodel import Field

from ._entity import Entity


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditLogEntry(Entity, table=True):
    """Record of an audited mutation.

    Written as a side effect of ``insert_with_audit``/``delete_with_audit``
    and never updated or deleted by the repository.
    """

    __tablename__ = "audit_log"

    action: AuditAction = Field(index=True)
    entity_name: str = Field(default="", index=True)
    entity_id: str = Field(default="", index=True)
    user_name: str = ""
    details: str = ""
