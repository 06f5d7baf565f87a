"""
audit/models.py -- Domain dataclasses for the audit trail.

AuditEntry is write-once: the recorder inserts it and never updates or deletes
it. entity_id is a historical pointer, not a foreign key, so entries outlive
the entity they describe.

Layer rule: no imports from api/ or fleet/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OperationKind(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"


class EntityType(str, Enum):
    """Tracked entity types. Each has its own audit table."""

    CLIENT = "client"
    DRIVER = "driver"
    VEHICLE = "vehicle"
    ORDER = "order"
    IDENTITY = "identity"


@dataclass(frozen=True)
class AuditEntry:
    """One recorded mutation.

    natural_key -- identification / plate / username at the time of the change
                   (None for orders, which have no natural key)
    label       -- human-readable name at the time of the change, used by the
                   driver-name search
    payload     -- JSON text: post-mutation snapshot, or pre-deletion snapshot
                   for DELETE
    """

    entity_type: EntityType
    entity_id: int
    operation: OperationKind
    changed_at: str  # ISO 8601, server-assigned
    editor_username: str
    payload: str
    editor_id: Optional[int] = None
    natural_key: Optional[str] = None
    label: Optional[str] = None
    id: Optional[int] = None
