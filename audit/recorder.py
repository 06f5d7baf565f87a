"""
audit/recorder.py -- Append-only audit trail over SQLAlchemy Core.

One table per tracked entity type (client_audit, driver_audit, vehicle_audit,
order_audit, identity_audit), all with the same shape. The recorder only ever
INSERTs; there is no update or delete path.

Transaction contract:
  record() takes the caller's Connection and does NOT commit. The service that
  performed the mutation commits once after record() returns, so the mutation
  and its entry become visible together. If record() raises, the caller's
  `with engine.connect()` block exits without commit and both are rolled back.

Timestamps:
  changed_at is assigned here, never by the caller. The clock is strictly
  increasing within the process so sequential changes to one entity always
  sort newest-first without ties.

Queries are read-only and ordered changed_at DESC, id DESC.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Column, Index, Integer, String, Table, Text, func
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditEntry, EntityType, OperationKind
from auth.authorization import current_username_or_default
from auth.models import AuthContext
from core.db import metadata
from core.errors import AuditWriteError

logger = logging.getLogger("urbanfleet.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _audit_table(entity_type: EntityType) -> Table:
    name = f"{entity_type.value}_audit"
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("entity_id", Integer, nullable=False),  # historical pointer, no FK
        Column("natural_key", String(50)),
        Column("label", String(255)),
        Column("operation", String(20), nullable=False),
        Column("changed_at", String(32), nullable=False),
        Column("editor_id", Integer),
        Column("editor_username", String(50), nullable=False),
        Column("payload", Text, nullable=False),
        Index(f"ix_{name}_entity_id", "entity_id"),
        Index(f"ix_{name}_natural_key", "natural_key"),
    )


_TABLES: dict[EntityType, Table] = {entity_type: _audit_table(entity_type) for entity_type in EntityType}


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def snapshot(entity: Any, exclude: tuple[str, ...] = ()) -> str:
    """Serialize a dataclass (or dict) to sorted JSON, dropping excluded fields."""
    data = dataclasses.asdict(entity) if dataclasses.is_dataclass(entity) else dict(entity)
    for key in exclude:
        data.pop(key, None)
    return json.dumps(data, default=_json_default, sort_keys=True, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class _MonotonicClock:
    """UTC clock that never returns the same instant twice."""

    def __init__(self, source: Optional[Callable[[], datetime]] = None) -> None:
        self._source = source or (lambda: datetime.now(timezone.utc))
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._source()
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------


class AuditRecorder:
    """Writes and queries audit entries.

    Usage:
        recorder = AuditRecorder(engine)
        with engine.connect() as conn:
            driver_id = store.insert_driver(conn, driver)
            recorder.record(conn, EntityType.DRIVER, driver_id, OperationKind.CREATE, ctx,
                            snapshot(driver), natural_key=driver.identification)
            conn.commit()
        history = recorder.for_entity(EntityType.DRIVER, driver_id)
    """

    def __init__(self, engine: Engine, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.engine = engine
        self._clock = _MonotonicClock(clock)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def record(
        self,
        conn: Connection,
        entity_type: EntityType,
        entity_id: int,
        operation: OperationKind,
        ctx: AuthContext,
        payload: str,
        natural_key: Optional[str] = None,
        label: Optional[str] = None,
    ) -> AuditEntry:
        """Insert one entry on conn inside the caller's open transaction.

        Raises AuditWriteError if the insert fails; the caller must let it
        propagate so the paired mutation is rolled back.
        """
        table = _TABLES[entity_type]
        changed_at = self._clock().isoformat(timespec="microseconds")
        editor_id = ctx.identity.id if ctx.identity is not None else None
        editor_username = current_username_or_default(ctx)
        try:
            result = conn.execute(
                table.insert().values(
                    entity_id=entity_id,
                    natural_key=natural_key,
                    label=label,
                    operation=operation.value,
                    changed_at=changed_at,
                    editor_id=editor_id,
                    editor_username=editor_username,
                    payload=payload,
                )
            )
        except SQLAlchemyError as exc:
            logger.exception(
                "Audit write failed: %s %s id=%s by %s", entity_type.value, operation.value, entity_id, editor_username
            )
            raise AuditWriteError("Could not record audit entry.") from exc

        logger.debug("Audit %s %s id=%s by %s", entity_type.value, operation.value, entity_id, editor_username)
        return AuditEntry(
            id=result.inserted_primary_key[0],
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            changed_at=changed_at,
            editor_id=editor_id,
            editor_username=editor_username,
            payload=payload,
            natural_key=natural_key,
            label=label,
        )

    # ------------------------------------------------------------------
    # Queries (newest first)
    # ------------------------------------------------------------------

    def for_entity(self, entity_type: EntityType, entity_id: int) -> list[AuditEntry]:
        table = _TABLES[entity_type]
        return self._select(entity_type, table.c.entity_id == entity_id)

    def for_natural_key(self, entity_type: EntityType, natural_key: str) -> list[AuditEntry]:
        """Entries whose identification / plate / username snapshot equals natural_key."""
        table = _TABLES[entity_type]
        return self._select(entity_type, table.c.natural_key == natural_key)

    def for_editor(
        self,
        entity_type: EntityType,
        editor_id: Optional[int] = None,
        editor_username: Optional[str] = None,
    ) -> list[AuditEntry]:
        """Entries written by one acting identity, selected by id or username."""
        table = _TABLES[entity_type]
        if editor_id is not None:
            return self._select(entity_type, table.c.editor_id == editor_id)
        if editor_username is not None:
            return self._select(entity_type, table.c.editor_username == editor_username)
        raise ValueError("editor_id or editor_username is required")

    def for_label(self, entity_type: EntityType, fragment: str) -> list[AuditEntry]:
        """Case-insensitive substring match on the label snapshot (e.g. driver name)."""
        table = _TABLES[entity_type]
        pattern = f"%{fragment.lower()}%"
        return self._select(entity_type, func.lower(table.c.label).like(pattern))

    def _select(self, entity_type: EntityType, condition) -> list[AuditEntry]:
        table = _TABLES[entity_type]
        with self.engine.connect() as conn:
            rows = conn.execute(
                table.select().where(condition).order_by(table.c.changed_at.desc(), table.c.id.desc())
            ).fetchall()
        return [_row_to_entry(entity_type, r) for r in rows]


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_entry(entity_type: EntityType, row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        entity_type=entity_type,
        entity_id=row.entity_id,
        natural_key=row.natural_key,
        label=row.label,
        operation=OperationKind(row.operation),
        changed_at=row.changed_at,
        editor_id=row.editor_id,
        editor_username=row.editor_username,
        payload=row.payload,
    )
