"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper (same as fleet/store.py).
IdentityStore is the repository; _row_to_identity is the mapper.
Route and gate code never touches SQL directly.

Reads open their own connection. Writes take the caller's Connection so the
identity change and its audit entry commit (or roll back) together; see
auth/service.py.

Security:
  All queries use bound parameters. No f-strings in SQL.
  driver_id and client_id are UNIQUE: a profile links to at most one identity.
  SQLite treats NULLs as distinct, so unlinked identities do not collide.

Layer rule: no imports from api/, audit/, or fleet/.
"""

from __future__ import annotations

from dataclasses import replace

from sqlalchemy import Column, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import Identity, Role
from auth.tokens import verify_password
from core.db import metadata, now_iso
from core.errors import NotFound

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

identities = Table(
    "identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False),
    Column("driver_id", Integer, unique=True),  # weak link, no FK
    Column("client_id", Integer, unique=True),  # weak link, no FK
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore(engine)
        identity = store.get_by_username("admin")
        with store.engine.connect() as conn:
            created = store.insert(conn, Identity(username="ana", role=Role.CLIENTE, hashed_password=h))
            conn.commit()
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_identities(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(identities)).scalar()
        return (result or 0) > 0

    def get_by_username(self, username: str) -> Identity | None:
        """Look up an identity by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(identities.select().where(identities.c.username == username)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_username(self, username: str) -> Identity:
        """Like get_by_username() but raises NotFound when absent."""
        identity = self.get_by_username(username)
        if identity is None:
            raise NotFound(f"User not found with username: {username}")
        return identity

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(identities.select().where(identities.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_driver_id(self, driver_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(identities.select().where(identities.c.driver_id == driver_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_client_id(self, client_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(identities.select().where(identities.c.client_id == client_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_all(self) -> list[Identity]:
        """Return all identities ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(identities.select().order_by(identities.c.username)).fetchall()
        return [_row_to_identity(r) for r in rows]

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(identities)
                .where((identities.c.role == Role.ADMIN.value) & (identities.c.is_active == 1))
            ).scalar()
        return result or 0

    @staticmethod
    def verify_secret(plaintext: str, stored_hash: str) -> bool:
        """One-way bcrypt comparison. Neither argument is ever logged."""
        return verify_password(plaintext, stored_hash)

    # ------------------------------------------------------------------
    # Writes (caller owns the transaction)
    # ------------------------------------------------------------------

    def insert(self, conn: Connection, identity: Identity) -> Identity:
        """Insert identity and return it with id and created_at filled in.

        Raises sqlalchemy.exc.IntegrityError on a duplicate username or a
        driver/client already linked to another identity.
        """
        created_at = now_iso()
        result = conn.execute(
            identities.insert().values(
                username=identity.username,
                hashed_password=identity.hashed_password,
                role=identity.role.value,
                driver_id=identity.driver_id,
                client_id=identity.client_id,
                is_active=1 if identity.is_active else 0,
                created_at=created_at,
            )
        )
        return replace(identity, id=result.inserted_primary_key[0], created_at=created_at)

    def update(self, conn: Connection, identity: Identity) -> bool:
        """Persist role, links and password hash. Returns False if the id is unknown."""
        result = conn.execute(
            identities.update()
            .where(identities.c.id == identity.id)
            .values(
                role=identity.role.value,
                driver_id=identity.driver_id,
                client_id=identity.client_id,
                hashed_password=identity.hashed_password,
            )
        )
        return result.rowcount > 0

    def set_active(self, conn: Connection, identity_id: int, is_active: bool) -> bool:
        result = conn.execute(
            identities.update().where(identities.c.id == identity_id).values(is_active=1 if is_active else 0)
        )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        driver_id=row.driver_id,
        client_id=row.client_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )
