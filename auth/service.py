"""
auth/service.py -- Identity administration with audit: registration, updates,
activation, and the startup admin seed.

Same transaction shape as fleet/services.py: validate with reads, then write
the identity and its audit entry on one connection and commit once.

Identity audit payloads never contain the password hash.

Rules:
  - username unique (Conflict), password >= 8 characters (ValidationFailure)
  - driver_id only on CONDUCTOR, client_id only on CLIENTE (ValidationFailure)
  - linked driver / client must exist (NotFound) and not be linked to another
    identity (Conflict)
  - only an ADMIN may create or promote ADMIN identities (Unauthorized)
  - no self-deactivation, and the last active ADMIN cannot be deactivated or
    demoted (Conflict)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from sqlalchemy.exc import IntegrityError

from audit.models import AuditEntry, EntityType, OperationKind
from audit.recorder import AuditRecorder, snapshot
from auth.models import AuthContext, Identity, Role
from auth.store import IdentityStore
from auth.tokens import hash_password
from core.errors import Conflict, NotFound, Unauthorized, ValidationFailure
from fleet.store import FleetStore

logger = logging.getLogger("urbanfleet.auth")

MIN_PASSWORD_LENGTH = 8

_SNAPSHOT_EXCLUDE = ("hashed_password",)


class IdentityService:
    """Audited identity operations.

    Usage:
        service = IdentityService(identity_store, fleet_store, recorder)
        identity = service.register(ctx, "ana", "s3cret-pass", Role.CLIENTE, client_id=4)
    """

    def __init__(self, store: IdentityStore, fleet: FleetStore, recorder: AuditRecorder) -> None:
        self.store = store
        self.fleet = fleet
        self.recorder = recorder

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, identity_id: int) -> Identity:
        identity = self.store.get_by_id(identity_id)
        if identity is None:
            raise NotFound(f"User not found with id: {identity_id}")
        return identity

    def get_by_username(self, username: str) -> Identity:
        return self.store.find_by_username(username)

    def list_all(self) -> list[Identity]:
        return self.store.list_all()

    def history(self, identity_id: int) -> list[AuditEntry]:
        return self.recorder.for_entity(EntityType.IDENTITY, identity_id)

    def history_by_username(self, username: str) -> list[AuditEntry]:
        return self.recorder.for_natural_key(EntityType.IDENTITY, username)

    def edits_by(self, editor_id: Optional[int] = None, editor_username: Optional[str] = None) -> list[AuditEntry]:
        """Identity changes made by one editor, newest first."""
        return self.recorder.for_editor(EntityType.IDENTITY, editor_id=editor_id, editor_username=editor_username)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_links(
        self,
        role: Role,
        driver_id: Optional[int],
        client_id: Optional[int],
        identity_id: Optional[int] = None,
    ) -> None:
        if driver_id is not None and role is not Role.CONDUCTOR:
            raise ValidationFailure("driver_id can only be set on a CONDUCTOR user.")
        if client_id is not None and role is not Role.CLIENTE:
            raise ValidationFailure("client_id can only be set on a CLIENTE user.")
        if driver_id is not None:
            if self.fleet.get_driver(driver_id) is None:
                raise NotFound(f"Driver not found with id: {driver_id}")
            holder = self.store.get_by_driver_id(driver_id)
            if holder is not None and holder.id != identity_id:
                raise Conflict(f"Driver {driver_id} is already linked to another user.")
        if client_id is not None:
            if self.fleet.get_client(client_id) is None:
                raise NotFound(f"Client not found with id: {client_id}")
            holder = self.store.get_by_client_id(client_id)
            if holder is not None and holder.id != identity_id:
                raise Conflict(f"Client {client_id} is already linked to another user.")

    def _record(self, conn, ctx: AuthContext, identity: Identity, operation: OperationKind) -> AuditEntry:
        return self.recorder.record(
            conn,
            EntityType.IDENTITY,
            identity.id,
            operation,
            ctx,
            snapshot(identity, exclude=_SNAPSHOT_EXCLUDE),
            natural_key=identity.username,
            label=identity.username,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(
        self,
        ctx: AuthContext,
        username: str,
        password: str,
        role: Role,
        driver_id: Optional[int] = None,
        client_id: Optional[int] = None,
    ) -> Identity:
        """Create an active identity with a bcrypt-hashed password.

        Anonymous self-registration is attributed to the new identity itself.
        """
        if role is Role.ADMIN and ctx.role is not Role.ADMIN:
            raise Unauthorized("Only an administrator may create administrator accounts.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        if self.store.get_by_username(username) is not None:
            raise Conflict(f"Username {username} is already taken.")
        self._check_links(role, driver_id, client_id)
        identity = Identity(
            username=username,
            role=role,
            hashed_password=hash_password(password),
            driver_id=driver_id,
            client_id=client_id,
        )
        return self._insert(ctx, identity)

    def _insert(self, ctx: AuthContext, identity: Identity) -> Identity:
        try:
            with self.store.engine.connect() as conn:
                created = self.store.insert(conn, identity)
                editor = ctx if ctx.is_authenticated else AuthContext.for_identity(created)
                self._record(conn, editor, created, OperationKind.CREATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"Username {identity.username} or one of its profile links is already taken.") from exc
        logger.info("User %s (%s) created by %s", created.username, created.role.value, ctx.username or created.username)
        return created

    def ensure_admin(self, username: str, password: str) -> Optional[Identity]:
        """Seed an ADMIN identity when username is free. Returns it, or None if it existed.

        Bypasses the password length rule so the default admin/admin account
        can be seeded.
        """
        if self.store.get_by_username(username) is not None:
            return None
        created = self._insert(
            AuthContext.anonymous(),
            Identity(username=username, role=Role.ADMIN, hashed_password=hash_password(password)),
        )
        logger.warning("Seeded administrator account %r; change its password", username)
        return created

    def update(
        self,
        ctx: AuthContext,
        identity_id: int,
        role: Role,
        driver_id: Optional[int] = None,
        client_id: Optional[int] = None,
        password: Optional[str] = None,
    ) -> Identity:
        """Replace role, profile links and optionally the password."""
        existing = self.get(identity_id)
        if role is Role.ADMIN and ctx.role is not Role.ADMIN:
            raise Unauthorized("Only an administrator may grant the ADMIN role.")
        if existing.role is Role.ADMIN and role is not Role.ADMIN and existing.is_active:
            if self.store.count_active_admins() <= 1:
                raise Conflict("Cannot demote the last active administrator.")
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
        self._check_links(role, driver_id, client_id, identity_id=identity_id)
        updated = replace(
            existing,
            role=role,
            driver_id=driver_id,
            client_id=client_id,
            hashed_password=hash_password(password) if password is not None else existing.hashed_password,
        )
        try:
            with self.store.engine.connect() as conn:
                if not self.store.update(conn, updated):
                    raise NotFound(f"User not found with id: {identity_id}")
                self._record(conn, ctx, updated, OperationKind.UPDATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("The driver or client is already linked to another user.") from exc
        return updated

    def set_status(self, ctx: AuthContext, identity_id: int, is_active: bool) -> Identity:
        """Activate or deactivate. Deactivation revokes access on the next request."""
        existing = self.get(identity_id)
        if existing.is_active == is_active:
            return existing
        if not is_active:
            if ctx.identity is not None and ctx.identity.id == identity_id:
                raise Conflict("You cannot deactivate your own account.")
            if existing.role is Role.ADMIN and self.store.count_active_admins() <= 1:
                raise Conflict("Cannot deactivate the last active administrator.")
        updated = replace(existing, is_active=is_active)
        with self.store.engine.connect() as conn:
            if not self.store.set_active(conn, identity_id, is_active):
                raise NotFound(f"User not found with id: {identity_id}")
            self._record(conn, ctx, updated, OperationKind.STATUS_CHANGE)
            conn.commit()
        logger.info("User %s %s by %s", existing.username, "activated" if is_active else "deactivated", ctx.username)
        return updated
