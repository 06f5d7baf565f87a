"""
fleet/services.py -- Business operations for clients, drivers, vehicles and
orders, each paired with its audit entry.

Every mutation follows the same shape:
  1. Validate with reads (existence, uniqueness, state rules). Failures raise
     before any write, so a rejected request leaves no audit entry.
  2. Open one connection, write the entity, record the audit entry on the same
     connection, commit once. If either write raises, the connection closes
     without commit and nothing is visible.

Status changes (is_active toggles, order status) are audited only when the
value actually changes.

Route handlers have already passed the policy table in auth/authorization.py;
rules here that depend on the caller (only an ADMIN may change a natural key)
take the AuthContext explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from audit.models import AuditEntry, EntityType, OperationKind
from audit.recorder import AuditRecorder, snapshot
from auth.models import AuthContext, Role
from core.db import now_iso, to_iso
from core.errors import Conflict, NotFound, Unauthorized, ValidationFailure
from fleet.models import MAX_VEHICLES_PER_DRIVER, Client, Driver, Order, OrderStatus, Page, Vehicle
from fleet.store import FleetStore

logger = logging.getLogger("urbanfleet.fleet")

# Allowed order status moves. Same-status requests are no-ops and never reach this table.
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.ASSIGNED, OrderStatus.IN_TRANSIT, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.ASSIGNED: {OrderStatus.PENDING, OrderStatus.IN_TRANSIT, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.IN_TRANSIT: {OrderStatus.ASSIGNED, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: {OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: set(),
}


def _is_admin(ctx: AuthContext) -> bool:
    return ctx.role is Role.ADMIN


class FleetService:
    """Audited operations over FleetStore.

    Usage:
        service = FleetService(FleetStore(engine), AuditRecorder(engine))
        driver = service.create_driver(ctx, Driver(full_name="Ana", identification="123", ...))
    """

    def __init__(self, store: FleetStore, recorder: AuditRecorder) -> None:
        self.store = store
        self.recorder = recorder

    # ------------------------------------------------------------------
    # Audit helper
    # ------------------------------------------------------------------

    def _record(
        self,
        conn: Connection,
        ctx: AuthContext,
        entity_type: EntityType,
        entity: Any,
        operation: OperationKind,
    ) -> AuditEntry:
        if entity_type is EntityType.CLIENT:
            key, label = entity.identification, entity.full_name
        elif entity_type is EntityType.DRIVER:
            key, label = entity.identification, entity.full_name
        elif entity_type is EntityType.VEHICLE:
            key, label = entity.plate, f"{entity.brand} {entity.model}"
        else:
            key, label = None, None
        return self.recorder.record(
            conn, entity_type, entity.id, operation, ctx, snapshot(entity), natural_key=key, label=label
        )

    # ==================================================================
    # Clients
    # ==================================================================

    def get_client(self, client_id: int) -> Client:
        client = self.store.get_client(client_id)
        if client is None:
            raise NotFound(f"Client not found with id: {client_id}")
        return client

    def list_clients(self, is_active: Optional[bool] = None) -> list[Client]:
        return self.store.list_clients(is_active)

    def page_clients(self, page: int, size: int) -> Page:
        return self.store.page_clients(page, size)

    def create_client(self, ctx: AuthContext, client: Client) -> Client:
        if self.store.get_client_by_identification(client.identification) is not None:
            raise Conflict(f"A client with identification {client.identification} already exists.")
        created = replace(client, id=None, is_active=True)
        try:
            with self.store.engine.connect() as conn:
                created.id = self.store.insert_client(conn, created)
                self._record(conn, ctx, EntityType.CLIENT, created, OperationKind.CREATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A client with identification {client.identification} already exists.") from exc
        logger.info("Client %s created by %s", created.id, ctx.username)
        return created

    def update_client(self, ctx: AuthContext, client_id: int, changes: Client) -> Client:
        """Replace a client's editable fields. Identification changes are ADMIN only."""
        existing = self.get_client(client_id)
        if changes.identification != existing.identification:
            if not _is_admin(ctx):
                raise Unauthorized("Only an administrator may change a client's identification.")
            if self.store.get_client_by_identification(changes.identification) is not None:
                raise Conflict(f"A client with identification {changes.identification} already exists.")
        updated = replace(changes, id=client_id, is_active=existing.is_active)
        try:
            with self.store.engine.connect() as conn:
                if not self.store.update_client(conn, updated):
                    raise NotFound(f"Client not found with id: {client_id}")
                self._record(conn, ctx, EntityType.CLIENT, updated, OperationKind.UPDATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A client with identification {changes.identification} already exists.") from exc
        return updated

    def delete_client(self, ctx: AuthContext, client_id: int) -> None:
        existing = self.get_client(client_id)
        if self.store.list_orders(client_id=client_id):
            raise Conflict(f"Client {client_id} has orders and cannot be deleted. Deactivate it instead.")
        with self.store.engine.connect() as conn:
            if not self.store.delete_client(conn, client_id):
                raise NotFound(f"Client not found with id: {client_id}")
            self._record(conn, ctx, EntityType.CLIENT, existing, OperationKind.DELETE)
            conn.commit()
        logger.info("Client %s deleted by %s", client_id, ctx.username)

    def set_client_status(self, ctx: AuthContext, client_id: int, is_active: bool) -> Client:
        existing = self.get_client(client_id)
        if existing.is_active == is_active:
            return existing
        updated = replace(existing, is_active=is_active)
        with self.store.engine.connect() as conn:
            if not self.store.update_client(conn, updated):
                raise NotFound(f"Client not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.CLIENT, updated, OperationKind.STATUS_CHANGE)
            conn.commit()
        return updated

    def client_history(self, client_id: int) -> list[AuditEntry]:
        return self.recorder.for_entity(EntityType.CLIENT, client_id)

    def client_history_by_identification(self, identification: str) -> list[AuditEntry]:
        return self.recorder.for_natural_key(EntityType.CLIENT, identification)

    # ==================================================================
    # Drivers
    # ==================================================================

    def get_driver(self, driver_id: int) -> Driver:
        driver = self.store.get_driver(driver_id)
        if driver is None:
            raise NotFound(f"Driver not found with id: {driver_id}")
        return driver

    def get_driver_by_identification(self, identification: str) -> Driver:
        driver = self.store.get_driver_by_identification(identification)
        if driver is None:
            raise NotFound(f"Driver not found with identification: {identification}")
        return driver

    def list_drivers(self, is_active: Optional[bool] = None) -> list[Driver]:
        return self.store.list_drivers(is_active)

    def page_drivers(self, page: int, size: int) -> Page:
        return self.store.page_drivers(page, size)

    def create_driver(self, ctx: AuthContext, driver: Driver) -> Driver:
        if self.store.get_driver_by_identification(driver.identification) is not None:
            raise Conflict(f"A driver with identification {driver.identification} already exists.")
        created = replace(driver, id=None, is_active=True)
        try:
            with self.store.engine.connect() as conn:
                created.id = self.store.insert_driver(conn, created)
                self._record(conn, ctx, EntityType.DRIVER, created, OperationKind.CREATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A driver with identification {driver.identification} already exists.") from exc
        logger.info("Driver %s created by %s", created.id, ctx.username)
        return created

    def update_driver(self, ctx: AuthContext, driver_id: int, changes: Driver) -> Driver:
        """Replace a driver's editable fields. Identification changes are ADMIN only."""
        existing = self.get_driver(driver_id)
        if changes.identification != existing.identification:
            if not _is_admin(ctx):
                raise Unauthorized("Only an administrator may change a driver's identification.")
            if self.store.get_driver_by_identification(changes.identification) is not None:
                raise Conflict(f"A driver with identification {changes.identification} already exists.")
        updated = replace(changes, id=driver_id, is_active=existing.is_active)
        try:
            with self.store.engine.connect() as conn:
                if not self.store.update_driver(conn, updated):
                    raise NotFound(f"Driver not found with id: {driver_id}")
                self._record(conn, ctx, EntityType.DRIVER, updated, OperationKind.UPDATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A driver with identification {changes.identification} already exists.") from exc
        return updated

    def delete_driver(self, ctx: AuthContext, driver_id: int) -> None:
        existing = self.get_driver(driver_id)
        if self.store.count_vehicles_of_driver(driver_id) > 0:
            raise Conflict(f"Driver {driver_id} has assigned vehicles. Unassign them first.")
        with self.store.engine.connect() as conn:
            if not self.store.delete_driver(conn, driver_id):
                raise NotFound(f"Driver not found with id: {driver_id}")
            self._record(conn, ctx, EntityType.DRIVER, existing, OperationKind.DELETE)
            conn.commit()
        logger.info("Driver %s deleted by %s", driver_id, ctx.username)

    def set_driver_status(self, ctx: AuthContext, driver_id: int, is_active: bool) -> Driver:
        existing = self.get_driver(driver_id)
        if existing.is_active == is_active:
            return existing
        updated = replace(existing, is_active=is_active)
        with self.store.engine.connect() as conn:
            if not self.store.update_driver(conn, updated):
                raise NotFound(f"Driver not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.DRIVER, updated, OperationKind.STATUS_CHANGE)
            conn.commit()
        return updated

    def vehicles_of_driver(self, driver_id: int) -> list[Vehicle]:
        self.get_driver(driver_id)
        return self.store.vehicles_of_driver(driver_id)

    def assign_vehicle(self, ctx: AuthContext, driver_id: int, vehicle_id: int) -> Vehicle:
        """Assign a vehicle to a driver, up to MAX_VEHICLES_PER_DRIVER."""
        driver = self.get_driver(driver_id)
        vehicle = self.get_vehicle(vehicle_id)
        if not driver.is_active:
            raise Conflict(f"Driver {driver_id} is inactive.")
        if not vehicle.is_active:
            raise Conflict(f"Vehicle {vehicle.plate} is inactive and cannot be assigned.")
        if vehicle.driver_id == driver_id:
            raise Conflict(f"Vehicle {vehicle.plate} is already assigned to driver {driver_id}.")
        if vehicle.driver_id is not None:
            raise Conflict(f"Vehicle {vehicle.plate} is already assigned to another driver.")
        if self.store.count_vehicles_of_driver(driver_id) >= MAX_VEHICLES_PER_DRIVER:
            raise Conflict(f"Driver {driver_id} already has the maximum of {MAX_VEHICLES_PER_DRIVER} vehicles.")
        updated = replace(vehicle, driver_id=driver_id)
        with self.store.engine.connect() as conn:
            if not self.store.update_vehicle(conn, updated):
                raise NotFound(f"Vehicle not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.VEHICLE, updated, OperationKind.UPDATE)
            conn.commit()
        logger.info("Vehicle %s assigned to driver %s by %s", vehicle.plate, driver_id, ctx.username)
        return updated

    def unassign_vehicle(self, ctx: AuthContext, driver_id: int, vehicle_id: int) -> Vehicle:
        self.get_driver(driver_id)
        vehicle = self.get_vehicle(vehicle_id)
        if vehicle.driver_id != driver_id:
            raise Conflict(f"Vehicle {vehicle.plate} is not assigned to driver {driver_id}.")
        updated = replace(vehicle, driver_id=None)
        with self.store.engine.connect() as conn:
            if not self.store.update_vehicle(conn, updated):
                raise NotFound(f"Vehicle not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.VEHICLE, updated, OperationKind.UPDATE)
            conn.commit()
        logger.info("Vehicle %s unassigned from driver %s by %s", vehicle.plate, driver_id, ctx.username)
        return updated

    def driver_history(self, driver_id: int) -> list[AuditEntry]:
        return self.recorder.for_entity(EntityType.DRIVER, driver_id)

    def driver_history_by_identification(self, identification: str) -> list[AuditEntry]:
        return self.recorder.for_natural_key(EntityType.DRIVER, identification)

    def driver_history_by_name(self, name: str) -> list[AuditEntry]:
        return self.recorder.for_label(EntityType.DRIVER, name)

    # ==================================================================
    # Vehicles
    # ==================================================================

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        vehicle = self.store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle not found with id: {vehicle_id}")
        return vehicle

    def list_vehicles(self, is_active: Optional[bool] = None) -> list[Vehicle]:
        return self.store.list_vehicles(is_active)

    def page_vehicles(self, page: int, size: int) -> Page:
        return self.store.page_vehicles(page, size)

    def create_vehicle(self, ctx: AuthContext, vehicle: Vehicle) -> Vehicle:
        if self.store.get_vehicle_by_plate(vehicle.plate) is not None:
            raise Conflict(f"A vehicle with plate {vehicle.plate} already exists.")
        created = replace(vehicle, id=None, is_active=True, driver_id=None)
        try:
            with self.store.engine.connect() as conn:
                created.id = self.store.insert_vehicle(conn, created)
                self._record(conn, ctx, EntityType.VEHICLE, created, OperationKind.CREATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A vehicle with plate {vehicle.plate} already exists.") from exc
        logger.info("Vehicle %s created by %s", created.plate, ctx.username)
        return created

    def update_vehicle(self, ctx: AuthContext, vehicle_id: int, changes: Vehicle) -> Vehicle:
        """Replace a vehicle's editable fields. Plate changes are ADMIN only.

        The driver assignment is not editable here; use assign/unassign.
        """
        existing = self.get_vehicle(vehicle_id)
        if changes.plate != existing.plate:
            if not _is_admin(ctx):
                raise Unauthorized("Only an administrator may change a vehicle's plate.")
            if self.store.get_vehicle_by_plate(changes.plate) is not None:
                raise Conflict(f"A vehicle with plate {changes.plate} already exists.")
        updated = replace(changes, id=vehicle_id, is_active=existing.is_active, driver_id=existing.driver_id)
        try:
            with self.store.engine.connect() as conn:
                if not self.store.update_vehicle(conn, updated):
                    raise NotFound(f"Vehicle not found with id: {vehicle_id}")
                self._record(conn, ctx, EntityType.VEHICLE, updated, OperationKind.UPDATE)
                conn.commit()
        except IntegrityError as exc:
            raise Conflict(f"A vehicle with plate {changes.plate} already exists.") from exc
        return updated

    def delete_vehicle(self, ctx: AuthContext, vehicle_id: int) -> None:
        existing = self.get_vehicle(vehicle_id)
        with self.store.engine.connect() as conn:
            if not self.store.delete_vehicle(conn, vehicle_id):
                raise NotFound(f"Vehicle not found with id: {vehicle_id}")
            self._record(conn, ctx, EntityType.VEHICLE, existing, OperationKind.DELETE)
            conn.commit()
        logger.info("Vehicle %s deleted by %s", existing.plate, ctx.username)

    def set_vehicle_status(self, ctx: AuthContext, vehicle_id: int, is_active: bool) -> Vehicle:
        existing = self.get_vehicle(vehicle_id)
        if existing.is_active == is_active:
            return existing
        updated = replace(existing, is_active=is_active)
        with self.store.engine.connect() as conn:
            if not self.store.update_vehicle(conn, updated):
                raise NotFound(f"Vehicle not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.VEHICLE, updated, OperationKind.STATUS_CHANGE)
            conn.commit()
        return updated

    def vehicle_history(self, vehicle_id: int) -> list[AuditEntry]:
        return self.recorder.for_entity(EntityType.VEHICLE, vehicle_id)

    def vehicle_history_by_plate(self, plate: str) -> list[AuditEntry]:
        return self.recorder.for_natural_key(EntityType.VEHICLE, plate)

    # ==================================================================
    # Orders
    # ==================================================================

    def get_order(self, order_id: int) -> Order:
        order = self.store.get_order(order_id)
        if order is None:
            raise NotFound(f"Order not found with id: {order_id}")
        return order

    def list_orders(self) -> list[Order]:
        return self.store.list_orders()

    def page_orders(self, page: int, size: int) -> Page:
        return self.store.page_orders(page, size)

    def orders_by_client(self, client_id: int, status: Optional[OrderStatus] = None) -> list[Order]:
        self.get_client(client_id)
        return self.store.list_orders(client_id=client_id, status=status)

    def orders_by_driver(self, driver_id: int, status: Optional[OrderStatus] = None) -> list[Order]:
        self.get_driver(driver_id)
        return self.store.list_orders(driver_id=driver_id, status=status)

    def orders_by_status(self, status: OrderStatus) -> list[Order]:
        return self.store.list_orders(status=status)

    def orders_created_between(self, start: datetime, end: datetime) -> list[Order]:
        if start > end:
            raise ValidationFailure("The start of the range must not be after its end.")
        return self.store.list_orders(created_from=to_iso(start), created_to=to_iso(end))

    def _check_order_links(self, order: Order) -> None:
        client = self.get_client(order.client_id)
        if not client.is_active:
            raise Conflict(f"Client {client.id} is inactive.")
        if order.driver_id is not None:
            self.get_driver(order.driver_id)
        if order.vehicle_id is not None:
            self.get_vehicle(order.vehicle_id)

    def create_order(self, ctx: AuthContext, order: Order) -> Order:
        """Create an order in PENDING with a server-assigned created_at."""
        self._check_order_links(order)
        created = replace(order, id=None, status=OrderStatus.PENDING, created_at=now_iso())
        with self.store.engine.connect() as conn:
            created.id = self.store.insert_order(conn, created)
            self._record(conn, ctx, EntityType.ORDER, created, OperationKind.CREATE)
            conn.commit()
        logger.info("Order %s created by %s", created.id, ctx.username)
        return created

    def update_order(self, ctx: AuthContext, order_id: int, changes: Order) -> Order:
        """Replace an order's editable fields.

        status, created_at and the driver/vehicle assignment are kept; they
        change only through change_order_status() and assign_order().
        """
        existing = self.get_order(order_id)
        if changes.client_id != existing.client_id:
            self._check_order_links(replace(changes, driver_id=None, vehicle_id=None))
        updated = replace(
            changes,
            id=order_id,
            status=existing.status,
            created_at=existing.created_at,
            driver_id=existing.driver_id,
            vehicle_id=existing.vehicle_id,
        )
        with self.store.engine.connect() as conn:
            if not self.store.update_order(conn, updated):
                raise NotFound(f"Order not found with id: {order_id}")
            self._record(conn, ctx, EntityType.ORDER, updated, OperationKind.UPDATE)
            conn.commit()
        return updated

    def delete_order(self, ctx: AuthContext, order_id: int) -> None:
        existing = self.get_order(order_id)
        with self.store.engine.connect() as conn:
            if not self.store.delete_order(conn, order_id):
                raise NotFound(f"Order not found with id: {order_id}")
            self._record(conn, ctx, EntityType.ORDER, existing, OperationKind.DELETE)
            conn.commit()
        logger.info("Order %s deleted by %s", order_id, ctx.username)

    def assign_order(self, ctx: AuthContext, order_id: int, driver_id: int, vehicle_id: int) -> Order:
        """Attach a driver and vehicle to an order. A PENDING order becomes ASSIGNED."""
        order = self.get_order(order_id)
        driver = self.get_driver(driver_id)
        vehicle = self.get_vehicle(vehicle_id)
        if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            raise Conflict(f"Order {order_id} is {order.status.value} and cannot be reassigned.")
        if not driver.is_active:
            raise Conflict(f"Driver {driver_id} is inactive.")
        if not vehicle.is_active:
            raise Conflict(f"Vehicle {vehicle.plate} is inactive.")
        if vehicle.driver_id is not None and vehicle.driver_id != driver_id:
            raise Conflict(f"Vehicle {vehicle.plate} is assigned to another driver.")
        if vehicle.driver_id != driver_id and self.store.count_vehicles_of_driver(driver_id) >= MAX_VEHICLES_PER_DRIVER:
            raise Conflict(f"Driver {driver_id} already has the maximum of {MAX_VEHICLES_PER_DRIVER} vehicles.")
        status = OrderStatus.ASSIGNED if order.status is OrderStatus.PENDING else order.status
        updated = replace(order, driver_id=driver_id, vehicle_id=vehicle_id, status=status)
        with self.store.engine.connect() as conn:
            if not self.store.update_order(conn, updated):
                raise NotFound(f"Order not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.ORDER, updated, OperationKind.UPDATE)
            conn.commit()
        logger.info("Order %s assigned to driver %s / vehicle %s by %s", order_id, driver_id, vehicle.plate, ctx.username)
        return updated

    def change_order_status(self, ctx: AuthContext, order_id: int, status: OrderStatus) -> Order:
        """Move an order to status. A COMPLETED order may only be CANCELLED.

        Entering IN_TRANSIT stamps actual_pickup and entering COMPLETED stamps
        actual_delivery, unless already set.
        """
        order = self.get_order(order_id)
        if order.status is status:
            return order
        if status not in _ORDER_TRANSITIONS[order.status]:
            raise Conflict(f"Order {order_id} cannot move from {order.status.value} to {status.value}.")
        updated = replace(order, status=status)
        if status is OrderStatus.IN_TRANSIT and updated.actual_pickup is None:
            updated.actual_pickup = now_iso()
        if status is OrderStatus.COMPLETED and updated.actual_delivery is None:
            updated.actual_delivery = now_iso()
        with self.store.engine.connect() as conn:
            if not self.store.update_order(conn, updated):
                raise NotFound(f"Order not found with id: {updated.id}")
            self._record(conn, ctx, EntityType.ORDER, updated, OperationKind.STATUS_CHANGE)
            conn.commit()
        logger.info("Order %s %s -> %s by %s", order_id, order.status.value, status.value, ctx.username)
        return updated

    def order_history(self, order_id: int) -> list[AuditEntry]:
        return self.recorder.for_entity(EntityType.ORDER, order_id)

    def order_history_by_editor(self, username: str) -> list[AuditEntry]:
        return self.recorder.for_editor(EntityType.ORDER, editor_username=username)
