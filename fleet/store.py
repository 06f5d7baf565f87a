"""
fleet/store.py -- SQLAlchemy Core persistence layer for clients, drivers,
vehicles and orders.

Uses SQLAlchemy Core (not ORM) so the dataclasses in fleet/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. FleetStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Connections:
  Read methods open their own short-lived connection.
  Write methods take the caller's Connection and never commit. FleetService
  runs the write and the audit insert on that one connection and commits once.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, Float, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from core.db import metadata
from fleet.models import Client, Driver, Order, OrderStatus, Page, Vehicle

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

clients = Table(
    "clients",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("full_name", String(100), nullable=False),
    Column("identification", String(20), nullable=False, unique=True),
    Column("phone", String(15), nullable=False),
    Column("address", String(255), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

drivers = Table(
    "drivers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("full_name", String(100), nullable=False),
    Column("identification", String(20), nullable=False, unique=True),
    Column("birth_date", String(10), nullable=False),  # YYYY-MM-DD
    Column("phone", String(20), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

vehicles = Table(
    "vehicles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("plate", String(7), nullable=False, unique=True),
    Column("capacity_kg", Float, nullable=False),
    Column("brand", String(50), nullable=False),
    Column("model", String(50), nullable=False),
    Column("year", Integer),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("driver_id", Integer),  # weak link, no FK
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, nullable=False),
    Column("origin", String(255), nullable=False),
    Column("destination", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("estimated_pickup", String(32)),
    Column("actual_pickup", String(32)),
    Column("estimated_delivery", String(32)),
    Column("actual_delivery", String(32)),
    Column("status", String(20), nullable=False, server_default=OrderStatus.PENDING.value),
    Column("vehicle_id", Integer),
    Column("driver_id", Integer),
    Column("weight_kg", Float),
    Column("notes", Text),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class FleetStore:
    """Repository for Client, Driver, Vehicle and Order.

    Usage:
        store = FleetStore(engine)
        with store.engine.connect() as conn:
            driver_id = store.insert_driver(conn, driver)
            conn.commit()
        driver = store.get_driver(driver_id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Shared read helpers
    # ------------------------------------------------------------------

    def _one(self, stmt, mapper):
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return mapper(row) if row is not None else None

    def _all(self, stmt, mapper) -> list:
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [mapper(r) for r in rows]

    def _page(self, table: Table, mapper, page: int, size: int) -> Page:
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(table)).scalar() or 0
            rows = conn.execute(table.select().order_by(table.c.id).limit(size).offset(page * size)).fetchall()
        return Page(items=[mapper(r) for r in rows], page=page, size=size, total=total)

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def get_client(self, client_id: int) -> Optional[Client]:
        return self._one(clients.select().where(clients.c.id == client_id), _row_to_client)

    def get_client_by_identification(self, identification: str) -> Optional[Client]:
        return self._one(clients.select().where(clients.c.identification == identification), _row_to_client)

    def list_clients(self, is_active: Optional[bool] = None) -> list[Client]:
        stmt = clients.select().order_by(clients.c.id)
        if is_active is not None:
            stmt = stmt.where(clients.c.is_active == (1 if is_active else 0))
        return self._all(stmt, _row_to_client)

    def page_clients(self, page: int, size: int) -> Page:
        return self._page(clients, _row_to_client, page, size)

    def insert_client(self, conn: Connection, client: Client) -> int:
        result = conn.execute(clients.insert().values(**_client_values(client)))
        return result.inserted_primary_key[0]

    def update_client(self, conn: Connection, client: Client) -> bool:
        result = conn.execute(clients.update().where(clients.c.id == client.id).values(**_client_values(client)))
        return result.rowcount > 0

    def delete_client(self, conn: Connection, client_id: int) -> bool:
        result = conn.execute(clients.delete().where(clients.c.id == client_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def get_driver(self, driver_id: int) -> Optional[Driver]:
        return self._one(drivers.select().where(drivers.c.id == driver_id), _row_to_driver)

    def get_driver_by_identification(self, identification: str) -> Optional[Driver]:
        return self._one(drivers.select().where(drivers.c.identification == identification), _row_to_driver)

    def list_drivers(self, is_active: Optional[bool] = None) -> list[Driver]:
        stmt = drivers.select().order_by(drivers.c.id)
        if is_active is not None:
            stmt = stmt.where(drivers.c.is_active == (1 if is_active else 0))
        return self._all(stmt, _row_to_driver)

    def page_drivers(self, page: int, size: int) -> Page:
        return self._page(drivers, _row_to_driver, page, size)

    def insert_driver(self, conn: Connection, driver: Driver) -> int:
        result = conn.execute(drivers.insert().values(**_driver_values(driver)))
        return result.inserted_primary_key[0]

    def update_driver(self, conn: Connection, driver: Driver) -> bool:
        result = conn.execute(drivers.update().where(drivers.c.id == driver.id).values(**_driver_values(driver)))
        return result.rowcount > 0

    def delete_driver(self, conn: Connection, driver_id: int) -> bool:
        result = conn.execute(drivers.delete().where(drivers.c.id == driver_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        return self._one(vehicles.select().where(vehicles.c.id == vehicle_id), _row_to_vehicle)

    def get_vehicle_by_plate(self, plate: str) -> Optional[Vehicle]:
        return self._one(vehicles.select().where(vehicles.c.plate == plate), _row_to_vehicle)

    def list_vehicles(self, is_active: Optional[bool] = None) -> list[Vehicle]:
        stmt = vehicles.select().order_by(vehicles.c.id)
        if is_active is not None:
            stmt = stmt.where(vehicles.c.is_active == (1 if is_active else 0))
        return self._all(stmt, _row_to_vehicle)

    def page_vehicles(self, page: int, size: int) -> Page:
        return self._page(vehicles, _row_to_vehicle, page, size)

    def vehicles_of_driver(self, driver_id: int) -> list[Vehicle]:
        return self._all(
            vehicles.select().where(vehicles.c.driver_id == driver_id).order_by(vehicles.c.id), _row_to_vehicle
        )

    def count_vehicles_of_driver(self, driver_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(vehicles).where(vehicles.c.driver_id == driver_id)
            ).scalar()
        return result or 0

    def insert_vehicle(self, conn: Connection, vehicle: Vehicle) -> int:
        result = conn.execute(vehicles.insert().values(**_vehicle_values(vehicle)))
        return result.inserted_primary_key[0]

    def update_vehicle(self, conn: Connection, vehicle: Vehicle) -> bool:
        result = conn.execute(vehicles.update().where(vehicles.c.id == vehicle.id).values(**_vehicle_values(vehicle)))
        return result.rowcount > 0

    def delete_vehicle(self, conn: Connection, vehicle_id: int) -> bool:
        result = conn.execute(vehicles.delete().where(vehicles.c.id == vehicle_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Optional[Order]:
        return self._one(orders.select().where(orders.c.id == order_id), _row_to_order)

    def list_orders(
        self,
        client_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        created_from: Optional[str] = None,
        created_to: Optional[str] = None,
    ) -> list[Order]:
        """Return orders matching every given filter, oldest first.

        created_from / created_to are inclusive ISO 8601 bounds on created_at.
        """
        stmt = orders.select()
        if client_id is not None:
            stmt = stmt.where(orders.c.client_id == client_id)
        if driver_id is not None:
            stmt = stmt.where(orders.c.driver_id == driver_id)
        if status is not None:
            stmt = stmt.where(orders.c.status == status.value)
        if created_from is not None:
            stmt = stmt.where(orders.c.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(orders.c.created_at <= created_to)
        return self._all(stmt.order_by(orders.c.id), _row_to_order)

    def page_orders(self, page: int, size: int) -> Page:
        return self._page(orders, _row_to_order, page, size)

    def insert_order(self, conn: Connection, order: Order) -> int:
        result = conn.execute(orders.insert().values(**_order_values(order)))
        return result.inserted_primary_key[0]

    def update_order(self, conn: Connection, order: Order) -> bool:
        result = conn.execute(orders.update().where(orders.c.id == order.id).values(**_order_values(order)))
        return result.rowcount > 0

    def delete_order(self, conn: Connection, order_id: int) -> bool:
        result = conn.execute(orders.delete().where(orders.c.id == order_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Value builders (dataclass -> column dict, id excluded)
# ---------------------------------------------------------------------------


def _client_values(c: Client) -> dict:
    return {
        "full_name": c.full_name,
        "identification": c.identification,
        "phone": c.phone,
        "address": c.address,
        "is_active": 1 if c.is_active else 0,
    }


def _driver_values(d: Driver) -> dict:
    return {
        "full_name": d.full_name,
        "identification": d.identification,
        "birth_date": d.birth_date,
        "phone": d.phone,
        "is_active": 1 if d.is_active else 0,
    }


def _vehicle_values(v: Vehicle) -> dict:
    return {
        "plate": v.plate,
        "capacity_kg": v.capacity_kg,
        "brand": v.brand,
        "model": v.model,
        "year": v.year,
        "is_active": 1 if v.is_active else 0,
        "driver_id": v.driver_id,
    }


def _order_values(o: Order) -> dict:
    return {
        "client_id": o.client_id,
        "origin": o.origin,
        "destination": o.destination,
        "created_at": o.created_at,
        "estimated_pickup": o.estimated_pickup,
        "actual_pickup": o.actual_pickup,
        "estimated_delivery": o.estimated_delivery,
        "actual_delivery": o.actual_delivery,
        "status": o.status.value,
        "vehicle_id": o.vehicle_id,
        "driver_id": o.driver_id,
        "weight_kg": o.weight_kg,
        "notes": o.notes,
    }


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_client(row) -> Client:
    return Client(
        id=row.id,
        full_name=row.full_name,
        identification=row.identification,
        phone=row.phone,
        address=row.address,
        is_active=bool(row.is_active),
    )


def _row_to_driver(row) -> Driver:
    return Driver(
        id=row.id,
        full_name=row.full_name,
        identification=row.identification,
        birth_date=row.birth_date,
        phone=row.phone,
        is_active=bool(row.is_active),
    )


def _row_to_vehicle(row) -> Vehicle:
    return Vehicle(
        id=row.id,
        plate=row.plate,
        capacity_kg=row.capacity_kg,
        brand=row.brand,
        model=row.model,
        year=row.year,
        is_active=bool(row.is_active),
        driver_id=row.driver_id,
    )


def _row_to_order(row) -> Order:
    return Order(
        id=row.id,
        client_id=row.client_id,
        origin=row.origin,
        destination=row.destination,
        created_at=row.created_at,
        estimated_pickup=row.estimated_pickup,
        actual_pickup=row.actual_pickup,
        estimated_delivery=row.estimated_delivery,
        actual_delivery=row.actual_delivery,
        status=OrderStatus(row.status),
        vehicle_id=row.vehicle_id,
        driver_id=row.driver_id,
        weight_kg=row.weight_kg,
        notes=row.notes,
    )
