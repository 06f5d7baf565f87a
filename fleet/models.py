"""
fleet/models.py -- Domain dataclasses for the transport fleet.

These are pure data containers with zero logic. Business rules (uniqueness,
the per-driver vehicle cap, order status moves) live in fleet/services.py.

Links between entities (Vehicle.driver_id, Order.client_id / driver_id /
vehicle_id) are lookup relations only. Nothing cascades.

id is None before the record is written to the database.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# A driver may have at most this many vehicles assigned at once.
MAX_VEHICLES_PER_DRIVER = 3

PHONE_PATTERN = r"^\+57\d{10}$"
PLATE_PATTERN = r"^[A-Z]{3}-\d{3}$"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass
class Client:
    full_name: str
    identification: str  # unique natural key
    phone: str
    address: str
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class Driver:
    full_name: str
    identification: str  # unique natural key (national id)
    birth_date: str  # YYYY-MM-DD
    phone: str  # +57 followed by 10 digits
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class Vehicle:
    plate: str  # unique natural key, ABC-123
    capacity_kg: float
    brand: str
    model: str
    year: Optional[int] = None
    is_active: bool = True
    driver_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Order:
    """A delivery order.

    created_at is set by the service on create and never accepted from input.
    """

    client_id: int
    origin: str
    destination: str
    status: OrderStatus = OrderStatus.PENDING
    created_at: str = ""  # ISO 8601
    estimated_pickup: Optional[str] = None
    actual_pickup: Optional[str] = None
    estimated_delivery: Optional[str] = None
    actual_delivery: Optional[str] = None
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    weight_kg: Optional[float] = None
    notes: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class Page:
    """One page of a listing. page is zero-based."""

    items: list
    page: int
    size: int
    total: int
