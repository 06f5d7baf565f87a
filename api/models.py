"""
API request and response models for the urbanfleet REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in fleet/models.py,
auth/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from datetime import date, datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from audit.models import EntityType, OperationKind
from auth.models import Role
from fleet.models import PHONE_PATTERN, PLATE_PATTERN, OrderStatus

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Uniform error body returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    status: int
    error: str
    message: str
    path: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health. status is "healthy" or "degraded"."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]


class PageResponse(BaseModel, Generic[T]):
    """One page of a listing. page is zero-based."""

    model_config = ConfigDict(frozen=True)

    items: list[T]
    page: int
    size: int
    total: int


class StatusUpdate(BaseModel):
    """Request body for PATCH .../{id}/status (soft delete / reactivate)."""

    is_active: bool


class AuditEntryResponse(BaseModel):
    """One audit trail entry. payload is the JSON snapshot as stored."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    entity_type: EntityType
    entity_id: int
    operation: OperationKind
    changed_at: str
    editor_id: Optional[int]
    editor_username: str
    natural_key: Optional[str]
    payload: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    """Response for a successful login. token goes in the Authorization header."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: Role


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register and POST /api/v1/users."""

    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=8, max_length=255)
    role: Role
    driver_id: Optional[int] = None
    client_id: Optional[int] = None


class IdentityUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}."""

    role: Role
    driver_id: Optional[int] = None
    client_id: Optional[int] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=255)


class IdentityResponse(BaseModel):
    """Public view of an identity. The password hash is never exposed."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    username: str
    role: Role
    driver_id: Optional[int]
    client_id: Optional[int]
    is_active: bool
    created_at: str


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class ClientIn(BaseModel):
    """Request body for POST /clients and PUT /clients/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=100)
    identification: str = Field(min_length=1, max_length=20)
    phone: str = Field(min_length=1, max_length=15)
    address: str = Field(min_length=1, max_length=255)


class ClientResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    full_name: str
    identification: str
    phone: str
    address: str
    is_active: bool


# ---------------------------------------------------------------------------
# Drivers
# ---------------------------------------------------------------------------


class DriverIn(BaseModel):
    """Request body for POST /drivers and PUT /drivers/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=100)
    identification: str = Field(min_length=1, max_length=20)
    birth_date: date
    phone: str = Field(pattern=PHONE_PATTERN, description="+57 followed by 10 digits")


class DriverResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    full_name: str
    identification: str
    birth_date: str
    phone: str
    is_active: bool


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


class VehicleIn(BaseModel):
    """Request body for POST /vehicles and PUT /vehicles/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plate: str = Field(pattern=PLATE_PATTERN, description="Format ABC-123")
    capacity_kg: float = Field(gt=0)
    brand: str = Field(min_length=1, max_length=50)
    model: str = Field(min_length=1, max_length=50)
    year: Optional[int] = Field(default=None, ge=1900, le=2100)


class VehicleResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    plate: str
    capacity_kg: float
    brand: str
    model: str
    year: Optional[int]
    is_active: bool
    driver_id: Optional[int]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderIn(BaseModel):
    """Request body for POST /orders and PUT /orders/{id}.

    driver_id / vehicle_id are honoured on create only; afterwards use
    PATCH /orders/{id}/assignment. Status and created_at are server-owned.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    client_id: int
    origin: str = Field(min_length=1, max_length=255)
    destination: str = Field(min_length=1, max_length=255)
    estimated_pickup: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    weight_kg: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None


class OrderAssignment(BaseModel):
    """Request body for PATCH /orders/{id}/assignment."""

    driver_id: int
    vehicle_id: int


class OrderStatusUpdate(BaseModel):
    """Request body for PATCH /orders/{id}/status."""

    status: OrderStatus


class OrderResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    client_id: int
    origin: str
    destination: str
    status: OrderStatus
    created_at: str
    estimated_pickup: Optional[str]
    actual_pickup: Optional[str]
    estimated_delivery: Optional[str]
    actual_delivery: Optional[str]
    vehicle_id: Optional[int]
    driver_id: Optional[int]
    weight_kg: Optional[float]
    notes: Optional[str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_page(model: type[BaseModel], page) -> PageResponse:
    """Convert a fleet.models.Page of dataclasses into a PageResponse of model."""
    return PageResponse[model](
        items=[model.model_validate(item) for item in page.items],
        page=page.page,
        size=page.size,
        total=page.total,
    )
