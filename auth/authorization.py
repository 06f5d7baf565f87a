"""
auth/authorization.py -- Authorization resolver: ownership predicates and the
role policy table.

Everything here is a pure decision over an explicit AuthContext plus read-only
fleet lookups. Nothing writes, nothing reads ambient request state.

Ownership predicates answer "is this identity directly linked to that
resource?". A lookup that finds nothing is a plain False, never an error, so a
non-admin probing ids learns nothing beyond "denied".

The policy table maps (action, role) to ALLOW, DENY or OWNERSHIP. ADMIN is
ALLOW for every action. OWNERSHIP delegates to the predicate the route passes
to enforce(). Anonymous callers are always rejected with Unauthenticated.

Layer rule: no imports from api/ or audit/. fleet/store.py is used for
lookups only (TYPE_CHECKING import).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Optional

from auth.models import AuthContext, Role
from core.errors import Unauthenticated, Unauthorized

if TYPE_CHECKING:
    from fleet.store import FleetStore

logger = logging.getLogger("urbanfleet.auth")

# Attribution name for writes made without an authenticated identity.
ANONYMOUS_USERNAME = "anonymous"


# ---------------------------------------------------------------------------
# Ownership predicates
# ---------------------------------------------------------------------------


def _linked_driver_id(ctx: AuthContext) -> Optional[int]:
    if ctx.identity is None or ctx.identity.role is not Role.CONDUCTOR:
        return None
    return ctx.identity.driver_id


def _linked_client_id(ctx: AuthContext) -> Optional[int]:
    if ctx.identity is None or ctx.identity.role is not Role.CLIENTE:
        return None
    return ctx.identity.client_id


def is_self(ctx: AuthContext, target_user_id: Optional[int]) -> bool:
    return ctx.identity is not None and target_user_id is not None and ctx.identity.id == target_user_id


def owns_driver_by_id(ctx: AuthContext, driver_id: Optional[int]) -> bool:
    linked = _linked_driver_id(ctx)
    return linked is not None and driver_id is not None and linked == driver_id


def owns_driver_by_natural_key(ctx: AuthContext, fleet: FleetStore, identification: str) -> bool:
    linked = _linked_driver_id(ctx)
    if linked is None:
        return False
    driver = fleet.get_driver_by_identification(identification)
    return driver is not None and driver.id == linked


def owns_vehicle_by_id(ctx: AuthContext, fleet: FleetStore, vehicle_id: Optional[int]) -> bool:
    linked = _linked_driver_id(ctx)
    if linked is None or vehicle_id is None:
        return False
    vehicle = fleet.get_vehicle(vehicle_id)
    return vehicle is not None and vehicle.driver_id == linked


def owns_vehicle_by_plate(ctx: AuthContext, fleet: FleetStore, plate: str) -> bool:
    linked = _linked_driver_id(ctx)
    if linked is None:
        return False
    vehicle = fleet.get_vehicle_by_plate(plate)
    return vehicle is not None and vehicle.driver_id == linked


def owns_client_by_id(ctx: AuthContext, client_id: Optional[int]) -> bool:
    linked = _linked_client_id(ctx)
    return linked is not None and client_id is not None and linked == client_id


def owns_order_as_client(ctx: AuthContext, fleet: FleetStore, order_id: Optional[int]) -> bool:
    linked = _linked_client_id(ctx)
    if linked is None or order_id is None:
        return False
    order = fleet.get_order(order_id)
    return order is not None and order.client_id == linked


def order_assigned_to_driver(ctx: AuthContext, fleet: FleetStore, order_id: Optional[int]) -> bool:
    linked = _linked_driver_id(ctx)
    if linked is None or order_id is None:
        return False
    order = fleet.get_order(order_id)
    return order is not None and order.driver_id == linked


def current_username_or_default(ctx: Optional[AuthContext]) -> str:
    """Username for audit attribution. Never used for access decisions."""
    if ctx is None or ctx.identity is None:
        return ANONYMOUS_USERNAME
    return ctx.identity.username


# ---------------------------------------------------------------------------
# Policy table
# ---------------------------------------------------------------------------


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    OWNERSHIP = "ownership"


class Action(str, Enum):
    CLIENT_CREATE = "client:create"
    CLIENT_READ = "client:read"
    CLIENT_LIST = "client:list"
    CLIENT_UPDATE = "client:update"
    CLIENT_DELETE = "client:delete"
    CLIENT_STATUS = "client:status"
    CLIENT_AUDIT = "client:audit"
    CLIENT_AUDIT_BY_KEY = "client:audit-by-key"

    DRIVER_CREATE = "driver:create"
    DRIVER_READ = "driver:read"
    DRIVER_READ_BY_KEY = "driver:read-by-key"
    DRIVER_LIST = "driver:list"
    DRIVER_UPDATE = "driver:update"
    DRIVER_DELETE = "driver:delete"
    DRIVER_STATUS = "driver:status"
    DRIVER_ASSIGN_VEHICLE = "driver:assign-vehicle"
    DRIVER_VEHICLES = "driver:vehicles"
    DRIVER_AUDIT = "driver:audit"
    DRIVER_AUDIT_BY_KEY = "driver:audit-by-key"
    DRIVER_AUDIT_BY_NAME = "driver:audit-by-name"

    VEHICLE_CREATE = "vehicle:create"
    VEHICLE_READ = "vehicle:read"
    VEHICLE_LIST = "vehicle:list"
    VEHICLE_LIST_ACTIVE = "vehicle:list-active"
    VEHICLE_UPDATE = "vehicle:update"
    VEHICLE_DELETE = "vehicle:delete"
    VEHICLE_STATUS = "vehicle:status"
    VEHICLE_AUDIT = "vehicle:audit"
    VEHICLE_AUDIT_BY_KEY = "vehicle:audit-by-key"

    ORDER_CREATE = "order:create"
    ORDER_READ = "order:read"
    ORDER_LIST = "order:list"
    ORDER_UPDATE = "order:update"
    ORDER_DELETE = "order:delete"
    ORDER_ASSIGN = "order:assign"
    ORDER_STATUS = "order:status"
    ORDER_BY_CLIENT = "order:by-client"
    ORDER_BY_DRIVER = "order:by-driver"
    ORDER_SEARCH = "order:search"
    ORDER_STATUSES = "order:statuses"
    ORDER_AUDIT = "order:audit"

    IDENTITY_ME = "identity:me"
    IDENTITY_MANAGE = "identity:manage"
    IDENTITY_AUDIT = "identity:audit"


_A, _D, _O = Decision.ALLOW, Decision.DENY, Decision.OWNERSHIP

# Non-admin decisions as (CONDUCTOR, CLIENTE). Anything missing is DENY.
_NON_ADMIN: dict[Action, tuple[Decision, Decision]] = {
    Action.CLIENT_READ: (_D, _O),
    Action.CLIENT_UPDATE: (_D, _O),
    Action.CLIENT_AUDIT: (_D, _O),
    Action.DRIVER_READ: (_O, _D),
    Action.DRIVER_READ_BY_KEY: (_O, _D),
    Action.DRIVER_VEHICLES: (_O, _D),
    Action.DRIVER_AUDIT: (_O, _D),
    Action.DRIVER_AUDIT_BY_KEY: (_O, _D),
    Action.VEHICLE_READ: (_O, _D),
    Action.VEHICLE_LIST_ACTIVE: (_A, _A),
    Action.VEHICLE_AUDIT: (_O, _D),
    Action.VEHICLE_AUDIT_BY_KEY: (_O, _D),
    Action.ORDER_CREATE: (_D, _O),
    Action.ORDER_READ: (_O, _O),
    Action.ORDER_STATUS: (_O, _D),
    Action.ORDER_BY_CLIENT: (_D, _O),
    Action.ORDER_BY_DRIVER: (_O, _D),
    Action.ORDER_STATUSES: (_A, _A),
    Action.IDENTITY_ME: (_A, _A),
}


def decide(role: Role, action: Action) -> Decision:
    """Look up the policy for role on action."""
    if role is Role.ADMIN:
        return Decision.ALLOW
    conductor, cliente = _NON_ADMIN.get(action, (Decision.DENY, Decision.DENY))
    return conductor if role is Role.CONDUCTOR else cliente


def enforce(ctx: AuthContext, action: Action, ownership: Optional[Callable[[], bool]] = None) -> None:
    """Raise unless ctx may perform action.

    ownership is evaluated lazily and only when the table says OWNERSHIP.
    Raises Unauthenticated for anonymous callers, Unauthorized otherwise.
    """
    if ctx.identity is None:
        raise Unauthenticated()
    decision = decide(ctx.identity.role, action)
    if decision is Decision.ALLOW:
        return
    if decision is Decision.OWNERSHIP and ownership is not None and ownership():
        return
    logger.info("Denied %s to %s (%s)", action.value, ctx.identity.username, ctx.identity.role.value)
    raise Unauthorized()


def is_allowed(ctx: AuthContext, action: Action, ownership: Optional[Callable[[], bool]] = None) -> bool:
    """Boolean form of enforce() for callers that branch instead of failing."""
    try:
        enforce(ctx, action, ownership)
    except (Unauthenticated, Unauthorized):
        return False
    return True
