"""
api/routes/v1/orders.py -- Delivery order REST endpoints.

Routes:
  POST   /api/v1/orders                                  -- create (PENDING)
  GET    /api/v1/orders                                  -- list
  GET    /api/v1/orders/page?page=&size=                 -- one page
  GET    /api/v1/orders/statuses                         -- valid status values
  GET    /api/v1/orders/by-client/{client_id}?status=    -- orders of a client
  GET    /api/v1/orders/by-driver/{driver_id}?status=    -- orders of a driver
  GET    /api/v1/orders/by-status/{status}               -- orders in one status
  GET    /api/v1/orders/created-between?start=&end=      -- orders created in a range
  GET    /api/v1/orders/audit/by-editor/{username}       -- changes made by one user
  GET    /api/v1/orders/{id}                             -- detail
  PUT    /api/v1/orders/{id}                             -- replace editable fields
  DELETE /api/v1/orders/{id}                             -- physical delete (audited)
  PATCH  /api/v1/orders/{id}/assignment                  -- attach driver + vehicle
  PATCH  /api/v1/orders/{id}/status                      -- move through the status flow
  GET    /api/v1/orders/{id}/audit                       -- history by id
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AuditEntryResponse,
    OrderAssignment,
    OrderIn,
    OrderResponse,
    OrderStatusUpdate,
    PageResponse,
    to_page,
)
from auth.authorization import (
    Action,
    enforce,
    order_assigned_to_driver,
    owns_client_by_id,
    owns_driver_by_id,
    owns_order_as_client,
)
from auth.dependencies import authorize, path_int, require_identity
from auth.models import AuthContext
from core.db import to_iso
from fleet.models import Order, OrderStatus
from fleet.services import FleetService

# Auth policy:
# - POST /orders:                  ADMIN, or a CLIENTE for its own client_id
# - GET  /orders/{id}:             ADMIN, the owning CLIENTE or the assigned CONDUCTOR
# - PATCH /orders/{id}/status:     ADMIN or the assigned CONDUCTOR
# - GET  /orders/by-client/{id}:   ADMIN or the owning CLIENTE
# - GET  /orders/by-driver/{id}:   ADMIN or the linked CONDUCTOR
# - GET  /orders/statuses:         any authenticated identity
# - everything else:               ADMIN
router = APIRouter()


def _owns_or_drives_path_order(request: Request, ctx: AuthContext) -> bool:
    order_id = path_int(request, "order_id")
    fleet = request.app.state.fleet_store
    return owns_order_as_client(ctx, fleet, order_id) or order_assigned_to_driver(ctx, fleet, order_id)


def _drives_path_order(request: Request, ctx: AuthContext) -> bool:
    return order_assigned_to_driver(ctx, request.app.state.fleet_store, path_int(request, "order_id"))


def _owns_path_client(request: Request, ctx: AuthContext) -> bool:
    return owns_client_by_id(ctx, path_int(request, "client_id"))


def _owns_path_driver(request: Request, ctx: AuthContext) -> bool:
    return owns_driver_by_id(ctx, path_int(request, "driver_id"))


def _service(request: Request) -> FleetService:
    return request.app.state.fleet_service


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_iso(value) if value is not None else None


def _to_order(body: OrderIn) -> Order:
    return Order(
        client_id=body.client_id,
        origin=body.origin,
        destination=body.destination,
        estimated_pickup=_iso(body.estimated_pickup),
        estimated_delivery=_iso(body.estimated_delivery),
        weight_kg=body.weight_kg,
        notes=body.notes,
        driver_id=body.driver_id,
        vehicle_id=body.vehicle_id,
    )


def _many(orders: list[Order]) -> list[OrderResponse]:
    return [OrderResponse.model_validate(o) for o in orders]


@router.post("/orders", response_model=OrderResponse, status_code=201)
def create_order(
    request: Request,
    body: OrderIn,
    ctx: AuthContext = Depends(require_identity),
) -> OrderResponse:
    """Create an order. The owning client comes from the body, so ownership is checked here."""
    enforce(ctx, Action.ORDER_CREATE, lambda: owns_client_by_id(ctx, body.client_id))
    return OrderResponse.model_validate(_service(request).create_order(ctx, _to_order(body)))


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(
    request: Request,
    ctx: AuthContext = Depends(authorize(Action.ORDER_LIST)),
) -> list[OrderResponse]:
    return _many(_service(request).list_orders())


@router.get("/orders/page", response_model=PageResponse[OrderResponse])
def page_orders(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize(Action.ORDER_LIST)),
) -> PageResponse:
    return to_page(OrderResponse, _service(request).page_orders(page, size))


@router.get("/orders/statuses", response_model=list[OrderStatus])
def order_statuses(ctx: AuthContext = Depends(authorize(Action.ORDER_STATUSES))) -> list[OrderStatus]:
    return list(OrderStatus)


@router.get("/orders/by-client/{client_id}", response_model=list[OrderResponse])
def orders_by_client(
    request: Request,
    client_id: int,
    status: Optional[OrderStatus] = Query(default=None),
    ctx: AuthContext = Depends(authorize(Action.ORDER_BY_CLIENT, _owns_path_client)),
) -> list[OrderResponse]:
    return _many(_service(request).orders_by_client(client_id, status))


@router.get("/orders/by-driver/{driver_id}", response_model=list[OrderResponse])
def orders_by_driver(
    request: Request,
    driver_id: int,
    status: Optional[OrderStatus] = Query(default=None),
    ctx: AuthContext = Depends(authorize(Action.ORDER_BY_DRIVER, _owns_path_driver)),
) -> list[OrderResponse]:
    return _many(_service(request).orders_by_driver(driver_id, status))


@router.get("/orders/by-status/{status}", response_model=list[OrderResponse])
def orders_by_status(
    request: Request,
    status: OrderStatus,
    ctx: AuthContext = Depends(authorize(Action.ORDER_SEARCH)),
) -> list[OrderResponse]:
    return _many(_service(request).orders_by_status(status))


@router.get("/orders/created-between", response_model=list[OrderResponse])
def orders_created_between(
    request: Request,
    start: datetime = Query(),
    end: datetime = Query(),
    ctx: AuthContext = Depends(authorize(Action.ORDER_SEARCH)),
) -> list[OrderResponse]:
    return _many(_service(request).orders_created_between(start, end))


@router.get("/orders/audit/by-editor/{username}", response_model=list[AuditEntryResponse])
def order_history_by_editor(
    request: Request,
    username: str,
    ctx: AuthContext = Depends(authorize(Action.ORDER_AUDIT)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).order_history_by_editor(username)]


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    request: Request,
    order_id: int,
    ctx: AuthContext = Depends(authorize(Action.ORDER_READ, _owns_or_drives_path_order)),
) -> OrderResponse:
    return OrderResponse.model_validate(_service(request).get_order(order_id))


@router.put("/orders/{order_id}", response_model=OrderResponse)
def update_order(
    request: Request,
    order_id: int,
    body: OrderIn,
    ctx: AuthContext = Depends(authorize(Action.ORDER_UPDATE)),
) -> OrderResponse:
    return OrderResponse.model_validate(_service(request).update_order(ctx, order_id, _to_order(body)))


@router.delete("/orders/{order_id}", status_code=204)
def delete_order(
    request: Request,
    order_id: int,
    ctx: AuthContext = Depends(authorize(Action.ORDER_DELETE)),
) -> Response:
    _service(request).delete_order(ctx, order_id)
    return Response(status_code=204)


@router.patch("/orders/{order_id}/assignment", response_model=OrderResponse)
def assign_order(
    request: Request,
    order_id: int,
    body: OrderAssignment,
    ctx: AuthContext = Depends(authorize(Action.ORDER_ASSIGN)),
) -> OrderResponse:
    order = _service(request).assign_order(ctx, order_id, body.driver_id, body.vehicle_id)
    return OrderResponse.model_validate(order)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
def change_order_status(
    request: Request,
    order_id: int,
    body: OrderStatusUpdate,
    ctx: AuthContext = Depends(authorize(Action.ORDER_STATUS, _drives_path_order)),
) -> OrderResponse:
    return OrderResponse.model_validate(_service(request).change_order_status(ctx, order_id, body.status))


@router.get("/orders/{order_id}/audit", response_model=list[AuditEntryResponse])
def order_history(
    request: Request,
    order_id: int,
    ctx: AuthContext = Depends(authorize(Action.ORDER_AUDIT)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).order_history(order_id)]
