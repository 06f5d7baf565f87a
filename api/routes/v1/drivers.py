"""
api/routes/v1/drivers.py -- Driver REST endpoints, including vehicle assignment.

Routes:
  POST   /api/v1/drivers                                   -- create
  GET    /api/v1/drivers?is_active=                        -- list
  GET    /api/v1/drivers/page?page=&size=                  -- one page
  GET    /api/v1/drivers/by-identification/{ident}         -- detail by natural key
  GET    /api/v1/drivers/audit/by-identification/{ident}   -- history by natural key
  GET    /api/v1/drivers/audit/by-name?name=               -- history by name fragment
  GET    /api/v1/drivers/{id}                              -- detail
  PUT    /api/v1/drivers/{id}                              -- replace editable fields
  DELETE /api/v1/drivers/{id}                              -- physical delete (audited)
  PATCH  /api/v1/drivers/{id}/status                       -- activate / deactivate
  GET    /api/v1/drivers/{id}/vehicles                     -- assigned vehicles
  PUT    /api/v1/drivers/{id}/vehicles/{vehicle_id}        -- assign a vehicle
  DELETE /api/v1/drivers/{id}/vehicles/{vehicle_id}        -- unassign a vehicle
  GET    /api/v1/drivers/{id}/audit                        -- history by id
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AuditEntryResponse,
    DriverIn,
    DriverResponse,
    PageResponse,
    StatusUpdate,
    VehicleResponse,
    to_page,
)
from auth.authorization import Action, owns_driver_by_id, owns_driver_by_natural_key
from auth.dependencies import authorize, path_int
from auth.models import AuthContext
from fleet.models import Driver
from fleet.services import FleetService

# Auth policy:
# - GET /drivers/{id}, /{id}/vehicles, /{id}/audit:            ADMIN or the linked CONDUCTOR
# - GET /drivers/by-identification, /audit/by-identification:  ADMIN or the linked CONDUCTOR
# - everything else:                                           ADMIN
router = APIRouter()


def _owns_path_driver(request: Request, ctx: AuthContext) -> bool:
    return owns_driver_by_id(ctx, path_int(request, "driver_id"))


def _owns_path_identification(request: Request, ctx: AuthContext) -> bool:
    identification = request.path_params.get("identification", "")
    return owns_driver_by_natural_key(ctx, request.app.state.fleet_store, identification)


def _service(request: Request) -> FleetService:
    return request.app.state.fleet_service


def _to_driver(body: DriverIn) -> Driver:
    return Driver(
        full_name=body.full_name,
        identification=body.identification,
        birth_date=body.birth_date.isoformat(),
        phone=body.phone,
    )


@router.post("/drivers", response_model=DriverResponse, status_code=201)
def create_driver(
    request: Request,
    body: DriverIn,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_CREATE)),
) -> DriverResponse:
    return DriverResponse.model_validate(_service(request).create_driver(ctx, _to_driver(body)))


@router.get("/drivers", response_model=list[DriverResponse])
def list_drivers(
    request: Request,
    is_active: Optional[bool] = Query(default=None),
    ctx: AuthContext = Depends(authorize(Action.DRIVER_LIST)),
) -> list[DriverResponse]:
    return [DriverResponse.model_validate(d) for d in _service(request).list_drivers(is_active)]


@router.get("/drivers/page", response_model=PageResponse[DriverResponse])
def page_drivers(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize(Action.DRIVER_LIST)),
) -> PageResponse:
    return to_page(DriverResponse, _service(request).page_drivers(page, size))


@router.get("/drivers/by-identification/{identification}", response_model=DriverResponse)
def get_driver_by_identification(
    request: Request,
    identification: str,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_READ_BY_KEY, _owns_path_identification)),
) -> DriverResponse:
    return DriverResponse.model_validate(_service(request).get_driver_by_identification(identification))


@router.get("/drivers/audit/by-identification/{identification}", response_model=list[AuditEntryResponse])
def driver_history_by_identification(
    request: Request,
    identification: str,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_AUDIT_BY_KEY, _owns_path_identification)),
) -> list[AuditEntryResponse]:
    entries = _service(request).driver_history_by_identification(identification)
    return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get("/drivers/audit/by-name", response_model=list[AuditEntryResponse])
def driver_history_by_name(
    request: Request,
    name: str = Query(min_length=1, max_length=100),
    ctx: AuthContext = Depends(authorize(Action.DRIVER_AUDIT_BY_NAME)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).driver_history_by_name(name)]


@router.get("/drivers/{driver_id}", response_model=DriverResponse)
def get_driver(
    request: Request,
    driver_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_READ, _owns_path_driver)),
) -> DriverResponse:
    return DriverResponse.model_validate(_service(request).get_driver(driver_id))


@router.put("/drivers/{driver_id}", response_model=DriverResponse)
def update_driver(
    request: Request,
    driver_id: int,
    body: DriverIn,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_UPDATE)),
) -> DriverResponse:
    return DriverResponse.model_validate(_service(request).update_driver(ctx, driver_id, _to_driver(body)))


@router.delete("/drivers/{driver_id}", status_code=204)
def delete_driver(
    request: Request,
    driver_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_DELETE)),
) -> Response:
    _service(request).delete_driver(ctx, driver_id)
    return Response(status_code=204)


@router.patch("/drivers/{driver_id}/status", response_model=DriverResponse)
def set_driver_status(
    request: Request,
    driver_id: int,
    body: StatusUpdate,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_STATUS)),
) -> DriverResponse:
    return DriverResponse.model_validate(_service(request).set_driver_status(ctx, driver_id, body.is_active))


@router.get("/drivers/{driver_id}/vehicles", response_model=list[VehicleResponse])
def vehicles_of_driver(
    request: Request,
    driver_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_VEHICLES, _owns_path_driver)),
) -> list[VehicleResponse]:
    return [VehicleResponse.model_validate(v) for v in _service(request).vehicles_of_driver(driver_id)]


@router.put("/drivers/{driver_id}/vehicles/{vehicle_id}", response_model=VehicleResponse)
def assign_vehicle(
    request: Request,
    driver_id: int,
    vehicle_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_ASSIGN_VEHICLE)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).assign_vehicle(ctx, driver_id, vehicle_id))


@router.delete("/drivers/{driver_id}/vehicles/{vehicle_id}", response_model=VehicleResponse)
def unassign_vehicle(
    request: Request,
    driver_id: int,
    vehicle_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_ASSIGN_VEHICLE)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).unassign_vehicle(ctx, driver_id, vehicle_id))


@router.get("/drivers/{driver_id}/audit", response_model=list[AuditEntryResponse])
def driver_history(
    request: Request,
    driver_id: int,
    ctx: AuthContext = Depends(authorize(Action.DRIVER_AUDIT, _owns_path_driver)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).driver_history(driver_id)]
