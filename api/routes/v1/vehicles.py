"""
api/routes/v1/vehicles.py -- Vehicle REST endpoints.

Routes:
  POST   /api/v1/vehicles                          -- create (unassigned)
  GET    /api/v1/vehicles?is_active=               -- list
  GET    /api/v1/vehicles/active                   -- active vehicles (any role)
  GET    /api/v1/vehicles/page?page=&size=         -- one page
  GET    /api/v1/vehicles/audit/by-plate/{plate}   -- history by plate
  GET    /api/v1/vehicles/{id}                     -- detail
  PUT    /api/v1/vehicles/{id}                     -- replace editable fields
  DELETE /api/v1/vehicles/{id}                     -- physical delete (audited)
  PATCH  /api/v1/vehicles/{id}/status              -- activate / deactivate
  GET    /api/v1/vehicles/{id}/audit               -- history by id

Driver assignment lives under /drivers/{id}/vehicles/{vehicle_id}.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import AuditEntryResponse, PageResponse, StatusUpdate, VehicleIn, VehicleResponse, to_page
from auth.authorization import Action, owns_vehicle_by_id, owns_vehicle_by_plate
from auth.dependencies import authorize, path_int
from auth.models import AuthContext
from fleet.models import Vehicle
from fleet.services import FleetService

# Auth policy:
# - GET /vehicles/active:                                  any authenticated identity
# - GET /vehicles/{id}, /{id}/audit, /audit/by-plate:      ADMIN or the assigned CONDUCTOR
# - everything else:                                       ADMIN
router = APIRouter()


def _owns_path_vehicle(request: Request, ctx: AuthContext) -> bool:
    return owns_vehicle_by_id(ctx, request.app.state.fleet_store, path_int(request, "vehicle_id"))


def _owns_path_plate(request: Request, ctx: AuthContext) -> bool:
    return owns_vehicle_by_plate(ctx, request.app.state.fleet_store, request.path_params.get("plate", ""))


def _service(request: Request) -> FleetService:
    return request.app.state.fleet_service


def _to_vehicle(body: VehicleIn) -> Vehicle:
    return Vehicle(
        plate=body.plate,
        capacity_kg=body.capacity_kg,
        brand=body.brand,
        model=body.model,
        year=body.year,
    )


@router.post("/vehicles", response_model=VehicleResponse, status_code=201)
def create_vehicle(
    request: Request,
    body: VehicleIn,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_CREATE)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).create_vehicle(ctx, _to_vehicle(body)))


@router.get("/vehicles", response_model=list[VehicleResponse])
def list_vehicles(
    request: Request,
    is_active: Optional[bool] = Query(default=None),
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_LIST)),
) -> list[VehicleResponse]:
    return [VehicleResponse.model_validate(v) for v in _service(request).list_vehicles(is_active)]


@router.get("/vehicles/active", response_model=list[VehicleResponse])
def list_active_vehicles(
    request: Request,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_LIST_ACTIVE)),
) -> list[VehicleResponse]:
    return [VehicleResponse.model_validate(v) for v in _service(request).list_vehicles(True)]


@router.get("/vehicles/page", response_model=PageResponse[VehicleResponse])
def page_vehicles(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_LIST)),
) -> PageResponse:
    return to_page(VehicleResponse, _service(request).page_vehicles(page, size))


@router.get("/vehicles/audit/by-plate/{plate}", response_model=list[AuditEntryResponse])
def vehicle_history_by_plate(
    request: Request,
    plate: str,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_AUDIT_BY_KEY, _owns_path_plate)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).vehicle_history_by_plate(plate)]


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(
    request: Request,
    vehicle_id: int,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_READ, _owns_path_vehicle)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).get_vehicle(vehicle_id))


@router.put("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    request: Request,
    vehicle_id: int,
    body: VehicleIn,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_UPDATE)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).update_vehicle(ctx, vehicle_id, _to_vehicle(body)))


@router.delete("/vehicles/{vehicle_id}", status_code=204)
def delete_vehicle(
    request: Request,
    vehicle_id: int,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_DELETE)),
) -> Response:
    _service(request).delete_vehicle(ctx, vehicle_id)
    return Response(status_code=204)


@router.patch("/vehicles/{vehicle_id}/status", response_model=VehicleResponse)
def set_vehicle_status(
    request: Request,
    vehicle_id: int,
    body: StatusUpdate,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_STATUS)),
) -> VehicleResponse:
    return VehicleResponse.model_validate(_service(request).set_vehicle_status(ctx, vehicle_id, body.is_active))


@router.get("/vehicles/{vehicle_id}/audit", response_model=list[AuditEntryResponse])
def vehicle_history(
    request: Request,
    vehicle_id: int,
    ctx: AuthContext = Depends(authorize(Action.VEHICLE_AUDIT, _owns_path_vehicle)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).vehicle_history(vehicle_id)]
