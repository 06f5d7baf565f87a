"""
api/routes/v1/clients.py -- Client REST endpoints.

Routes:
  POST   /api/v1/clients                                   -- create
  GET    /api/v1/clients?is_active=                        -- list (optionally by state)
  GET    /api/v1/clients/page?page=&size=                  -- one page
  GET    /api/v1/clients/audit/by-identification/{ident}   -- history by natural key
  GET    /api/v1/clients/{id}                              -- detail
  PUT    /api/v1/clients/{id}                              -- replace editable fields
  DELETE /api/v1/clients/{id}                              -- physical delete (audited)
  PATCH  /api/v1/clients/{id}/status                       -- activate / deactivate
  GET    /api/v1/clients/{id}/audit                        -- history by id

Static paths are declared before /{client_id} so they are matched first.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import AuditEntryResponse, ClientIn, ClientResponse, PageResponse, StatusUpdate, to_page
from auth.authorization import Action, owns_client_by_id
from auth.dependencies import authorize, path_int
from auth.models import AuthContext
from fleet.models import Client
from fleet.services import FleetService

# Auth policy:
# - GET / PUT /clients/{id}, GET /clients/{id}/audit: ADMIN or the owning CLIENTE
# - everything else:                                   ADMIN
router = APIRouter()


def _owns_path_client(request: Request, ctx: AuthContext) -> bool:
    return owns_client_by_id(ctx, path_int(request, "client_id"))


def _service(request: Request) -> FleetService:
    return request.app.state.fleet_service


def _to_client(body: ClientIn) -> Client:
    return Client(
        full_name=body.full_name,
        identification=body.identification,
        phone=body.phone,
        address=body.address,
    )


@router.post("/clients", response_model=ClientResponse, status_code=201)
def create_client(
    request: Request,
    body: ClientIn,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_CREATE)),
) -> ClientResponse:
    return ClientResponse.model_validate(_service(request).create_client(ctx, _to_client(body)))


@router.get("/clients", response_model=list[ClientResponse])
def list_clients(
    request: Request,
    is_active: Optional[bool] = Query(default=None),
    ctx: AuthContext = Depends(authorize(Action.CLIENT_LIST)),
) -> list[ClientResponse]:
    return [ClientResponse.model_validate(c) for c in _service(request).list_clients(is_active)]


@router.get("/clients/page", response_model=PageResponse[ClientResponse])
def page_clients(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    ctx: AuthContext = Depends(authorize(Action.CLIENT_LIST)),
) -> PageResponse:
    return to_page(ClientResponse, _service(request).page_clients(page, size))


@router.get("/clients/audit/by-identification/{identification}", response_model=list[AuditEntryResponse])
def client_history_by_identification(
    request: Request,
    identification: str,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_AUDIT_BY_KEY)),
) -> list[AuditEntryResponse]:
    entries = _service(request).client_history_by_identification(identification)
    return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get("/clients/{client_id}", response_model=ClientResponse)
def get_client(
    request: Request,
    client_id: int,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_READ, _owns_path_client)),
) -> ClientResponse:
    return ClientResponse.model_validate(_service(request).get_client(client_id))


@router.put("/clients/{client_id}", response_model=ClientResponse)
def update_client(
    request: Request,
    client_id: int,
    body: ClientIn,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_UPDATE, _owns_path_client)),
) -> ClientResponse:
    return ClientResponse.model_validate(_service(request).update_client(ctx, client_id, _to_client(body)))


@router.delete("/clients/{client_id}", status_code=204)
def delete_client(
    request: Request,
    client_id: int,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_DELETE)),
) -> Response:
    _service(request).delete_client(ctx, client_id)
    return Response(status_code=204)


@router.patch("/clients/{client_id}/status", response_model=ClientResponse)
def set_client_status(
    request: Request,
    client_id: int,
    body: StatusUpdate,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_STATUS)),
) -> ClientResponse:
    return ClientResponse.model_validate(_service(request).set_client_status(ctx, client_id, body.is_active))


@router.get("/clients/{client_id}/audit", response_model=list[AuditEntryResponse])
def client_history(
    request: Request,
    client_id: int,
    ctx: AuthContext = Depends(authorize(Action.CLIENT_AUDIT, _owns_path_client)),
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in _service(request).client_history(client_id)]
