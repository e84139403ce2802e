from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from foodshare.api.deps import get_current_actor, get_current_claims, require_perm
from foodshare.domain.models import (
    AgentActiveRequest,
    AgentCreate,
    AgentRead,
    AgentUpdate,
    GeoPoint,
    HotelCreate,
    HotelRead,
    HotelUpdate,
    NeedyPersonCreate,
    NeedyPersonRead,
)
from foodshare.domain.permissions import (
    PERM_ADMIN,
    PERM_NEEDY_READ,
    PERM_NEEDY_WRITE,
    PERM_PROFILE_READ,
    PERM_PROFILE_WRITE,
)
from foodshare.infra.audit import set_audit_context
from foodshare.services.food_report_service import Actor
from foodshare.services.profile_service import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ProfileService,
)

router = APIRouter()


def get_profile_service() -> ProfileService:
    return ProfileService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Service = Annotated[ProfileService, Depends(get_profile_service)]


def _handle_profile_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    raise exc


@router.post(
    "/hotels",
    response_model=HotelRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def create_hotel(payload: HotelCreate, request: Request, claims: Claims, service: Service) -> HotelRead:
    try:
        hotel = service.create_hotel(claims["sub"], payload)
    except (NotFoundError, ConflictError, PermissionDeniedError) as exc:
        _handle_profile_error(exc)
        raise
    set_audit_context(request, action="profile.hotel.create", resource=f"hotels/{hotel.id}")
    return HotelRead.model_validate(hotel)


@router.get("/hotels", response_model=list[HotelRead], dependencies=[Depends(require_perm(PERM_ADMIN))])
def list_hotels(service: Service) -> list[HotelRead]:
    return [HotelRead.model_validate(item) for item in service.list_hotels()]


@router.get("/hotels/me", response_model=HotelRead, dependencies=[Depends(require_perm(PERM_PROFILE_READ))])
def get_my_hotel(claims: Claims, service: Service) -> HotelRead:
    try:
        return HotelRead.model_validate(service.get_hotel_for_user(claims["sub"]))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.patch("/hotels/me", response_model=HotelRead, dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))])
def update_my_hotel(payload: HotelUpdate, claims: Claims, service: Service) -> HotelRead:
    try:
        return HotelRead.model_validate(service.update_hotel(claims["sub"], payload))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.get(
    "/hotels/{hotel_id}",
    response_model=HotelRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_READ))],
)
def get_hotel(hotel_id: str, service: Service) -> HotelRead:
    try:
        return HotelRead.model_validate(service.get_hotel(hotel_id))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.post(
    "/agents",
    response_model=AgentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def create_agent(payload: AgentCreate, request: Request, claims: Claims, service: Service) -> AgentRead:
    try:
        agent = service.create_agent(claims["sub"], payload)
    except (NotFoundError, ConflictError, PermissionDeniedError) as exc:
        _handle_profile_error(exc)
        raise
    set_audit_context(request, action="profile.agent.create", resource=f"agents/{agent.id}")
    return AgentRead.model_validate(agent)


@router.get("/agents", response_model=list[AgentRead], dependencies=[Depends(require_perm(PERM_ADMIN))])
def list_agents(
    service: Service,
    zone: str | None = None,
    active_only: bool = Query(default=False),
) -> list[AgentRead]:
    return [AgentRead.model_validate(item) for item in service.list_agents(zone=zone, active_only=active_only)]


@router.get("/agents/me", response_model=AgentRead, dependencies=[Depends(require_perm(PERM_PROFILE_READ))])
def get_my_agent(claims: Claims, service: Service) -> AgentRead:
    try:
        return AgentRead.model_validate(service.get_agent_for_user(claims["sub"]))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.patch("/agents/me", response_model=AgentRead, dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))])
def update_my_agent(payload: AgentUpdate, claims: Claims, service: Service) -> AgentRead:
    try:
        return AgentRead.model_validate(service.update_agent(claims["sub"], payload))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.put(
    "/agents/me/location",
    response_model=AgentRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def update_my_location(payload: GeoPoint, claims: Claims, service: Service) -> AgentRead:
    try:
        return AgentRead.model_validate(service.update_agent_location(claims["sub"], payload))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.get(
    "/agents/{agent_id}",
    response_model=AgentRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_READ))],
)
def get_agent(agent_id: str, service: Service) -> AgentRead:
    try:
        return AgentRead.model_validate(service.get_agent(agent_id))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise


@router.post(
    "/agents/{agent_id}/active",
    response_model=AgentRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def set_agent_active(
    agent_id: str,
    payload: AgentActiveRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> AgentRead:
    set_audit_context(
        request,
        action="profile.agent.active",
        resource=f"agents/{agent_id}",
        detail={"is_active": payload.is_active},
    )
    try:
        return AgentRead.model_validate(service.set_agent_active(actor, agent_id, payload.is_active))
    except (NotFoundError, PermissionDeniedError) as exc:
        _handle_profile_error(exc)
        raise


@router.post(
    "/needy-persons",
    response_model=NeedyPersonRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_NEEDY_WRITE))],
)
def register_needy_person(payload: NeedyPersonCreate, claims: Claims, service: Service) -> NeedyPersonRead:
    return NeedyPersonRead.model_validate(service.register_needy_person(claims["sub"], payload))


@router.get(
    "/needy-persons",
    response_model=list[NeedyPersonRead],
    dependencies=[Depends(require_perm(PERM_NEEDY_READ))],
)
def list_needy_persons(service: Service, city: str | None = None) -> list[NeedyPersonRead]:
    return [NeedyPersonRead.model_validate(item) for item in service.list_needy_persons(city=city)]


@router.get(
    "/needy-persons/{person_id}",
    response_model=NeedyPersonRead,
    dependencies=[Depends(require_perm(PERM_NEEDY_READ))],
)
def get_needy_person(person_id: str, service: Service) -> NeedyPersonRead:
    try:
        return NeedyPersonRead.model_validate(service.get_needy_person(person_id))
    except NotFoundError as exc:
        _handle_profile_error(exc)
        raise
