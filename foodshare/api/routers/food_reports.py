from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status

from foodshare.api.deps import get_current_actor, require_perm
from foodshare.domain.models import (
    AvailableTaskFilter,
    DeliverRequest,
    FoodReportCreate,
    FoodReportRead,
    FoodType,
    GeoPoint,
    TaskSort,
    Urgency,
    UserRole,
)
from foodshare.domain.permissions import (
    PERM_REPORT_CANCEL,
    PERM_REPORT_CREATE,
    PERM_REPORT_READ,
    PERM_TASK_CLAIM,
    PERM_TASK_DELIVER,
    PERM_TASK_READ,
)
from foodshare.domain.scoring import point_or_none
from foodshare.domain.state_machine import ReportStatus
from foodshare.infra.audit import set_audit_context
from foodshare.services import profile_service
from foodshare.services.food_report_service import (
    Actor,
    ClaimConflictError,
    FoodReportError,
    FoodReportService,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    ValidationError,
)

router = APIRouter()

CLAIM_CONFLICT_CODE = "claim_conflict"


def get_food_report_service() -> FoodReportService:
    return FoodReportService()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Service = Annotated[FoodReportService, Depends(get_food_report_service)]


def _handle_food_report_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ClaimConflictError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": CLAIM_CONFLICT_CODE, "message": str(exc)},
        ) from exc
    if isinstance(exc, InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, TransportError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


def _require_hotel(actor: Actor) -> str:
    if actor.hotel_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="hotel profile not found")
    return actor.hotel_id


def _require_agent(actor: Actor) -> str:
    if actor.agent_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="agent profile not found")
    return actor.agent_id


def _caller_location(actor: Actor, lat: float | None, lon: float | None) -> GeoPoint | None:
    explicit = point_or_none(lat, lon)
    if explicit is not None or actor.agent_id is None:
        return explicit
    try:
        agent = profile_service.ProfileService().get_agent(actor.agent_id)
    except profile_service.NotFoundError:
        return None
    return point_or_none(agent.latitude, agent.longitude)


@router.post(
    "",
    response_model=FoodReportRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_REPORT_CREATE))],
)
def create_food_report(
    payload: FoodReportCreate,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> FoodReportRead:
    hotel_id = _require_hotel(actor)
    try:
        report = service.create_report(hotel_id, payload, actor_id=actor.user_id)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise
    set_audit_context(request, action="food_report.create", resource=f"food_reports/{report.id}")
    return report


@router.get(
    "/available",
    response_model=list[FoodReportRead],
    dependencies=[Depends(require_perm(PERM_TASK_READ))],
)
def list_available_reports(
    actor: CurrentActor,
    service: Service,
    search: str | None = None,
    food_type: FoodType | None = None,
    urgency: Urgency | None = None,
    max_distance_km: float | None = Query(default=None, ge=0),
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
    sort: TaskSort = TaskSort.PRIORITY,
) -> list[FoodReportRead]:
    task_filter = AvailableTaskFilter(
        search=search,
        food_type=food_type,
        urgency=urgency,
        max_distance_km=max_distance_km,
        location=_caller_location(actor, lat, lon),
        sort=sort,
    )
    try:
        return service.list_available(task_filter)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise


@router.get(
    "/mine",
    response_model=list[FoodReportRead],
    dependencies=[Depends(require_perm(PERM_REPORT_READ))],
)
def list_my_reports(
    actor: CurrentActor,
    service: Service,
    status_filter: Annotated[list[ReportStatus] | None, Query(alias="status")] = None,
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
) -> list[FoodReportRead]:
    try:
        if actor.role == UserRole.HOTEL:
            return service.list_for_hotel(_require_hotel(actor))
        if actor.role == UserRole.AGENT:
            return service.list_for_agent(
                _require_agent(actor),
                statuses=status_filter,
                origin=_caller_location(actor, lat, lon),
            )
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no report list for this role")


@router.get(
    "/{report_id}",
    response_model=FoodReportRead,
    dependencies=[Depends(require_perm(PERM_REPORT_READ))],
)
def get_food_report(
    report_id: str,
    actor: CurrentActor,
    service: Service,
    lat: float | None = Query(default=None, ge=-90, le=90),
    lon: float | None = Query(default=None, ge=-180, le=180),
) -> FoodReportRead:
    try:
        return service.get_report(report_id, viewer=actor, origin=_caller_location(actor, lat, lon))
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise


@router.post(
    "/{report_id}/claim",
    response_model=FoodReportRead,
    dependencies=[Depends(require_perm(PERM_TASK_CLAIM))],
)
def claim_food_report(report_id: str, request: Request, actor: CurrentActor, service: Service) -> FoodReportRead:
    agent_id = _require_agent(actor)
    set_audit_context(request, action="food_report.claim", resource=f"food_reports/{report_id}")
    try:
        return service.claim(report_id, agent_id, actor_id=actor.user_id)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise


@router.post(
    "/{report_id}/pick",
    response_model=FoodReportRead,
    dependencies=[Depends(require_perm(PERM_TASK_DELIVER))],
)
def pick_food_report(report_id: str, request: Request, actor: CurrentActor, service: Service) -> FoodReportRead:
    agent_id = _require_agent(actor)
    set_audit_context(request, action="food_report.pick", resource=f"food_reports/{report_id}")
    try:
        return service.mark_picked(report_id, agent_id, actor_id=actor.user_id)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise


@router.post(
    "/{report_id}/deliver",
    response_model=FoodReportRead,
    dependencies=[Depends(require_perm(PERM_TASK_DELIVER))],
)
def deliver_food_report(
    report_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
    payload: Annotated[DeliverRequest | None, Body()] = None,
) -> FoodReportRead:
    agent_id = _require_agent(actor)
    set_audit_context(request, action="food_report.deliver", resource=f"food_reports/{report_id}")
    try:
        return service.mark_delivered(report_id, agent_id, payload, actor_id=actor.user_id)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise


@router.post(
    "/{report_id}/cancel",
    response_model=FoodReportRead,
    dependencies=[Depends(require_perm(PERM_REPORT_CANCEL))],
)
def cancel_food_report(report_id: str, request: Request, actor: CurrentActor, service: Service) -> FoodReportRead:
    set_audit_context(request, action="food_report.cancel", resource=f"food_reports/{report_id}")
    try:
        return service.cancel(report_id, actor)
    except FoodReportError as exc:
        _handle_food_report_error(exc)
        raise
