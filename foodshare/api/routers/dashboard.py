from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from foodshare.api.deps import get_current_actor, require_perm
from foodshare.domain.models import DashboardStatsRead
from foodshare.domain.permissions import PERM_DASHBOARD_READ
from foodshare.services.dashboard_service import DashboardService, NotFoundError
from foodshare.services.food_report_service import Actor

router = APIRouter()


def get_dashboard_service() -> DashboardService:
    return DashboardService()


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
Service = Annotated[DashboardService, Depends(get_dashboard_service)]


@router.get(
    "/stats",
    response_model=DashboardStatsRead,
    dependencies=[Depends(require_perm(PERM_DASHBOARD_READ))],
)
def get_dashboard_stats(actor: CurrentActor, service: Service) -> DashboardStatsRead:
    try:
        return service.get_stats(actor)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
