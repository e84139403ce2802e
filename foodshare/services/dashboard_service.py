from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlmodel import Session, col, select

from foodshare.domain.models import (
    DashboardStatsRead,
    DeliveryAgent,
    FoodReport,
    Hotel,
    NeedyPerson,
    UserRole,
)
from foodshare.domain.state_machine import ASSIGNED_STATUSES, ReportStatus
from foodshare.infra.db import get_engine
from foodshare.services.food_report_service import Actor


class DashboardError(Exception):
    pass


class NotFoundError(DashboardError):
    pass


class DashboardService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _count(self, session: Session, model: Any) -> int:
        return int(session.exec(select(func.count()).select_from(model)).one())

    def _status_counts(self, session: Session, *filters: Any) -> dict[str, int]:
        statement = select(FoodReport.status, func.count()).group_by(FoodReport.status)
        for clause in filters:
            statement = statement.where(clause)
        counts = {status.value: 0 for status in ReportStatus}
        for status, total in session.exec(statement).all():
            counts[ReportStatus(status).value] = int(total)
        return counts

    def get_stats(self, actor: Actor) -> DashboardStatsRead:
        if actor.role == UserRole.ADMIN:
            return self._admin_stats(actor)
        if actor.role == UserRole.HOTEL:
            return self._hotel_stats(actor)
        return self._agent_stats(actor)

    def _admin_stats(self, actor: Actor) -> DashboardStatsRead:
        with self._session() as session:
            by_status = self._status_counts(session)
            saved = session.exec(select(func.coalesce(func.sum(Hotel.total_food_saved), 0))).one()
            return DashboardStatsRead(
                role=actor.role,
                reports_by_status=by_status,
                total_reports=sum(by_status.values()),
                completed_deliveries=by_status[ReportStatus.DELIVERED.value],
                total_food_saved=int(saved),
                total_hotels=self._count(session, Hotel),
                total_agents=self._count(session, DeliveryAgent),
                total_needy_persons=self._count(session, NeedyPerson),
            )

    def _hotel_stats(self, actor: Actor) -> DashboardStatsRead:
        if actor.hotel_id is None:
            raise NotFoundError("hotel profile not found")
        with self._session() as session:
            hotel = session.get(Hotel, actor.hotel_id)
            if hotel is None:
                raise NotFoundError("hotel profile not found")
            by_status = self._status_counts(session, col(FoodReport.hotel_id) == actor.hotel_id)
        return DashboardStatsRead(
            role=actor.role,
            reports_by_status=by_status,
            total_reports=sum(by_status.values()),
            completed_deliveries=by_status[ReportStatus.DELIVERED.value],
            total_food_saved=hotel.total_food_saved,
            rating=hotel.rating,
        )

    def _agent_stats(self, actor: Actor) -> DashboardStatsRead:
        if actor.agent_id is None:
            raise NotFoundError("agent profile not found")
        with self._session() as session:
            agent = session.get(DeliveryAgent, actor.agent_id)
            if agent is None:
                raise NotFoundError("agent profile not found")
            by_status = self._status_counts(session, col(FoodReport.assigned_agent_id) == actor.agent_id)
        active = sum(by_status[status.value] for status in ASSIGNED_STATUSES if status != ReportStatus.DELIVERED)
        return DashboardStatsRead(
            role=actor.role,
            reports_by_status=by_status,
            total_reports=sum(by_status.values()),
            completed_deliveries=by_status[ReportStatus.DELIVERED.value],
            active_tasks=active,
            total_deliveries=agent.total_deliveries,
            rating=agent.rating,
        )
