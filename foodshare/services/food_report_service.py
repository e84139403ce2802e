"""Food report lifecycle: new -> assigned -> picked -> delivered, or cancelled.

Every transition is a compare-and-swap through the repository's
``conditional_update``. Nothing is locked client side and nothing is retried
here; callers decide their own retry policy.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ParamSpec, TypeVar

import sqlalchemy as sa
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col

from foodshare.domain import scoring
from foodshare.domain.models import (
    FOOD_REPORTS_TABLE,
    AvailableTaskFilter,
    ChangeEvent,
    ChangeOp,
    DeliverRequest,
    DeliveryAgent,
    DistributionRecord,
    FoodReport,
    FoodReportCreate,
    FoodReportRead,
    GeoPoint,
    Hotel,
    HotelSummary,
    NeedyPerson,
    TaskSort,
    UserRole,
    now_utc,
)
from foodshare.domain.state_machine import (
    CANCELLABLE_STATUSES,
    ReportStatus,
    can_transition,
)
from foodshare.infra.db import get_engine
from foodshare.infra.events import EventBus, event_bus
from foodshare.infra.report_repository import ReportRepository, SqlReportRepository

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class FoodReportError(Exception):
    pass


class NotFoundError(FoodReportError):
    pass


class ValidationError(FoodReportError):
    pass


class InvalidTransitionError(FoodReportError):
    pass


class ClaimConflictError(FoodReportError):
    pass


class PermissionDeniedError(FoodReportError):
    pass


class TransportError(FoodReportError):
    pass


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: UserRole
    hotel_id: str | None = None
    agent_id: str | None = None


def _translate_storage_errors(func: Callable[P, R]) -> Callable[P, R]:
    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except OperationalError as exc:
            logger.warning("storage unavailable during %s: %s", func.__name__, exc)
            raise TransportError("storage backend unavailable") from exc

    return wrapper


def report_snapshot(report: FoodReport) -> dict[str, Any]:
    return report.model_dump(mode="json")


class FoodReportService:
    DEFAULT_AGENT_STATUSES = (ReportStatus.ASSIGNED, ReportStatus.PICKED)

    def __init__(
        self,
        repository: ReportRepository | None = None,
        bus: EventBus | None = None,
        distance: scoring.DistanceStrategy | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._bus = bus or event_bus
        self._repo = repository or SqlReportRepository(self._bus)
        self._distance = distance or scoring.HaversineDistance()
        self._clock = clock

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _load(self, session: Session, report_id: str) -> tuple[FoodReport, Hotel]:
        row = self._repo.get_by_id(session, report_id)
        if row is None:
            raise NotFoundError("food report not found")
        return row

    def _reload(self, session: Session, report_id: str) -> tuple[FoodReport, Hotel]:
        # The conditional update bypasses the identity map, so drop cached state first.
        session.expire_all()
        return self._load(session, report_id)

    def to_read(
        self,
        report: FoodReport,
        hotel: Hotel | None,
        *,
        now: datetime | None = None,
        origin: GeoPoint | None = None,
    ) -> FoodReportRead:
        now = now or self._clock()
        destination = scoring.point_or_none(hotel.latitude, hotel.longitude) if hotel is not None else None
        distance_km = self._distance.distance_km(origin, destination)
        if distance_km is not None:
            distance_km = round(distance_km, 2)
        hours = scoring.hours_until_expiry(report.expiry_time, now)
        read = FoodReportRead.model_validate(report)
        return read.model_copy(
            update={
                "hotel": HotelSummary.model_validate(hotel) if hotel is not None else None,
                "urgency": scoring.urgency(report.expiry_time, now),
                "hours_until_expiry": round(hours, 2) if hours is not None else None,
                "distance_km": distance_km,
                "priority_score": scoring.priority_score(report.expiry_time, report.quantity, distance_km, now),
                "estimated_earnings": scoring.estimate_earnings(
                    report.expiry_time, report.quantity, distance_km, now
                ),
            }
        )

    def _emit(
        self,
        session: Session,
        op: ChangeOp,
        new: FoodReport,
        old: dict[str, Any] | None,
        actor_id: str | None,
    ) -> ChangeEvent:
        event = ChangeEvent(
            table=FOOD_REPORTS_TABLE,
            op=op,
            old=old,
            new=report_snapshot(new),
            actor_id=actor_id,
        )
        self._bus.record(event, session)
        return event

    def _validate_create(self, payload: FoodReportCreate, now: datetime) -> None:
        if not payload.food_name or not payload.food_name.strip():
            raise ValidationError("food_name is required")
        if payload.quantity < 1:
            raise ValidationError("quantity must be at least 1")
        if payload.pickup_time is None:
            raise ValidationError("pickup_time is required")
        if payload.expiry_time is not None:
            expiry = scoring.ensure_utc(payload.expiry_time)
            if expiry <= scoring.ensure_utc(payload.pickup_time):
                raise ValidationError("expiry_time must be later than pickup_time")
            if expiry <= scoring.ensure_utc(now):
                raise ValidationError("expiry_time is already in the past")

    @_translate_storage_errors
    def create_report(
        self,
        hotel_id: str,
        payload: FoodReportCreate,
        actor_id: str | None = None,
    ) -> FoodReportRead:
        now = self._clock()
        self._validate_create(payload, now)
        with self._session() as session:
            hotel = session.get(Hotel, hotel_id)
            if hotel is None:
                raise NotFoundError("hotel not found")
            report = FoodReport(
                hotel_id=hotel_id,
                food_name=payload.food_name.strip(),
                food_type=payload.food_type,
                quantity=payload.quantity,
                pickup_time=scoring.ensure_utc(payload.pickup_time),
                expiry_time=scoring.ensure_utc(payload.expiry_time) if payload.expiry_time else None,
                description=payload.description,
                image_url=payload.image_url,
                status=ReportStatus.NEW,
                assigned_agent_id=None,
            )
            self._repo.insert(session, report)
            event = self._emit(session, ChangeOp.INSERT, report, None, actor_id)
            session.commit()
            session.refresh(report)
            read = self.to_read(report, hotel, now=now)

        logger.info("food report %s created by hotel %s", report.id, hotel_id)
        self._bus.dispatch(event)
        return read

    @_translate_storage_errors
    def get_report(
        self,
        report_id: str,
        *,
        viewer: Actor | None = None,
        origin: GeoPoint | None = None,
    ) -> FoodReportRead:
        with self._session() as session:
            report, hotel = self._load(session, report_id)
            if viewer is not None and viewer.role == UserRole.HOTEL and viewer.hotel_id != report.hotel_id:
                raise NotFoundError("food report not found")
            return self.to_read(report, hotel, origin=origin)

    @_translate_storage_errors
    def list_available(self, task_filter: AvailableTaskFilter | None = None) -> list[FoodReportRead]:
        task_filter = task_filter or AvailableTaskFilter()
        now = self._clock()
        with self._session() as session:
            rows = self._repo.list_available(session)
            reads = [
                self.to_read(report, hotel, now=now, origin=task_filter.location)
                for report, hotel in rows
                if report.expiry_time is None or scoring.ensure_utc(report.expiry_time) > now
            ]
        return self._sort(self._apply_filter(reads, task_filter), task_filter.sort)

    def _apply_filter(self, reads: list[FoodReportRead], task_filter: AvailableTaskFilter) -> list[FoodReportRead]:
        filtered = reads
        if task_filter.search:
            needle = task_filter.search.strip().lower()
            filtered = [
                item
                for item in filtered
                if needle in item.food_name.lower()
                or (item.hotel is not None and needle in item.hotel.name.lower())
                or (item.description is not None and needle in item.description.lower())
            ]
        if task_filter.food_type is not None:
            filtered = [item for item in filtered if item.food_type == task_filter.food_type]
        if task_filter.urgency is not None:
            filtered = [item for item in filtered if item.urgency == task_filter.urgency]
        if task_filter.max_distance_km is not None:
            limit = task_filter.max_distance_km
            filtered = [item for item in filtered if item.distance_km is not None and item.distance_km <= limit]
        return filtered

    def _sort(self, reads: list[FoodReportRead], sort: TaskSort) -> list[FoodReportRead]:
        if sort == TaskSort.PRIORITY:
            return sorted(reads, key=lambda item: item.priority_score, reverse=True)
        if sort == TaskSort.DISTANCE:
            return sorted(reads, key=lambda item: (item.distance_km is None, item.distance_km or 0.0))
        if sort == TaskSort.URGENCY:
            return sorted(reads, key=lambda item: scoring.urgency_rank(item.urgency), reverse=True)
        if sort == TaskSort.QUANTITY:
            return sorted(reads, key=lambda item: item.quantity, reverse=True)
        if sort == TaskSort.NEWEST:
            return sorted(reads, key=lambda item: scoring.ensure_utc(item.created_at), reverse=True)
        if sort == TaskSort.EARNINGS:
            return sorted(reads, key=lambda item: item.estimated_earnings, reverse=True)
        return sorted(reads, key=lambda item: scoring.ensure_utc(item.pickup_time))

    @_translate_storage_errors
    def list_for_agent(
        self,
        agent_id: str,
        statuses: Iterable[ReportStatus] | None = None,
        origin: GeoPoint | None = None,
    ) -> list[FoodReportRead]:
        wanted = list(statuses) if statuses else list(self.DEFAULT_AGENT_STATUSES)
        now = self._clock()
        with self._session() as session:
            rows = self._repo.list_for_agent(session, agent_id, wanted)
            return [self.to_read(report, hotel, now=now, origin=origin) for report, hotel in rows]

    @_translate_storage_errors
    def list_for_hotel(self, hotel_id: str) -> list[FoodReportRead]:
        now = self._clock()
        with self._session() as session:
            rows = self._repo.list_for_hotel(session, hotel_id)
            return [self.to_read(report, hotel, now=now) for report, hotel in rows]

    def _claim_outcome(self, report: FoodReport, hotel: Hotel, agent_id: str) -> FoodReportRead:
        if report.status == ReportStatus.ASSIGNED and report.assigned_agent_id == agent_id:
            return self.to_read(report, hotel)
        if report.status == ReportStatus.ASSIGNED:
            raise ClaimConflictError("food report already claimed by another agent")
        raise InvalidTransitionError(f"illegal transition: {report.status} -> {ReportStatus.ASSIGNED}")

    @_translate_storage_errors
    def claim(self, report_id: str, agent_id: str, actor_id: str | None = None) -> FoodReportRead:
        now = self._clock()
        with self._session() as session:
            agent = session.get(DeliveryAgent, agent_id)
            if agent is None:
                raise NotFoundError("delivery agent not found")
            report, hotel = self._load(session, report_id)
            if report.status != ReportStatus.NEW:
                return self._claim_outcome(report, hotel, agent_id)
            if not agent.is_active:
                raise InvalidTransitionError("inactive agents cannot claim tasks")
            if report.expiry_time is not None and scoring.ensure_utc(report.expiry_time) <= now:
                raise InvalidTransitionError("food report has expired")

            old = report_snapshot(report)
            affected = self._repo.conditional_update(
                session,
                report_id,
                expected={"status": ReportStatus.NEW, "assigned_agent_id": None},
                patch={"status": ReportStatus.ASSIGNED, "assigned_agent_id": agent_id},
            )
            if affected == 0:
                session.rollback()
                report, hotel = self._reload(session, report_id)
                logger.info("claim on %s by agent %s lost the race", report_id, agent_id)
                return self._claim_outcome(report, hotel, agent_id)

            report, hotel = self._reload(session, report_id)
            event = self._emit(session, ChangeOp.UPDATE, report, old, actor_id)
            session.commit()
            read = self.to_read(report, hotel, now=now)

        logger.info("food report %s claimed by agent %s", report_id, agent_id)
        self._bus.dispatch(event)
        return read

    def _advance(
        self,
        session: Session,
        report_id: str,
        agent_id: str,
        source: ReportStatus,
        target: ReportStatus,
    ) -> tuple[FoodReport, Hotel, dict[str, Any] | None]:
        """Move an agent's own task one step forward.

        Returns the row plus the pre-transition snapshot, or None as the
        snapshot when the row was already in ``target`` (idempotent retry).
        """
        report, hotel = self._load(session, report_id)
        if report.status == target and report.assigned_agent_id == agent_id:
            return report, hotel, None
        if report.status != source or not can_transition(source, target):
            raise InvalidTransitionError(f"illegal transition: {report.status} -> {target}")
        if report.assigned_agent_id != agent_id:
            raise PermissionDeniedError("task is assigned to another agent")

        old = report_snapshot(report)
        affected = self._repo.conditional_update(
            session,
            report_id,
            expected={"status": source, "assigned_agent_id": agent_id},
            patch={"status": target},
        )
        if affected == 0:
            session.rollback()
            report, hotel = self._reload(session, report_id)
            if report.status == target and report.assigned_agent_id == agent_id:
                return report, hotel, None
            raise InvalidTransitionError(f"illegal transition: {report.status} -> {target}")
        report, hotel = self._reload(session, report_id)
        return report, hotel, old

    @_translate_storage_errors
    def mark_picked(self, report_id: str, agent_id: str, actor_id: str | None = None) -> FoodReportRead:
        with self._session() as session:
            report, hotel, old = self._advance(
                session, report_id, agent_id, ReportStatus.ASSIGNED, ReportStatus.PICKED
            )
            if old is None:
                return self.to_read(report, hotel)
            event = self._emit(session, ChangeOp.UPDATE, report, old, actor_id)
            session.commit()
            read = self.to_read(report, hotel)

        logger.info("food report %s picked by agent %s", report_id, agent_id)
        self._bus.dispatch(event)
        return read

    def _validate_distribution(
        self,
        session: Session,
        report: FoodReport,
        payload: DeliverRequest | None,
    ) -> DistributionRecord | None:
        if payload is None or payload.needy_person_id is None:
            return None
        if session.get(NeedyPerson, payload.needy_person_id) is None:
            raise NotFoundError("needy person not found")
        quantity = payload.quantity_distributed if payload.quantity_distributed is not None else report.quantity
        if quantity < 1 or quantity > report.quantity:
            raise ValidationError("quantity_distributed must be between 1 and the reported quantity")
        return DistributionRecord(
            food_report_id=report.id,
            agent_id=report.assigned_agent_id or "",
            needy_person_id=payload.needy_person_id,
            quantity_distributed=quantity,
            notes=payload.notes,
        )

    @_translate_storage_errors
    def mark_delivered(
        self,
        report_id: str,
        agent_id: str,
        payload: DeliverRequest | None = None,
        actor_id: str | None = None,
    ) -> FoodReportRead:
        with self._session() as session:
            current, _ = self._load(session, report_id)
            distribution = None
            if current.status == ReportStatus.PICKED and current.assigned_agent_id == agent_id:
                distribution = self._validate_distribution(session, current, payload)

            report, hotel, old = self._advance(
                session, report_id, agent_id, ReportStatus.PICKED, ReportStatus.DELIVERED
            )
            if old is None:
                return self.to_read(report, hotel)

            session.execute(
                sa.update(DeliveryAgent)
                .where(col(DeliveryAgent.id) == agent_id)
                .values(total_deliveries=col(DeliveryAgent.total_deliveries) + 1, updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            session.execute(
                sa.update(Hotel)
                .where(col(Hotel.id) == report.hotel_id)
                .values(total_food_saved=col(Hotel.total_food_saved) + report.quantity, updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
            if distribution is not None:
                session.add(distribution)
            event = self._emit(session, ChangeOp.UPDATE, report, old, actor_id)
            session.commit()
            read = self.to_read(report, hotel)

        logger.info("food report %s delivered by agent %s", report_id, agent_id)
        self._bus.dispatch(event)
        return read

    def _ensure_can_cancel(self, actor: Actor, report: FoodReport) -> None:
        if actor.role == UserRole.ADMIN:
            return
        if actor.role == UserRole.HOTEL and actor.hotel_id == report.hotel_id:
            return
        raise PermissionDeniedError("only the reporting hotel or an admin can cancel")

    @_translate_storage_errors
    def cancel(self, report_id: str, actor: Actor) -> FoodReportRead:
        with self._session() as session:
            report, hotel = self._load(session, report_id)
            self._ensure_can_cancel(actor, report)
            if report.status == ReportStatus.CANCELLED:
                return self.to_read(report, hotel)
            if report.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError(f"illegal transition: {report.status} -> {ReportStatus.CANCELLED}")

            old = report_snapshot(report)
            affected = self._repo.conditional_update(
                session,
                report_id,
                expected={"status": list(CANCELLABLE_STATUSES)},
                patch={"status": ReportStatus.CANCELLED, "assigned_agent_id": None},
            )
            if affected == 0:
                session.rollback()
                report, hotel = self._reload(session, report_id)
                if report.status == ReportStatus.CANCELLED:
                    return self.to_read(report, hotel)
                raise InvalidTransitionError(f"illegal transition: {report.status} -> {ReportStatus.CANCELLED}")

            report, hotel = self._reload(session, report_id)
            event = self._emit(session, ChangeOp.UPDATE, report, old, actor.user_id)
            session.commit()
            read = self.to_read(report, hotel)

        logger.info("food report %s cancelled by %s %s", report_id, actor.role, actor.user_id)
        self._bus.dispatch(event)
        return read
