"""Data access for food report rows and their hotel relation.

Every mutation of an existing report goes through ``conditional_update``; it is
the only operation that has to be atomic, and it is a single UPDATE ... WHERE
statement so the database serializes competing writers on the same row.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable
from typing import Any, Protocol

import sqlalchemy as sa
from sqlmodel import Session, col, select

from foodshare.domain.models import ChangeEvent, FoodReport, Hotel, now_utc
from foodshare.domain.state_machine import ReportStatus
from foodshare.infra.events import EventBus, event_bus

ReportRow = tuple[FoodReport, Hotel]
ChangePredicate = Callable[[ChangeEvent], bool]


class ReportRepository(Protocol):
    def get_by_id(self, session: Session, report_id: str) -> ReportRow | None: ...

    def list_available(self, session: Session) -> list[ReportRow]: ...

    def list_for_agent(
        self,
        session: Session,
        agent_id: str,
        statuses: Iterable[ReportStatus],
    ) -> list[ReportRow]: ...

    def list_for_hotel(self, session: Session, hotel_id: str) -> list[ReportRow]: ...

    def insert(self, session: Session, report: FoodReport) -> FoodReport: ...

    def conditional_update(
        self,
        session: Session,
        report_id: str,
        expected: dict[str, Any],
        patch: dict[str, Any],
    ) -> int: ...

    def subscribe_changes(
        self,
        table: str,
        handler: Callable[[ChangeEvent], None],
        predicate: ChangePredicate | None = None,
    ) -> Callable[[], None]: ...


def _expected_clause(column_name: str, value: Any) -> Any:
    column = getattr(FoodReport, column_name)
    if value is None:
        return col(column).is_(None)
    if isinstance(value, Collection) and not isinstance(value, str):
        return col(column).in_(list(value))
    return column == value


class SqlReportRepository:
    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus or event_bus

    def _joined(self) -> Any:
        return select(FoodReport, Hotel).join(Hotel, col(Hotel.id) == col(FoodReport.hotel_id))

    def get_by_id(self, session: Session, report_id: str) -> ReportRow | None:
        row = session.exec(self._joined().where(FoodReport.id == report_id)).first()
        if row is None:
            return None
        report, hotel = row
        return report, hotel

    def list_available(self, session: Session) -> list[ReportRow]:
        statement = (
            self._joined()
            .where(FoodReport.status == ReportStatus.NEW)
            .where(col(FoodReport.assigned_agent_id).is_(None))
            .order_by(col(FoodReport.created_at).desc())
        )
        return [(report, hotel) for report, hotel in session.exec(statement).all()]

    def list_for_agent(
        self,
        session: Session,
        agent_id: str,
        statuses: Iterable[ReportStatus],
    ) -> list[ReportRow]:
        statement = (
            self._joined()
            .where(FoodReport.assigned_agent_id == agent_id)
            .where(col(FoodReport.status).in_(list(statuses)))
            .order_by(col(FoodReport.pickup_time).asc())
        )
        return [(report, hotel) for report, hotel in session.exec(statement).all()]

    def list_for_hotel(self, session: Session, hotel_id: str) -> list[ReportRow]:
        statement = (
            self._joined()
            .where(FoodReport.hotel_id == hotel_id)
            .order_by(col(FoodReport.created_at).desc())
        )
        return [(report, hotel) for report, hotel in session.exec(statement).all()]

    def insert(self, session: Session, report: FoodReport) -> FoodReport:
        session.add(report)
        session.flush()
        return report

    def conditional_update(
        self,
        session: Session,
        report_id: str,
        expected: dict[str, Any],
        patch: dict[str, Any],
    ) -> int:
        """Apply ``patch`` only if the stored row still matches ``expected``.

        ``expected`` maps column names to a value, a collection of allowed
        values, or None for IS NULL. Returns the number of rows affected.
        """
        statement = sa.update(FoodReport).where(col(FoodReport.id) == report_id)
        for column_name, value in expected.items():
            statement = statement.where(_expected_clause(column_name, value))
        statement = statement.values(
            **patch,
            version=col(FoodReport.version) + 1,
            updated_at=now_utc(),
        ).execution_options(synchronize_session=False)
        result = session.execute(statement)
        return int(getattr(result, "rowcount", 0) or 0)

    def subscribe_changes(
        self,
        table: str,
        handler: Callable[[ChangeEvent], None],
        predicate: ChangePredicate | None = None,
    ) -> Callable[[], None]:
        def _filtered(event: ChangeEvent) -> None:
            if predicate is None or predicate(event):
                handler(event)

        self._bus.subscribe(table, _filtered)

        def _unsubscribe() -> None:
            self._bus.unsubscribe(table, _filtered)

        return _unsubscribe
