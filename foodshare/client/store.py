"""Client-side view model for a user's task board.

All lists are keyed by report id and only change through query results,
this user's own transition calls, or ``apply_change``. Presentation code
renders from the collections and never mutates them directly.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from foodshare.client.api_client import ClaimConflictError, FoodShareClient
from foodshare.domain import scoring
from foodshare.domain.models import (
    FOOD_REPORTS_TABLE,
    AvailableTaskFilter,
    ChangeEvent,
    DeliverRequest,
    FoodReportRead,
    Notification,
    UserRole,
    now_utc,
)
from foodshare.domain.state_machine import ReportStatus

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (ReportStatus.ASSIGNED, ReportStatus.PICKED)


def _merge(existing: FoodReportRead | None, row: dict[str, Any]) -> FoodReportRead:
    incoming = FoodReportRead.model_validate(row)
    if existing is None:
        return incoming
    fields = {key for key in row if key in FoodReportRead.model_fields}
    return existing.model_copy(update=incoming.model_dump(include=fields))


def _with_derived(report: FoodReportRead, now: datetime) -> FoodReportRead:
    hours = scoring.hours_until_expiry(report.expiry_time, now)
    return report.model_copy(
        update={
            "urgency": scoring.urgency(report.expiry_time, now),
            "hours_until_expiry": round(hours, 2) if hours is not None else None,
            "priority_score": scoring.priority_score(report.expiry_time, report.quantity, report.distance_km, now),
            "estimated_earnings": scoring.estimate_earnings(
                report.expiry_time, report.quantity, report.distance_km, now
            ),
        }
    )


class TaskBoardStore:
    def __init__(
        self,
        client: FoodShareClient,
        role: UserRole,
        agent_id: str | None = None,
        max_alerts: int = 50,
    ) -> None:
        self._client = client
        self.role = role
        self.agent_id = agent_id
        self.available: dict[str, FoodReportRead] = {}
        self.mine: dict[str, FoodReportRead] = {}
        self.completed: dict[str, FoodReportRead] = {}
        self.alerts: deque[Notification] = deque(maxlen=max_alerts)

    def _known(self, report_id: str) -> FoodReportRead | None:
        return self.available.get(report_id) or self.mine.get(report_id) or self.completed.get(report_id)

    def _drop(self, report_id: str) -> None:
        self.available.pop(report_id, None)
        self.mine.pop(report_id, None)
        self.completed.pop(report_id, None)

    def _is_mine(self, report: FoodReportRead) -> bool:
        return self.agent_id is not None and report.assigned_agent_id == self.agent_id

    def _place(self, report: FoodReportRead, now: datetime | None = None) -> None:
        self._drop(report.id)
        if self.role == UserRole.HOTEL:
            if report.status in (ReportStatus.NEW, *ACTIVE_STATUSES):
                self.mine[report.id] = report
            else:
                self.completed[report.id] = report
            return

        if report.status == ReportStatus.NEW and report.assigned_agent_id is None:
            expiry = report.expiry_time
            if expiry is None or scoring.ensure_utc(expiry) > (now or now_utc()):
                self.available[report.id] = report
        elif report.status in ACTIVE_STATUSES and self._is_mine(report):
            self.mine[report.id] = report
        elif report.status == ReportStatus.DELIVERED and self._is_mine(report):
            self.completed[report.id] = report

    async def load(self, task_filter: AvailableTaskFilter | None = None) -> None:
        self.available.clear()
        self.mine.clear()
        self.completed.clear()
        if self.role == UserRole.HOTEL:
            for report in await self._client.list_mine():
                self._place(report)
            return
        if self.role in (UserRole.AGENT, UserRole.ADMIN):
            for report in await self._client.list_available(task_filter):
                self.available[report.id] = report
        if self.role == UserRole.AGENT:
            for report in await self._client.list_mine([*ACTIVE_STATUSES, ReportStatus.DELIVERED]):
                self._place(report)

    def apply_change(self, event: ChangeEvent, notifications: Iterable[Notification] = ()) -> None:
        """Fold one change event into the board without refetching."""
        self.alerts.extend(notifications)
        if event.table != FOOD_REPORTS_TABLE or not event.entity_id:
            return
        existing = self._known(event.entity_id)
        incoming_version = int(event.new.get("version", 0) or 0)
        if existing is not None and incoming_version and incoming_version < existing.version:
            logger.debug("ignoring stale change %s for %s", event.event_id, event.entity_id)
            return
        now = now_utc()
        self._place(_with_derived(_merge(existing, event.new), now), now)

    def handle_message(self, message: dict[str, Any]) -> None:
        if message.get("type") != "change":
            return
        event = ChangeEvent.model_validate(message["event"])
        notifications = [Notification.model_validate(item) for item in message.get("notifications", [])]
        self.apply_change(event, notifications)

    async def claim(self, report_id: str) -> FoodReportRead | None:
        """Claim a task; a lost race quietly removes it from the available list."""
        try:
            report = await self._client.claim(report_id)
        except ClaimConflictError:
            logger.info("claim on %s lost to another agent", report_id)
            self.available.pop(report_id, None)
            return None
        self._place(report)
        return report

    async def mark_picked(self, report_id: str) -> FoodReportRead:
        report = await self._client.mark_picked(report_id)
        self._place(report)
        return report

    async def mark_delivered(self, report_id: str, payload: DeliverRequest | None = None) -> FoodReportRead:
        report = await self._client.mark_delivered(report_id, payload)
        self._place(report)
        return report

    async def cancel(self, report_id: str) -> FoodReportRead:
        report = await self._client.cancel(report_id)
        self._place(report)
        return report
