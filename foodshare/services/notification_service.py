"""Turns food report change events into per-subscriber notifications.

Routing is pure: given an event and a subscriber it returns the alerts that
subscriber should see. Transport (websocket hub, Redis relay) lives elsewhere.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from foodshare.domain import scoring
from foodshare.domain.models import (
    FOOD_REPORTS_TABLE,
    ChangeEvent,
    ChangeOp,
    Notification,
    NotificationKind,
    NotificationPreferences,
    Urgency,
    UserRole,
    now_utc,
)
from foodshare.domain.state_machine import ReportStatus

logger = logging.getLogger(__name__)

URGENT_VIBRATION = [200, 100, 200, 100, 200]
NORMAL_VIBRATION = [200]

SOUND_URGENT = "urgent"
SOUND_NORMAL = "normal"
SOUND_UPDATE = "update"

AGENT_STATUS_MESSAGES = {
    ReportStatus.ASSIGNED: "Task has been assigned to an agent",
    ReportStatus.PICKED: "Food has been picked up from the restaurant",
    ReportStatus.DELIVERED: "Food has been successfully delivered!",
    ReportStatus.CANCELLED: "Task has been cancelled",
}

HOTEL_STATUS_MESSAGES = {
    ReportStatus.ASSIGNED: "An agent has accepted your food donation",
    ReportStatus.PICKED: "Your food has been picked up by the agent",
    ReportStatus.DELIVERED: "Your food has been successfully delivered to those in need!",
    ReportStatus.CANCELLED: "The food pickup has been cancelled",
}

DEFAULT_SEEN_WINDOW = 512


@dataclass
class Subscriber:
    """One connected session. Identity is resolved once, at connect time."""

    user_id: str
    role: UserRole
    agent_id: str | None = None
    hotel_id: str | None = None
    is_active: bool = True
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    seen_window: int = DEFAULT_SEEN_WINDOW
    _seen_order: deque[str] = field(default_factory=deque, init=False, repr=False, compare=False)
    _seen_ids: set[str] = field(default_factory=set, init=False, repr=False, compare=False)
    _seen_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def mark_seen(self, event_id: str) -> bool:
        """Record ``event_id``; False when it was already delivered this session."""
        with self._seen_lock:
            if event_id in self._seen_ids:
                return False
            self._seen_order.append(event_id)
            self._seen_ids.add(event_id)
            while len(self._seen_order) > self.seen_window:
                self._seen_ids.discard(self._seen_order.popleft())
            return True

    def can_see(self, event: ChangeEvent) -> bool:
        if event.table != FOOD_REPORTS_TABLE:
            return False
        if self.role in (UserRole.AGENT, UserRole.ADMIN):
            return True
        return self.hotel_id is not None and event.new.get("hotel_id") == self.hotel_id


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return scoring.ensure_utc(value)
    return scoring.ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def _status(row: dict[str, Any] | None) -> ReportStatus | None:
    if row is None or row.get("status") is None:
        return None
    return ReportStatus(row["status"])


class NotificationService:
    def __init__(self, clock: Callable[[], datetime] = now_utc) -> None:
        self._clock = clock

    def route(self, event: ChangeEvent, subscriber: Subscriber) -> list[Notification]:
        if event.table != FOOD_REPORTS_TABLE:
            return []
        if event.op == ChangeOp.INSERT:
            return self._route_insert(event, subscriber)
        if event.op == ChangeOp.UPDATE:
            return self._route_update(event, subscriber)
        return []

    def fan_out(
        self,
        event: ChangeEvent,
        subscribers: Iterable[Subscriber],
    ) -> list[tuple[Subscriber, list[Notification]]]:
        """Route one event to many subscribers, honouring each one's seen window.

        Subscribers that already saw the event, or cannot see it, are left out.
        A subscriber may be returned with an empty list: it still gets the raw
        change so its local view can be updated.
        """
        delivered: list[tuple[Subscriber, list[Notification]]] = []
        for subscriber in subscribers:
            if not subscriber.can_see(event):
                continue
            if not subscriber.mark_seen(event.event_id):
                logger.debug("event %s already delivered to %s", event.event_id, subscriber.user_id)
                continue
            delivered.append((subscriber, self.route(event, subscriber)))
        return delivered

    def _route_insert(self, event: ChangeEvent, subscriber: Subscriber) -> list[Notification]:
        new = event.new
        if _status(new) != ReportStatus.NEW:
            return []
        if subscriber.role != UserRole.AGENT or not subscriber.is_active:
            return []

        prefs = subscriber.preferences
        level = scoring.urgency(_parse_ts(new.get("expiry_time")), self._clock())
        is_urgent = level == Urgency.URGENT
        # Urgent tasks answer only to urgent_tasks, so an agent can run urgent-only.
        if is_urgent and not prefs.urgent_tasks:
            return []
        if not is_urgent and not prefs.new_tasks:
            return []

        food_name = new.get("food_name", "")
        quantity = new.get("quantity", 0)
        body = f"{food_name} - {quantity} servings"
        if is_urgent:
            body += " (Expires soon!)"
        return [
            Notification(
                kind=NotificationKind.NEW_TASK,
                report_id=event.entity_id,
                title="URGENT: New Food Available!" if is_urgent else "New Food Available!",
                body=body,
                tag=f"task-{event.entity_id}",
                urgent=is_urgent,
                require_interaction=is_urgent,
                sound=(SOUND_URGENT if is_urgent else SOUND_NORMAL) if prefs.sound_enabled else None,
                vibration=list(URGENT_VIBRATION if is_urgent else NORMAL_VIBRATION)
                if prefs.vibration_enabled
                else None,
            )
        ]

    def _route_update(self, event: ChangeEvent, subscriber: Subscriber) -> list[Notification]:
        old_status = _status(event.old)
        new_status = _status(event.new)
        if new_status is None or old_status == new_status:
            return []

        new = event.new
        old = event.old or {}
        prefs = subscriber.preferences
        food_name = new.get("food_name", "")

        if subscriber.role == UserRole.HOTEL:
            if subscriber.hotel_id != new.get("hotel_id") or not prefs.status_updates:
                return []
            return self._status_update(event, HOTEL_STATUS_MESSAGES, "Food Donation Update", "hotel", prefs)

        if subscriber.role == UserRole.ADMIN:
            if not prefs.status_updates:
                return []
            return self._status_update(event, AGENT_STATUS_MESSAGES, "Status Update", "status", prefs)

        involved = subscriber.agent_id is not None and subscriber.agent_id in (
            new.get("assigned_agent_id"),
            old.get("assigned_agent_id"),
        )
        if involved:
            if not prefs.status_updates:
                return []
            return self._status_update(event, AGENT_STATUS_MESSAGES, "Status Update", "status", prefs)

        if old_status == ReportStatus.NEW:
            # Keeps other agents' available lists in sync; not a user-facing alert.
            return [
                Notification(
                    kind=NotificationKind.TASK_REMOVED,
                    report_id=event.entity_id,
                    title="Task no longer available",
                    body=f"{food_name} is no longer available",
                    tag=f"task-{event.entity_id}",
                )
            ]
        return []

    def _status_update(
        self,
        event: ChangeEvent,
        messages: dict[ReportStatus, str],
        title: str,
        tag_prefix: str,
        prefs: NotificationPreferences,
    ) -> list[Notification]:
        new_status = _status(event.new)
        message = messages.get(new_status) if new_status is not None else None
        if message is None:
            return []
        return [
            Notification(
                kind=NotificationKind.STATUS_UPDATE,
                report_id=event.entity_id,
                title=title,
                body=f"{event.new.get('food_name', '')}: {message}",
                tag=f"{tag_prefix}-{event.entity_id}",
                sound=SOUND_UPDATE if prefs.sound_enabled else None,
            )
        ]
