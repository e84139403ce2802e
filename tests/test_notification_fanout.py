from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Any

from foodshare.domain.models import (
    FOOD_REPORTS_TABLE,
    ChangeEvent,
    ChangeOp,
    NotificationKind,
    NotificationPreferences,
    UserRole,
)
from foodshare.services.notification_service import (
    NORMAL_VIBRATION,
    URGENT_VIBRATION,
    NotificationService,
    Subscriber,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _service() -> NotificationService:
    return NotificationService(clock=lambda: NOW)


def _row(status: str, *, agent_id: str | None = None, expiry_hours: float | None = 5.0) -> dict[str, Any]:
    expiry = (NOW + timedelta(hours=expiry_hours)).isoformat() if expiry_hours is not None else None
    return {
        "id": "report-1",
        "hotel_id": "hotel-1",
        "food_name": "Veg Biryani",
        "quantity": 12,
        "status": status,
        "assigned_agent_id": agent_id,
        "expiry_time": expiry,
        "version": 1,
    }


def _insert(**kwargs: Any) -> ChangeEvent:
    return ChangeEvent(table=FOOD_REPORTS_TABLE, op=ChangeOp.INSERT, new=_row("new", **kwargs))


def _update(old: dict[str, Any], new: dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(table=FOOD_REPORTS_TABLE, op=ChangeOp.UPDATE, old=old, new=new)


def _agent(agent_id: str = "agent-1", **prefs: bool) -> Subscriber:
    return Subscriber(
        user_id=f"user-{agent_id}",
        role=UserRole.AGENT,
        agent_id=agent_id,
        preferences=NotificationPreferences(**prefs),
    )


def test_insert_new_notifies_active_agent_once() -> None:
    notifications = _service().route(_insert(), _agent())
    assert len(notifications) == 1
    alert = notifications[0]
    assert alert.kind == NotificationKind.NEW_TASK
    assert alert.title == "New Food Available!"
    assert alert.body == "Veg Biryani - 12 servings"
    assert alert.tag == "task-report-1"
    assert alert.sound == "normal"
    assert alert.vibration == NORMAL_VIBRATION
    assert not alert.require_interaction


def test_insert_with_non_new_status_is_silent() -> None:
    event = ChangeEvent(table=FOOD_REPORTS_TABLE, op=ChangeOp.INSERT, new=_row("assigned", agent_id="a"))
    assert _service().route(event, _agent()) == []


def test_insert_ignored_by_inactive_agents_hotels_and_admins() -> None:
    service = _service()
    inactive = _agent()
    inactive.is_active = False
    assert service.route(_insert(), inactive) == []
    assert service.route(_insert(), Subscriber(user_id="h", role=UserRole.HOTEL, hotel_id="hotel-1")) == []
    assert service.route(_insert(), Subscriber(user_id="adm", role=UserRole.ADMIN)) == []


def test_urgent_task_bypasses_new_tasks_gate() -> None:
    notifications = _service().route(_insert(expiry_hours=1), _agent(new_tasks=False))
    assert len(notifications) == 1
    alert = notifications[0]
    assert alert.urgent
    assert alert.require_interaction
    assert alert.title.startswith("URGENT")
    assert alert.body.endswith("(Expires soon!)")
    assert alert.sound == "urgent"
    assert alert.vibration == URGENT_VIBRATION


def test_urgent_tasks_flag_suppresses_urgent_regardless_of_new_tasks() -> None:
    assert _service().route(_insert(expiry_hours=1), _agent(urgent_tasks=False)) == []


def test_non_urgent_task_respects_new_tasks_gate() -> None:
    assert _service().route(_insert(expiry_hours=5), _agent(new_tasks=False)) == []
    assert _service().route(_insert(expiry_hours=None), _agent(new_tasks=False)) == []


def test_sound_and_vibration_flags_only_strip_effects() -> None:
    notifications = _service().route(_insert(), _agent(sound_enabled=False, vibration_enabled=False))
    assert len(notifications) == 1
    assert notifications[0].sound is None
    assert notifications[0].vibration is None


def test_update_without_status_change_is_silent() -> None:
    old = _row("assigned", agent_id="agent-1")
    new = {**old, "description": "edited", "version": 2}
    event = _update(old, new)
    service = _service()
    assert service.route(event, _agent("agent-1")) == []
    assert service.route(event, _agent("agent-2")) == []
    assert service.route(event, Subscriber(user_id="h", role=UserRole.HOTEL, hotel_id="hotel-1")) == []


def test_claim_update_routes_to_hotel_assignee_and_other_agents() -> None:
    event = _update(_row("new"), _row("assigned", agent_id="agent-1"))
    service = _service()

    hotel_alerts = service.route(event, Subscriber(user_id="h", role=UserRole.HOTEL, hotel_id="hotel-1"))
    assert [item.kind for item in hotel_alerts] == [NotificationKind.STATUS_UPDATE]
    assert hotel_alerts[0].title == "Food Donation Update"
    assert hotel_alerts[0].body == "Veg Biryani: An agent has accepted your food donation"
    assert hotel_alerts[0].tag == "hotel-report-1"

    winner_alerts = service.route(event, _agent("agent-1"))
    assert [item.kind for item in winner_alerts] == [NotificationKind.STATUS_UPDATE]
    assert winner_alerts[0].sound == "update"

    loser_alerts = service.route(event, _agent("agent-2"))
    assert [item.kind for item in loser_alerts] == [NotificationKind.TASK_REMOVED]
    assert loser_alerts[0].sound is None


def test_status_updates_preference_silences_hotel_but_not_removal_signal() -> None:
    event = _update(_row("new"), _row("assigned", agent_id="agent-1"))
    service = _service()
    hotel = Subscriber(
        user_id="h",
        role=UserRole.HOTEL,
        hotel_id="hotel-1",
        preferences=NotificationPreferences(status_updates=False),
    )
    assert service.route(event, hotel) == []
    removal = service.route(event, _agent("agent-2", status_updates=False))
    assert [item.kind for item in removal] == [NotificationKind.TASK_REMOVED]


def test_other_hotels_get_nothing() -> None:
    event = _update(_row("new"), _row("assigned", agent_id="agent-1"))
    other = Subscriber(user_id="h2", role=UserRole.HOTEL, hotel_id="hotel-2")
    assert not other.can_see(event)
    assert _service().route(event, other) == []


def test_cancel_after_assignment_notifies_previous_assignee() -> None:
    event = _update(_row("assigned", agent_id="agent-1"), _row("cancelled", agent_id=None))
    service = _service()
    alerts = service.route(event, _agent("agent-1"))
    assert [item.body for item in alerts] == ["Veg Biryani: Task has been cancelled"]
    # not in anyone else's available list any more
    assert service.route(event, _agent("agent-2")) == []


def test_fan_out_is_at_most_once_per_subscriber() -> None:
    service = _service()
    agent = _agent("agent-1")
    hotel = Subscriber(user_id="h2", role=UserRole.HOTEL, hotel_id="hotel-2")
    event = _insert()

    first = service.fan_out(event, [agent, hotel])
    assert [(subscriber.user_id, len(alerts)) for subscriber, alerts in first] == [("user-agent-1", 1)]
    assert service.fan_out(event, [agent, hotel]) == []


def test_seen_window_is_bounded() -> None:
    subscriber = Subscriber(user_id="u", role=UserRole.ADMIN, seen_window=2)
    assert subscriber.mark_seen("e1")
    assert subscriber.mark_seen("e2")
    assert subscriber.mark_seen("e3")
    assert not subscriber.mark_seen("e3")
    # e1 fell out of the window
    assert subscriber.mark_seen("e1")


def test_mark_seen_from_many_threads_accepts_each_event_once() -> None:
    subscriber = Subscriber(user_id="u", role=UserRole.ADMIN)
    event_ids = [f"e{index}" for index in range(200)]
    barrier = threading.Barrier(4)
    accepted: list[list[str]] = [[] for _ in range(4)]

    def _worker(slot: int) -> None:
        barrier.wait()
        for event_id in event_ids:
            if subscriber.mark_seen(event_id):
                accepted[slot].append(event_id)

    threads = [threading.Thread(target=_worker, args=(slot,)) for slot in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    merged = [event_id for bucket in accepted for event_id in bucket]
    assert sorted(merged) == sorted(event_ids)
