from __future__ import annotations

import asyncio
import threading
from typing import Any

from foodshare.api.routers.realtime import ChangeHub
from foodshare.domain.models import FOOD_REPORTS_TABLE, ChangeEvent, ChangeOp, UserRole
from foodshare.services.notification_service import Subscriber


class _FakeWebSocket:
    def __init__(self) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.delivered = threading.Event()

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)
        self.delivered.set()


def _agent() -> Subscriber:
    return Subscriber(user_id="user-1", role=UserRole.AGENT, agent_id="agent-1")


def _insert() -> ChangeEvent:
    return ChangeEvent(
        table=FOOD_REPORTS_TABLE,
        op=ChangeOp.INSERT,
        new={"id": "report-1", "hotel_id": "hotel-1", "food_name": "Idli", "quantity": 4, "status": "new"},
    )


def test_change_on_owning_loop_is_sent_and_task_released() -> None:
    hub = ChangeHub()
    websocket = _FakeWebSocket()

    async def scenario() -> None:
        await hub.connect(websocket, _agent())  # type: ignore[arg-type]
        hub.handle_change(_insert())
        assert hub.pending_sends() == 1
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(scenario())
    assert websocket.accepted
    assert [payload["type"] for payload in websocket.sent] == ["change"]
    assert websocket.sent[0]["event"]["new"]["id"] == "report-1"
    assert hub.pending_sends() == 0


def test_change_from_worker_thread_is_delivered_on_connection_loop() -> None:
    hub = ChangeHub()
    websocket = _FakeWebSocket()
    loop = asyncio.new_event_loop()
    runner = threading.Thread(target=loop.run_forever, daemon=True)
    runner.start()
    try:
        connected = asyncio.run_coroutine_threadsafe(hub.connect(websocket, _agent()), loop)  # type: ignore[arg-type]
        connected.result(timeout=5)
        hub.handle_change(_insert())
        assert websocket.delivered.wait(timeout=5)
    finally:
        loop.call_soon_threadsafe(loop.stop)
        runner.join(timeout=5)
        loop.close()
    assert websocket.sent[0]["type"] == "change"
    assert hub.connection_count() == 1


def test_change_for_connection_with_closed_loop_drops_it() -> None:
    hub = ChangeHub()
    websocket = _FakeWebSocket()
    asyncio.run(hub.connect(websocket, _agent()))  # type: ignore[arg-type]
    assert hub.connection_count() == 1

    hub.handle_change(_insert())

    assert hub.connection_count() == 0
    assert websocket.sent == []


def test_closed_loop_does_not_block_other_connections() -> None:
    hub = ChangeHub()
    stale = _FakeWebSocket()
    live = _FakeWebSocket()
    asyncio.run(hub.connect(stale, _agent()))  # type: ignore[arg-type]

    async def scenario() -> None:
        await hub.connect(live, Subscriber(user_id="user-2", role=UserRole.ADMIN))  # type: ignore[arg-type]
        hub.handle_change(_insert())
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(scenario())
    assert hub.connection_count() == 1
    assert [payload["type"] for payload in live.sent] == ["change"]
    assert stale.sent == []
