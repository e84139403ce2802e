from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis as AsyncRedis

from foodshare.domain.models import ChangeEvent, NotificationPreferences, UserRole
from foodshare.domain.permissions import PERM_REPORT_READ, has_permission
from foodshare.infra.auth import decode_access_token
from foodshare.infra.redis_state import (
    CHANGES_CHANNEL,
    INSTANCE_ID,
    REDIS_URL,
    decode_relay_message,
    publish_change,
)
from foodshare.services.notification_service import NotificationService, Subscriber
from foodshare.services.profile_service import NotFoundError, ProfileService

logger = logging.getLogger(__name__)

ws_router = APIRouter()


class ChangeHub:
    """Websocket connections and their subscribers.

    ``handle_change`` is a plain callable so the event bus can invoke it from
    worker threads; each delivery is scheduled on the loop that owns the
    connection.
    """

    def __init__(self, notifications: NotificationService | None = None) -> None:
        self._notifications = notifications or NotificationService()
        self._connections: dict[WebSocket, tuple[Subscriber, asyncio.AbstractEventLoop]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket, subscriber: Subscriber) -> None:
        await websocket.accept()
        self._connections[websocket] = (subscriber, asyncio.get_running_loop())
        logger.info("change feed connected for %s %s", subscriber.role, subscriber.user_id)

    def disconnect(self, websocket: WebSocket) -> None:
        entry = self._connections.pop(websocket, None)
        if entry is not None:
            logger.info("change feed disconnected for %s", entry[0].user_id)

    def connection_count(self) -> int:
        return len(self._connections)

    def pending_sends(self) -> int:
        return len(self._tasks)

    def update_preferences(self, websocket: WebSocket, preferences: NotificationPreferences) -> None:
        entry = self._connections.get(websocket)
        if entry is not None:
            entry[0].preferences = preferences

    def handle_change(self, event: ChangeEvent) -> None:
        connections = list(self._connections.items())
        by_subscriber = {id(subscriber): (websocket, loop) for websocket, (subscriber, loop) in connections}
        routed = self._notifications.fan_out(event, [subscriber for _, (subscriber, _) in connections])
        try:
            current_loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        for subscriber, notifications in routed:
            websocket, loop = by_subscriber[id(subscriber)]
            payload: dict[str, Any] = {
                "type": "change",
                "event": event.model_dump(mode="json"),
                "notifications": [item.model_dump(mode="json") for item in notifications],
            }
            coro = self._send(websocket, payload)
            try:
                if loop is current_loop:
                    task = loop.create_task(coro)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    asyncio.run_coroutine_threadsafe(coro, loop)
            except RuntimeError:
                coro.close()
                logger.warning(
                    "dropping change feed connection for %s, its event loop is gone",
                    subscriber.user_id,
                    exc_info=True,
                )
                self.disconnect(websocket)

    async def _send(self, websocket: WebSocket, payload: dict[str, Any]) -> None:
        try:
            await websocket.send_json(payload)
        except Exception:
            logger.warning("dropping change feed connection after failed send", exc_info=True)
            self.disconnect(websocket)


change_hub = ChangeHub()


def relay_to_redis(event: ChangeEvent) -> None:
    try:
        publish_change(event)
    except Exception:
        # The transition is already committed at this point.
        logger.exception("failed to relay change %s to redis", event.event_id)


async def listen_redis_changes(hub: ChangeHub, redis_url: str = REDIS_URL) -> None:
    client = AsyncRedis.from_url(redis_url, decode_responses=True)
    pubsub = client.pubsub()
    await pubsub.subscribe(CHANGES_CHANNEL)
    logger.info("listening for relayed changes on %s", CHANGES_CHANNEL)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                origin, event = decode_relay_message(message["data"])
            except PydanticValidationError:
                logger.warning("ignoring malformed relay message")
                continue
            if origin == INSTANCE_ID:
                continue
            hub.handle_change(event)
    finally:
        await pubsub.unsubscribe(CHANGES_CHANNEL)
        await pubsub.aclose()
        await client.aclose()


def _extract_ws_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    auth_header = websocket.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


def _resolve_subscriber(claims: dict[str, Any]) -> Subscriber:
    service = ProfileService()
    actor = service.resolve_actor(claims)
    is_active = True
    if actor.role == UserRole.AGENT:
        if actor.agent_id is None:
            is_active = False
        else:
            try:
                is_active = service.get_agent(actor.agent_id).is_active
            except NotFoundError:
                is_active = False
    return Subscriber(
        user_id=actor.user_id,
        role=actor.role,
        agent_id=actor.agent_id,
        hotel_id=actor.hotel_id,
        is_active=is_active,
    )


@ws_router.websocket("/ws/changes")
async def ws_changes(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    resolved_token = _extract_ws_token(websocket, token)
    if not resolved_token:
        await websocket.close(code=4401)
        return
    try:
        claims = decode_access_token(resolved_token)
    except Exception:
        await websocket.close(code=4401)
        return
    if not has_permission(claims, PERM_REPORT_READ):
        await websocket.close(code=4403)
        return

    subscriber = _resolve_subscriber(claims)
    await change_hub.connect(websocket, subscriber)
    try:
        await websocket.send_json(
            {"type": "subscribed", "preferences": subscriber.preferences.model_dump()},
        )
        while True:
            message = await websocket.receive_json()
            raw_preferences = message.get("preferences") if isinstance(message, dict) else None
            if raw_preferences is None:
                continue
            try:
                preferences = NotificationPreferences.model_validate(raw_preferences)
            except PydanticValidationError:
                await websocket.send_json({"type": "error", "detail": "invalid preferences"})
                continue
            change_hub.update_preferences(websocket, preferences)
            await websocket.send_json({"type": "preferences", "preferences": preferences.model_dump()})
    except WebSocketDisconnect:
        pass
    finally:
        change_hub.disconnect(websocket)
