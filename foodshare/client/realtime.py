from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from foodshare.client.store import TaskBoardStore
from foodshare.domain.models import NotificationPreferences

logger = logging.getLogger(__name__)

FOODSHARE_WS_URL = os.getenv("FOODSHARE_WS_URL", "ws://localhost:8000/ws/changes")


class ChangeFeed:
    """Async iterator over change feed messages for one session."""

    def __init__(
        self,
        token: str,
        url: str = FOODSHARE_WS_URL,
        open_timeout: float = 10.0,
        close_timeout: float = 5.0,
    ) -> None:
        self._url = f"{url}?{urlencode({'token': token})}"
        self._open_timeout = open_timeout
        self._close_timeout = close_timeout
        self._websocket: Any = None

    async def __aenter__(self) -> ChangeFeed:
        self._websocket = await websockets.connect(
            self._url,
            open_timeout=self._open_timeout,
            close_timeout=self._close_timeout,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._websocket is not None:
            await self._websocket.close()
            self._websocket = None

    async def set_preferences(self, preferences: NotificationPreferences) -> None:
        await self._websocket.send(json.dumps({"preferences": preferences.model_dump()}))

    def __aiter__(self) -> ChangeFeed:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._websocket is None:
            raise StopAsyncIteration
        try:
            raw = await self._websocket.recv()
        except ConnectionClosed:
            logger.info("change feed closed")
            raise StopAsyncIteration from None
        text = raw.decode() if isinstance(raw, bytes) else raw
        return json.loads(text)

    async def pump(self, store: TaskBoardStore) -> None:
        async for message in self:
            store.handle_message(message)
